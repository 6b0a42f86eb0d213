"""Tests for SSE framing and the HTTP surface."""

import json

import pytest
from fastapi.testclient import TestClient

from agentrelay import runtime
from agentrelay.agents.engine import Engine
from agentrelay.agents.registry import build_worker_graph
from agentrelay.agents.stream import GENERIC_FAILURE_MESSAGE, FragmentEvent, TerminalEvent, failed_terminal
from agentrelay.config import get_config

from conftest import CONFIG_PATH, ScriptedInvoker, hand_to, linear_graph, reply, streaming, verdict


class TestFrames:
    def test_fragment(self):
        assert runtime.frame_for(FragmentEvent("I ")).wire() == {"text": "I "}

    def test_success(self):
        frame = runtime.frame_for(TerminalEvent(status="success", session_token="tok", result="done"))
        assert frame.wire() == {"type": "end", "continuationToken": "tok", "result": "done"}

    def test_rejection(self):
        frame = runtime.frame_for(TerminalEvent(status="rejected", session_token="tok", message="Flights only."))
        assert frame.wire() == {"type": "rejected", "message": "Flights only.", "continuationToken": "tok"}

    def test_failure_hides_cause(self):
        frame = runtime.frame_for(failed_terminal("ANTHROPIC_API_KEY missing", "upstream_failure"))
        assert frame.wire() == {"type": "error", "message": GENERIC_FAILURE_MESSAGE}

    def test_sse_encoding(self):
        assert runtime.to_sse(runtime.frame_for(FragmentEvent("hi"))) == 'data: {"text": "hi"}\n\n'


@pytest.mark.asyncio
async def test_execute_run_ends_with_one_terminal_frame():
    engine = Engine(linear_graph("a"), invoker=ScriptedInvoker({"a": streaming("I ", "found ", "3 ", "flights")}))

    frames = [frame.wire() async for frame in runtime.execute_run(engine, "a", "flights?", "tok")]

    assert frames[:4] == [{"text": "I "}, {"text": "found "}, {"text": "3 "}, {"text": "flights"}]
    assert frames[4] == {"type": "end", "continuationToken": "tok", "result": "I found 3 flights"}
    assert len(frames) == 5


def _parse_sse(body):
    return [json.loads(line[len("data: "):]) for line in body.split("\n\n") if line.startswith("data: ")]


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("AGENTRELAY_CONFIG", str(CONFIG_PATH))
    from agentrelay.main import app

    runtime.invalidate_engines()
    with TestClient(app) as test_client:
        yield test_client
    runtime.invalidate_engines()


def scripted_engine(monkeypatch, scripts):
    invoker = ScriptedInvoker(scripts)

    def get_engine(config, graph_id):
        return Engine(build_worker_graph(config.get_graph(graph_id), config), invoker=invoker)

    monkeypatch.setattr(runtime, "get_engine", get_engine)
    return invoker


class TestApi:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "graphs": [g.id for g in get_config().graphs]}

    def test_unknown_graph(self, client):
        assert client.post("/graphs/weather/run", json={"prompt": "hi"}).status_code == 404

    def test_guardrail_is_not_an_entry(self, client):
        response = client.post("/graphs/flights/run", json={"prompt": "hi", "entry": "flights_filter"})
        assert response.status_code == 422

    def test_empty_prompt(self, client):
        assert client.post("/graphs/flights/run", json={"prompt": ""}).status_code == 422

    def test_rejected_stream(self, client, monkeypatch):
        invoker = scripted_engine(monkeypatch, {"flights_filter": verdict(False)})

        response = client.post("/graphs/flights/run", json={"prompt": "what's the weather today"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = _parse_sse(response.text)
        assert len(frames) == 1
        assert frames[0]["type"] == "rejected"
        assert frames[0]["message"].startswith("This assistant only answers flights questions")
        assert invoker.names == ["flights_filter"]

    def test_streamed_answer_with_continuation(self, client, monkeypatch):
        scripted_engine(monkeypatch, {"storyteller": streaming("Once ", "upon ", "a time")})

        response = client.post("/graphs/storyteller/run", json={"prompt": "a story", "session_token": "abc"})

        frames = _parse_sse(response.text)
        assert [f["text"] for f in frames[:-1]] == ["Once ", "upon ", "a time"]
        assert frames[-1] == {"type": "end", "continuationToken": "abc", "result": "Once upon a time"}

    def test_failure_stream_is_generic(self, client, monkeypatch):
        def broken(payload, context):
            raise RuntimeError("secret upstream detail")

        scripted_engine(monkeypatch, {"flights_filter": verdict(True), "flights_agent": broken})

        frames = _parse_sse(client.post("/graphs/flights/run", json={"prompt": "flights to NY"}).text)

        assert frames == [{"type": "error", "message": GENERIC_FAILURE_MESSAGE}]

    def test_flights_pipeline_over_http(self, client, monkeypatch, xmas_query):
        scripted_engine(
            monkeypatch,
            {
                "flights_filter": verdict(True),
                "flights_agent": hand_to("query_parser"),
                "query_parser": hand_to("query_judge", dict(xmas_query)),
                "search_agent": hand_to("web_developer", {"results": []}),
                "web_developer": reply("No flights found."),
            },
        )

        frames = _parse_sse(client.post("/graphs/flights/run", json={"prompt": "fly to ny on xmas"}).text)

        assert frames[-1]["type"] == "end"
        assert frames[-1]["result"] == "No flights found."

    def test_reload(self, client):
        response = client.post("/reload")
        assert response.json()["status"] == "reloaded"
