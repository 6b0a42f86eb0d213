"""Tests for the guardrail gate."""

import pytest

from agentrelay.agents.engine import Engine
from agentrelay.agents.worker import WorkerResult
from agentrelay.errors import RunRejected

from conftest import ScriptedInvoker, collect, linear_graph, reply, streaming, verdict


def gated_engine(gate_script, **scripts):
    invoker = ScriptedInvoker({"gate": gate_script, "a": reply("answer"), **scripts})
    return Engine(linear_graph("a", guardrail=True), invoker=invoker), invoker


@pytest.mark.asyncio
async def test_out_of_domain_prompt_never_reaches_entry():
    engine, invoker = gated_engine(verdict(False, "weather is not flights"))

    fragments, terminal, _ = await collect(engine.start("a", "what's the weather today"))

    assert terminal.status == "rejected"
    assert terminal.message == "Out of domain."
    assert terminal.session_token is not None
    assert fragments == []
    assert invoker.names == ["gate"]


@pytest.mark.asyncio
async def test_rejection_surfaces_through_completed():
    engine, _ = gated_engine(verdict(False))
    handle = engine.start("a", "tell me a joke")

    with pytest.raises(RunRejected) as exc_info:
        await handle.completed()

    assert exc_info.value.message == "Out of domain."
    assert exc_info.value.session_token == handle.session_token


@pytest.mark.asyncio
async def test_explanation_used_when_no_rejection_message():
    graph = linear_graph("a", guardrail=True)
    graph.rejection_message = ""
    engine = Engine(graph, invoker=ScriptedInvoker({"gate": verdict(False, "Only flights, sorry.")}))

    _, terminal, _ = await collect(engine.start("a", "weather?"))

    assert terminal.message == "Only flights, sorry."


@pytest.mark.asyncio
async def test_in_domain_prompt_reaches_entry_unchanged():
    engine, invoker = gated_engine(verdict(True))

    _, terminal, _ = await collect(engine.start("a", "fly to ny from winnipeg on xmas"))

    assert terminal.result == "answer"
    assert invoker.calls == [("gate", "fly to ny from winnipeg on xmas"), ("a", "fly to ny from winnipeg on xmas")]


@pytest.mark.asyncio
async def test_guardrail_sees_session_context():
    seen = []

    def gate(payload, context):
        seen.append((context.session_token, [m.content for m in context.history]))
        return WorkerResult(structured={"inDomain": True})

    engine, _ = gated_engine(gate)
    token = await engine.start("a", "flights to Toronto").completed()
    await engine.start("a", "and in March?", session_token=token).completed()

    assert seen == [(token, []), (token, ["flights to Toronto", "answer"])]


@pytest.mark.asyncio
async def test_guardrail_output_is_not_streamed():
    async def chatty_gate(payload, context):
        await streaming('{"inDomain": ', "true}")(payload, context)
        return WorkerResult(structured={"inDomain": True})

    engine, _ = gated_engine(chatty_gate, a=streaming("I ", "can ", "help"))

    fragments, terminal, _ = await collect(engine.start("a", "flights?"))

    assert fragments == ["I ", "can ", "help"]
    assert terminal.ok


@pytest.mark.asyncio
async def test_verdict_missing_in_domain_fails_run():
    engine, invoker = gated_engine(lambda p, ctx: WorkerResult(structured={"explanation": "unsure"}))

    _, terminal, _ = await collect(engine.start("a", "flights?"))

    assert terminal.status == "failed"
    assert terminal.kind == "contract_violation"
    assert invoker.names == ["gate"]


@pytest.mark.asyncio
async def test_verdict_may_arrive_as_json_text():
    engine, invoker = gated_engine(reply('```json\n{"inDomain": false}\n```'))

    _, terminal, _ = await collect(engine.start("a", "weather?"))

    assert terminal.status == "rejected"
    assert invoker.names == ["gate"]


@pytest.mark.asyncio
async def test_guardrail_handoff_is_misconfiguration():
    engine, invoker = gated_engine(lambda p, ctx: WorkerResult(handoff="a", payload=p))

    _, terminal, _ = await collect(engine.start("a", "flights?"))

    assert terminal.kind == "misconfiguration"
    assert invoker.names == ["gate"]
