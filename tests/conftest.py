"""Shared fixtures and deterministic fakes for the model and tool boundaries."""

import asyncio
import inspect
from pathlib import Path

import pytest

from agentrelay.agents.graph import WorkerGraph
from agentrelay.agents.stream import FragmentEvent, TerminalEvent
from agentrelay.agents.worker import Worker, WorkerResult
from agentrelay.contracts import GUARDRAIL_CONTRACT, ContractField, CrossFieldRule, OutputContract

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"


class ScriptedInvoker:
    """Stand-in for the model boundary: each worker name maps to a script
    ``(payload, context) -> WorkerResult`` (sync or async). Records calls."""

    def __init__(self, scripts):
        self.scripts = scripts
        self.calls = []

    async def __call__(self, worker, payload, context):
        self.calls.append((worker.name, payload))
        outcome = self.scripts[worker.name](payload, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    @property
    def names(self):
        return [name for name, _ in self.calls]

    def payloads(self, name):
        return [payload for worker, payload in self.calls if worker == name]


class FakeTools:
    """Stand-in for the tool boundary."""

    def __init__(self, results=None, fail=None):
        self.results = results or {}
        self.fail = fail or {}
        self.calls = []

    async def __call__(self, name, args):
        self.calls.append((name, args))
        if name in self.fail:
            raise self.fail[name]
        return self.results.get(name, f"{name} ok")


def reply(text):
    return lambda payload, context: WorkerResult(text=text)


def hand_to(target, payload=None):
    return lambda p, context: WorkerResult(handoff=target, payload=payload if payload is not None else p)


def verdict(in_domain, explanation=None):
    structured = {"inDomain": in_domain}
    if explanation:
        structured["explanation"] = explanation
    return lambda payload, context: WorkerResult(structured=structured)


def streaming(*fragments):
    """Script that emits ``fragments`` one at a time, yielding between them."""

    async def script(payload, context):
        for fragment in fragments:
            await context.emit(fragment)
            await asyncio.sleep(0)
        return WorkerResult(text="".join(fragments))

    return script


async def collect(handle):
    """Consume a run; return (fragments, terminal, raw events)."""
    events = [event async for event in handle.events()]
    fragments = [e.text for e in events if isinstance(e, FragmentEvent)]
    terminals = [e for e in events if isinstance(e, TerminalEvent)]
    assert len(terminals) == 1
    assert events[-1] is terminals[0]
    return fragments, terminals[0], events


def linear_graph(*names, guardrail=False):
    """names[0] -> names[1] -> ... ; optional guardrail named 'gate'."""
    graph = WorkerGraph("test", rejection_message="Out of domain.")
    for name in names:
        graph.add_worker(Worker(name=name, description=f"{name} worker"))
    for source, target in zip(names, names[1:]):
        graph.add_edge(source, target)
    if guardrail:
        graph.add_worker(Worker(name="gate", output_contract=GUARDRAIL_CONTRACT))
        graph.set_guardrail("gate")
    return graph


@pytest.fixture
def flight_query_contract():
    return OutputContract(
        name="flight_query",
        fields=[
            ContractField(name="origin", type="string"),
            ContractField(name="destination", type="string"),
            ContractField(name="departureDate", type="date"),
            ContractField(name="returnDate", type="date", required=False),
        ],
        rules=[
            CrossFieldRule(rule="not_before", field="returnDate", other="departureDate"),
            CrossFieldRule(rule="not_equal", field="destination", other="origin"),
        ],
    )


@pytest.fixture
def xmas_query():
    from datetime import date

    year = date.today().year
    return {
        "origin": "Winnipeg",
        "destination": "New York",
        "departureDate": f"{year}-12-25",
        "returnDate": f"{year + 1}-01-08",
    }
