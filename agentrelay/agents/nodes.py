"""LangGraph node functions — one step of the run state machine each.

GUARDRAIL       the gate node: verdict false ends the run as rejected
ACTIVE(worker)  a worker node: invoke, check the output contract, then
                either follow a registered handoff edge or finish
TERMINAL        any node may set status to success / rejected / failed;
                ``route_next`` then sends the graph to END

Failures are recorded in state rather than raised, so that every outcome
leaves the graph through the same channel.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from langchain_core.messages import AIMessage, HumanMessage
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END

from agentrelay.agents.context import RunContext
from agentrelay.agents.state import RunState
from agentrelay.contracts import FieldIssue, coerce_mapping, validate
from agentrelay.errors import ContractViolation, EngineError, GraphMisconfiguration

if TYPE_CHECKING:
    from collections.abc import Callable

    from agentrelay.agents.graph import WorkerGraph
    from agentrelay.agents.worker import Worker, WorkerResult

logger = logging.getLogger(__name__)


def render_output(output: Any) -> str:
    """Text form of a worker output, as stored in history."""
    if output is None:
        return ""
    if isinstance(output, str):
        return output
    return json.dumps(output, default=str)


def _failed(worker_name: str, error: EngineError, turn: int) -> dict:
    logger.error(f"Worker '{worker_name}' failed ({error.kind}): {error}")
    return {
        "status": "failed",
        "next_worker": None,
        "error": str(error),
        "error_kind": error.kind,
        "turn_count": turn,
    }


def _turn_messages(state: RunState, worker_name: str, answer: Any) -> list:
    """History entries appended when a run ends: the prompt and the answer."""
    return [
        HumanMessage(content=state["prompt"]),
        AIMessage(content=render_output(answer), name=worker_name),
    ]


def _checked_structured(worker: Worker, result: WorkerResult) -> dict[str, Any] | None:
    """Validate the worker's structured output against its declared contract."""
    contract = worker.output_contract
    if contract is None:
        return result.structured

    structured = result.structured
    if structured is None and result.handoff is None:
        structured = coerce_mapping(result.text)
        if structured is None:
            raise ContractViolation(
                contract.name,
                [
                    FieldIssue(
                        field="*",
                        problem="unparseable",
                        message=f"Worker '{worker.name}' produced no structured output",
                    )
                ],
            )
    if structured is None:
        return None
    return validate(contract, structured)


# ---------------------------------------------------------------------------
# Node factories
# ---------------------------------------------------------------------------


def make_guardrail_node(graph: WorkerGraph, entry: str) -> Callable:
    """Create the gate node that admits or rejects the prompt.

    The guardrail sees the raw prompt plus the session history, so that a
    follow-up turn is judged in the context of the conversation. Its text
    is not streamed to the caller.
    """
    guardrail = graph.worker(graph.guardrail)

    async def guardrail_node(state: RunState, config: RunnableConfig) -> dict:
        run = RunContext.from_config(config)
        turn = state["turn_count"] + 1
        context = run.context_for(guardrail, turn, state["messages"], [], muted=True)
        guardrail.hooks.fire("start", context)
        try:
            result = await run.invoke(guardrail, state["prompt"], context)
            if result.handoff is not None:
                raise GraphMisconfiguration(f"Guardrail '{guardrail.name}' requested a handoff to '{result.handoff}'")
            verdict = _checked_structured(guardrail, result)
        except EngineError as e:
            return _failed(guardrail.name, e, turn)

        guardrail.hooks.fire("end", context, verdict)
        if not verdict["inDomain"]:
            message = graph.rejection_message or verdict.get("explanation") or ""
            logger.info(
                f"Guardrail '{guardrail.name}' rejected prompt (run={run.run_id}): "
                f"{verdict.get('explanation') or 'no explanation'}"
            )
            return {
                "status": "rejected",
                "result": message,
                "next_worker": None,
                "turn_count": turn,
                "messages": _turn_messages(state, guardrail.name, message),
            }

        logger.info(f"Guardrail '{guardrail.name}' admitted prompt (run={run.run_id})")
        return {"active_worker": entry, "next_worker": entry, "payload": state["prompt"], "turn_count": turn}

    guardrail_node.__name__ = guardrail.name
    return guardrail_node


def make_worker_node(graph: WorkerGraph, worker: Worker) -> Callable:
    """Create a graph node that runs one turn of ``worker``."""
    handoffs = graph.edges_from(worker.name)

    async def worker_node(state: RunState, config: RunnableConfig) -> dict:
        run = RunContext.from_config(config)
        turn = state["turn_count"] + 1
        context = run.context_for(worker, turn, state["messages"], handoffs)
        logger.info(f"Worker '{worker.name}' processing (run={run.run_id}, turn={turn})")
        worker.hooks.fire("start", context)

        try:
            result = await run.invoke(worker, state["payload"], context)
            structured = _checked_structured(worker, result)

            if result.handoff is not None:
                edge = graph.edge(worker.name, result.handoff)
                payload = edge.traverse(result.handoff_payload())
                worker.hooks.fire("handoff", context, edge.target)
                logger.info(f"Handoff: {worker.name} -> {edge.target} (run={run.run_id})")
                return {
                    "active_worker": edge.target,
                    "next_worker": edge.target,
                    "payload": payload,
                    "turn_count": turn,
                }
        except EngineError as e:
            return _failed(worker.name, e, turn)

        output = structured if structured is not None else (result.text or "")
        worker.hooks.fire("end", context, output)
        return {
            "status": "success",
            "result": output,
            "next_worker": None,
            "turn_count": turn,
            "messages": _turn_messages(state, worker.name, output),
        }

    worker_node.__name__ = worker.name
    return worker_node


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


def route_next(state: RunState) -> str:
    """Follow the handoff chosen by the last step, or stop."""
    if state["status"] != "active" or not state.get("next_worker"):
        return END
    return state["next_worker"]
