"""LangGraph shared state — flows between nodes during one run."""

from typing import Annotated, Any

from langchain_core.messages import BaseMessage
from langgraph.graph.message import add_messages
from typing_extensions import TypedDict


class RunState(TypedDict):
    """State passed through every node in the graph.

    messages      — conversation history of previous turns in this session;
                    add_messages appends, so it survives across runs that
                    share a continuation token.
    prompt        — the caller's prompt for this run.
    active_worker — name of the worker currently holding control.
    payload       — input for the active worker.
    next_worker   — handoff target chosen by the last step, if any.
    status        — "active" | "success" | "rejected" | "failed"
    result        — final text or structured object (or rejection message).
    error         — failure cause, for logging and the error channel.
    error_kind    — EngineError.kind of the failure.
    turn_count    — number of worker invocations so far in this run.
    """

    messages: Annotated[list[BaseMessage], add_messages]
    prompt: str
    active_worker: str | None
    payload: Any
    next_worker: str | None
    status: str
    result: Any
    error: str | None
    error_kind: str | None
    turn_count: int


def initial_state(prompt: str, entry: str) -> dict:
    return {
        "messages": [],
        "prompt": prompt,
        "active_worker": entry,
        "payload": prompt,
        "next_worker": None,
        "status": "active",
        "result": None,
        "error": None,
        "error_kind": None,
        "turn_count": 0,
    }
