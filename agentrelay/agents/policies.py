"""Confirmation loop — a bounded ping-pong between two workers.

The requester sends text to the responder; the responder appends the next
confirmation marker and hands it back. The marker embedded in the payload
is the loop counter, so termination is worker policy:

    "hello"                  requester -> responder
    "hello stage-1"          responder -> requester -> responder
    "hello stage-1 stage-2"  responder -> requester -> caller

Exactly ``len(markers)`` round trips, never more.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from agentrelay.agents.worker import WorkerResult

if TYPE_CHECKING:
    from agentrelay.agents.context import InvocationContext
    from agentrelay.agents.worker import WorkerHandler

logger = logging.getLogger(__name__)

DEFAULT_MARKERS = ("stage-1", "stage-2")


def _text(payload: Any) -> str:
    if isinstance(payload, dict):
        return str(payload.get("text") or payload.get("message") or "")
    return "" if payload is None else str(payload)


def current_stage(text: str, markers: tuple[str, ...] = DEFAULT_MARKERS) -> int:
    """Number of confirmations already applied (0 when no marker is present)."""
    stripped = text.rstrip()
    for index in range(len(markers) - 1, -1, -1):
        if stripped.endswith(markers[index]):
            return index + 1
    return 0


def confirmation_responder(requester: str, markers: tuple[str, ...] = DEFAULT_MARKERS) -> WorkerHandler:
    """Append the next marker and hand back; once fully confirmed, hand back unchanged."""

    async def responder(payload: Any, context: InvocationContext) -> WorkerResult:
        text = _text(payload)
        stage = current_stage(text, markers)
        if stage >= len(markers):
            logger.info(f"'{context.active_worker}': '{text}' fully confirmed, returning control to {requester}")
            return WorkerResult(text=text, handoff=requester, payload=text)

        confirmed = f"{text} {markers[stage]}".strip()
        logger.info(f"'{context.active_worker}': applied {markers[stage]}")
        return WorkerResult(text=confirmed, handoff=requester, payload=confirmed)

    return responder


def confirmation_requester(responder: str, markers: tuple[str, ...] = DEFAULT_MARKERS) -> WorkerHandler:
    """Send text to the responder until it carries the final marker, then answer the caller."""

    async def requester(payload: Any, context: InvocationContext) -> WorkerResult:
        text = _text(payload)
        if current_stage(text, markers) >= len(markers):
            await context.emit(text)
            return WorkerResult(text=text)
        return WorkerResult(text=text, handoff=responder, payload=text)

    return requester
