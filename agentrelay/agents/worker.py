"""Worker definitions — the immutable description of one unit of behavior.

A worker is pure description: name, instructions, optional output
contract, declared tools and lifecycle hooks. Handoff topology lives in
``agents/graph.py``, not here.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol

if TYPE_CHECKING:
    from agentrelay.agents.context import InvocationContext
    from agentrelay.contracts import OutputContract

logger = logging.getLogger(__name__)

HookEvent = Literal["start", "end", "handoff", "tool_start", "tool_end"]
HOOK_EVENTS: tuple[HookEvent, ...] = ("start", "end", "handoff", "tool_start", "tool_end")


class WorkerHooks:
    """Per-worker publish/subscribe list of lifecycle observers.

    Subscribers are notifications only: their return values are ignored
    and their exceptions are logged, so they cannot steer a run.

        start       (context)
        end         (context, output)
        handoff     (context, target_name)
        tool_start  (context, tool_name, args)
        tool_end    (context, tool_name, result)
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable[..., Any]]] = {e: [] for e in HOOK_EVENTS}

    def on(self, event: HookEvent, callback: Callable[..., Any]) -> Callable[..., Any]:
        if event not in self._subscribers:
            raise ValueError(f"Unknown hook event '{event}'. Available: {list(HOOK_EVENTS)}")
        self._subscribers[event].append(callback)
        return callback

    def fire(self, event: HookEvent, *args: Any) -> None:
        for callback in self._subscribers[event]:
            try:
                callback(*args)
            except Exception as e:
                logger.warning(f"Hook '{event}' subscriber {callback!r} raised: {e}", exc_info=True)


@dataclass
class WorkerResult:
    """What one worker turn produced.

    text        — the full text the worker generated (fragments are streamed
                  separately through the context)
    structured  — a structured object, checked against the output contract
    handoff     — name of the worker to hand control to
    payload     — input for the handoff target; defaults to structured, then text
    """

    text: str | None = None
    structured: dict[str, Any] | None = None
    handoff: str | None = None
    payload: Any = None

    def handoff_payload(self) -> Any:
        if self.payload is not None:
            return self.payload
        if self.structured is not None:
            return self.structured
        return self.text


WorkerHandler = Callable[[Any, "InvocationContext"], Awaitable[WorkerResult]]


class WorkerInvoker(Protocol):
    """The opaque model-call boundary."""

    async def __call__(self, worker: Worker, payload: Any, context: InvocationContext) -> WorkerResult: ...


@dataclass(frozen=True)
class Worker:
    name: str
    instructions: str = ""
    description: str = ""
    model: str | None = None
    output_contract: OutputContract | None = None
    tools: tuple[str, ...] = ()
    require_tool: bool = False
    handler: WorkerHandler | None = field(default=None, compare=False)
    hooks: WorkerHooks = field(default_factory=WorkerHooks, compare=False, repr=False)


def attach_logging_hooks(worker: Worker) -> Worker:
    """Subscribe log lines to every lifecycle event of ``worker``."""
    name = worker.name
    worker.hooks.on("start", lambda ctx: logger.info(f"{name} started (run={ctx.run_id}, turn={ctx.turn})"))
    worker.hooks.on("end", lambda ctx, output: logger.info(f"{name} ended with output {output!r:.200}"))
    worker.hooks.on("handoff", lambda ctx, target: logger.info(f"{name} handed off to {target}"))
    worker.hooks.on("tool_start", lambda ctx, tool, args: logger.info(f"{name} started tool {tool}"))
    worker.hooks.on(
        "tool_end", lambda ctx, tool, result: logger.info(f"{name} tool {tool} ended with output {result!r:.200}")
    )
    return worker
