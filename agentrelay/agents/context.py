"""Per-run mutable context.

``RunContext`` is created once per run and travels to the graph nodes in
``RunnableConfig["configurable"]``; the compiled graph itself never holds
run state. ``InvocationContext`` is the view a single worker turn gets:
history, correlation id, active worker, fragment emission and tool calls.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from agentrelay.errors import EngineError, GraphMisconfiguration, InvocationTimeout, UpstreamFailure

if TYPE_CHECKING:
    from langchain_core.messages import BaseMessage
    from langchain_core.runnables import RunnableConfig

    from agentrelay.agents.graph import HandoffEdge
    from agentrelay.agents.worker import Worker, WorkerInvoker, WorkerResult

logger = logging.getLogger(__name__)

RUN_CONTEXT_KEY = "__agentrelay_run"

ToolRunner = Callable[[str, dict[str, Any]], Awaitable[Any]]
FragmentSink = Callable[[str], Awaitable[None]]


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (TimeoutError, asyncio.TimeoutError))


@dataclass
class InvocationContext:
    run_id: str
    session_token: str
    worker: Worker
    turn: int
    history: list[BaseMessage] = field(default_factory=list)
    handoffs: list[HandoffEdge] = field(default_factory=list)
    muted: bool = False
    _run: RunContext | None = field(default=None, repr=False)

    @property
    def active_worker(self) -> str:
        return self.worker.name

    @property
    def handoff_targets(self) -> list[str]:
        return [edge.target for edge in self.handoffs]

    async def emit(self, text: str) -> None:
        """Forward one text fragment to the caller, in generation order."""
        if not text or self.muted or self._run is None:
            return
        await self._run.sink(text)

    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        """Run a declared tool; the worker suspends until it returns."""
        if name not in self.worker.tools:
            raise GraphMisconfiguration(
                f"Worker '{self.worker.name}' called undeclared tool '{name}'. Declared: {list(self.worker.tools)}"
            )
        if self._run is None:
            raise GraphMisconfiguration(f"No tool runner available for '{name}'")

        self.worker.hooks.fire("tool_start", self, name, args)
        try:
            result = await self._run.tool_runner(name, args)
        except EngineError:
            raise
        except Exception as e:
            if _is_timeout(e):
                raise InvocationTimeout(f"Tool '{name}' timed out", cause=e) from e
            raise UpstreamFailure(f"Tool '{name}' failed: {e}", cause=e) from e
        self.worker.hooks.fire("tool_end", self, name, result)
        return result


class RunContext:
    def __init__(
        self,
        run_id: str,
        session_token: str,
        invoker: WorkerInvoker | None,
        tool_runner: ToolRunner,
        sink: FragmentSink,
    ):
        self.run_id = run_id
        self.session_token = session_token
        self.invoker = invoker
        self.tool_runner = tool_runner
        self.sink = sink

    @classmethod
    def from_config(cls, config: RunnableConfig) -> RunContext:
        run = config.get("configurable", {}).get(RUN_CONTEXT_KEY)
        if run is None:
            raise RuntimeError("Graph invoked without a RunContext; use Engine.start()")
        return run

    def runnable_config(self, recursion_limit: int) -> dict[str, Any]:
        return {
            "configurable": {"thread_id": self.session_token, RUN_CONTEXT_KEY: self},
            "recursion_limit": recursion_limit,
        }

    def context_for(
        self,
        worker: Worker,
        turn: int,
        history: list[BaseMessage],
        handoffs: list[HandoffEdge],
        muted: bool = False,
    ) -> InvocationContext:
        return InvocationContext(
            run_id=self.run_id,
            session_token=self.session_token,
            worker=worker,
            turn=turn,
            history=list(history),
            handoffs=handoffs,
            muted=muted,
            _run=self,
        )

    async def invoke(self, worker: Worker, payload: Any, context: InvocationContext) -> WorkerResult:
        """Call the worker's native handler, or the injected invoker.

        Anything that is not already an EngineError is surfaced as an
        upstream failure; timeouts from the boundary become InvocationTimeout.
        """
        try:
            if worker.handler is not None:
                return await worker.handler(payload, context)
            if self.invoker is None:
                raise GraphMisconfiguration(f"Worker '{worker.name}' has no handler and no invoker is configured")
            return await self.invoker(worker, payload, context)
        except EngineError:
            raise
        except Exception as e:
            if _is_timeout(e):
                raise InvocationTimeout(f"Worker '{worker.name}' timed out", cause=e) from e
            raise UpstreamFailure(f"Worker '{worker.name}' invocation failed: {e}", cause=e) from e
