"""Orchestration engine — starts runs over a frozen worker graph.

    engine = Engine(graph, invoker=ChatModelInvoker(...))
    handle = engine.start("flights_agent", "fly to ny from winnipeg on xmas")
    async for event in handle.events():
        ...

The engine owns the compiled-graph cache and the in-process checkpointer
that backs continuation tokens. Everything mutable about a run lives in
its RunContext and RunHandle, so one engine serves concurrent runs.
"""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

from langgraph.checkpoint.memory import MemorySaver
from langgraph.errors import GraphRecursionError

from agentrelay.agents.cache import GraphCache
from agentrelay.agents.context import RunContext
from agentrelay.agents.state import initial_state
from agentrelay.agents.stream import RunCallbacks, RunHandle, TerminalEvent, deliver, failed_terminal
from agentrelay.errors import GraphMisconfiguration

if TYPE_CHECKING:
    from langgraph.checkpoint.base import BaseCheckpointSaver

    from agentrelay.agents.context import ToolRunner
    from agentrelay.agents.graph import WorkerGraph
    from agentrelay.agents.worker import WorkerInvoker

logger = logging.getLogger(__name__)

DEFAULT_RECURSION_LIMIT = 1000

_NO_CHECKPOINTER = object()


async def _default_tool_runner(name: str, args: dict) -> object:
    from agentrelay.tools import run_tool

    return await run_tool(name, args)


class Engine:
    def __init__(
        self,
        graph: WorkerGraph,
        invoker: WorkerInvoker | None = None,
        tool_runner: ToolRunner | None = None,
        checkpointer: BaseCheckpointSaver | None | object = _NO_CHECKPOINTER,
        recursion_limit: int = DEFAULT_RECURSION_LIMIT,
    ):
        if not graph.frozen:
            graph.freeze()
        self.graph = graph
        self.invoker = invoker
        self.tool_runner = tool_runner or _default_tool_runner
        self.checkpointer = MemorySaver() if checkpointer is _NO_CHECKPOINTER else checkpointer
        self.recursion_limit = recursion_limit
        self._cache = GraphCache(graph, checkpointer=self.checkpointer)

    def start(self, entry: str, prompt: str, session_token: str | None = None) -> RunHandle:
        """Create a run. Nothing executes until the handle is consumed."""
        worker = self.graph.worker(entry)
        if worker.name == self.graph.guardrail:
            raise GraphMisconfiguration(f"The guardrail '{entry}' cannot be the entry worker")

        run_id = uuid.uuid4().hex[:12]
        token = session_token or uuid.uuid4().hex

        async def driver(handle: RunHandle) -> TerminalEvent:
            return await self._execute(handle, entry, prompt)

        logger.info(f"Run {run_id} created: graph={self.graph.name}, entry={entry}, session={token}")
        return RunHandle(run_id, token, driver)

    async def run(
        self,
        entry: str,
        prompt: str,
        callbacks: RunCallbacks,
        session_token: str | None = None,
    ) -> TerminalEvent:
        """Run to completion, reporting through callbacks instead of an iterator."""
        return await deliver(self.start(entry, prompt, session_token), callbacks)

    async def _execute(self, handle: RunHandle, entry: str, prompt: str) -> TerminalEvent:
        compiled = self._cache.get_or_build(entry)
        run = RunContext(
            run_id=handle.run_id,
            session_token=handle.session_token,
            invoker=self.invoker,
            tool_runner=self.tool_runner,
            sink=handle.sink,
        )

        try:
            final = await compiled.ainvoke(initial_state(prompt, entry), run.runnable_config(self.recursion_limit))
        except GraphRecursionError as e:
            logger.error(f"Run {handle.run_id} exceeded {self.recursion_limit} steps: {e}")
            return failed_terminal(str(e), "step_limit")

        status = final.get("status")
        logger.info(
            f"Run {handle.run_id} finished: status={status}, turns={final.get('turn_count')}, "
            f"last_worker={final.get('active_worker')}"
        )
        if status == "success":
            return TerminalEvent(status="success", session_token=handle.session_token, result=final.get("result"))
        if status == "rejected":
            return TerminalEvent(
                status="rejected",
                session_token=handle.session_token,
                message=final.get("result"),
            )
        if status == "failed":
            return failed_terminal(final.get("error") or "", final.get("error_kind") or "failure")
        return failed_terminal(f"run ended in non-terminal status {status!r}", "internal")

    def invalidate(self) -> None:
        self._cache.invalidate()
