"""Runtime — bridges HTTP requests to engine runs.

Builds one Engine per configured graph, runs it, and yields SSE frames.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncGenerator

from agentrelay.agents.engine import Engine
from agentrelay.agents.invoker import ChatModelInvoker
from agentrelay.agents.registry import build_worker_graph
from agentrelay.agents.stream import FragmentEvent, RunEvent
from agentrelay.config import EngineConfig
from agentrelay.schemas import StreamFrame

logger = logging.getLogger(__name__)

# Cache: {graph_id: engine}
_engines: dict[str, Engine] = {}


def get_engine(config: EngineConfig, graph_id: str) -> Engine:
    """Return the engine for ``graph_id``, building it on first use."""
    engine = _engines.get(graph_id)
    if engine is not None:
        return engine

    graph_cfg = config.get_graph(graph_id)
    graph = build_worker_graph(graph_cfg, config)
    invoker = ChatModelInvoker(
        default_model=config.default_model,
        max_tokens=config.max_tokens,
        timeout=config.invoke_timeout,
    )
    engine = Engine(graph, invoker=invoker, recursion_limit=config.recursion_limit)
    _engines[graph_id] = engine
    logger.info(f"Engine ready for graph '{graph_id}' (entry={graph_cfg.entry})")
    return engine


def invalidate_engines() -> None:
    """Drop all engines; the next request rebuilds from the current config."""
    _engines.clear()
    logger.info("Engine cache invalidated")


def frame_for(event: RunEvent) -> StreamFrame:
    """Translate a run event into its wire frame."""
    if isinstance(event, FragmentEvent):
        return StreamFrame(text=event.text)
    if event.status == "success":
        return StreamFrame(type="end", continuation_token=event.session_token, result=event.result)
    if event.status == "rejected":
        return StreamFrame(type="rejected", message=event.message, continuation_token=event.session_token)
    logger.error(f"Run failed ({event.kind}): {event.error}")
    return StreamFrame(type="error", message=event.message)


async def execute_run(
    engine: Engine,
    entry: str,
    prompt: str,
    session_token: str | None = None,
) -> AsyncGenerator[StreamFrame, None]:
    """Start a run and yield one frame per event, ending with the terminal frame."""
    logger.info(f"Executing run: graph={engine.graph.name}, entry={entry}")
    events = engine.start(entry, prompt, session_token).events()
    try:
        async for event in events:
            yield frame_for(event)
    finally:
        await events.aclose()


def to_sse(frame: StreamFrame) -> str:
    return f"data: {json.dumps(frame.wire(), default=str)}\n\n"
