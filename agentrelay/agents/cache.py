"""Graph cache — one compiled run graph per entry worker.

A WorkerGraph is frozen before it reaches the cache, so the entry worker
is the only key needed; compiled graphs are shared read-only by all runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from agentrelay.agents.builder import build_graph

if TYPE_CHECKING:
    from langgraph.checkpoint.base import BaseCheckpointSaver
    from langgraph.graph.state import CompiledStateGraph

    from agentrelay.agents.graph import WorkerGraph

logger = logging.getLogger(__name__)


class GraphCache:
    def __init__(self, graph: WorkerGraph, checkpointer: BaseCheckpointSaver | None = None):
        self._graph = graph
        self._checkpointer = checkpointer
        self._compiled: dict[str, CompiledStateGraph] = {}

    def get_or_build(self, entry: str) -> CompiledStateGraph:
        """Return the cached run graph for ``entry``, or build a new one."""
        compiled = self._compiled.get(entry)
        if compiled is not None:
            logger.debug(f"Graph cache hit: {self._graph.name}/{entry}")
            return compiled

        logger.info(f"Building run graph '{self._graph.name}' (entry={entry})")
        compiled = build_graph(self._graph, entry, checkpointer=self._checkpointer)
        self._compiled[entry] = compiled
        return compiled

    def invalidate(self, entry: str | None = None) -> None:
        """Clear the cache. If entry given, only clear that run graph."""
        if entry:
            self._compiled.pop(entry, None)
            logger.info(f"Graph cache invalidated: {self._graph.name}/{entry}")
        else:
            self._compiled.clear()
            logger.info(f"Graph cache invalidated: {self._graph.name}")

    def __contains__(self, entry: str) -> bool:
        return entry in self._compiled
