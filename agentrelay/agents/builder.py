"""Graph builder — compiles a WorkerGraph into a LangGraph StateGraph.

One node per worker; the guardrail, when configured, is wired from START
and routes to the entry worker or END. Every worker node gets conditional
edges to each of its registered handoff targets and to END:

    START → [guardrail] → [entry] ⇄ ... → END
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from langgraph.graph import END, START, StateGraph

from agentrelay.agents.nodes import make_guardrail_node, make_worker_node, route_next
from agentrelay.agents.state import RunState
from agentrelay.errors import GraphMisconfiguration

if TYPE_CHECKING:
    from langgraph.checkpoint.base import BaseCheckpointSaver
    from langgraph.graph.state import CompiledStateGraph

    from agentrelay.agents.graph import WorkerGraph

logger = logging.getLogger(__name__)


def build_graph(
    graph: WorkerGraph,
    entry: str,
    checkpointer: BaseCheckpointSaver | None = None,
) -> CompiledStateGraph:
    """Build and compile the run graph for ``graph`` starting at ``entry``."""
    graph.worker(entry)
    if entry == graph.guardrail:
        raise GraphMisconfiguration(f"The guardrail '{entry}' cannot be the entry worker")

    state_graph = StateGraph(RunState)

    for worker in graph.workers.values():
        if worker.name == graph.guardrail:
            continue
        state_graph.add_node(worker.name, make_worker_node(graph, worker))

    if graph.guardrail is not None:
        state_graph.add_node(graph.guardrail, make_guardrail_node(graph, entry))
        state_graph.add_edge(START, graph.guardrail)
        state_graph.add_conditional_edges(graph.guardrail, route_next, {entry: entry, END: END})
    else:
        state_graph.add_edge(START, entry)

    for worker in graph.workers.values():
        if worker.name == graph.guardrail:
            continue
        destinations = {target: target for target in graph.targets(worker.name)}
        destinations[END] = END
        state_graph.add_conditional_edges(worker.name, route_next, destinations)

    logger.info(
        f"Built run graph '{graph.name}': entry={entry}, guardrail={graph.guardrail}, "
        f"adjacency={graph.adjacency()}"
    )
    return state_graph.compile(checkpointer=checkpointer)
