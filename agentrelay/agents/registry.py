"""Worker registry — turns graph configs into frozen WorkerGraphs.

Model-backed workers are fully described by their config entry. Native
workers name a handler type from HANDLER_TYPES; the handler's options
(contract, accept/clarify targets, loop partners) are checked against the
worker's declared handoffs at build time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from agentrelay.agents.graph import WorkerGraph
from agentrelay.agents.judge import completeness_judge
from agentrelay.agents.policies import DEFAULT_MARKERS, confirmation_requester, confirmation_responder
from agentrelay.agents.worker import Worker, attach_logging_hooks
from agentrelay.contracts import GUARDRAIL_CONTRACT
from agentrelay.errors import GraphMisconfiguration
from agentrelay.tools import resolve_tools

if TYPE_CHECKING:
    from agentrelay.agents.worker import WorkerHandler
    from agentrelay.config import EngineConfig, GraphConfig, HandlerConfig, WorkerConfig

logger = logging.getLogger(__name__)


def _required_option(handler: HandlerConfig, key: str) -> Any:
    if key not in handler.options:
        raise GraphMisconfiguration(f"Handler '{handler.type}' requires option '{key}'")
    return handler.options[key]


def _markers(handler: HandlerConfig) -> tuple[str, ...]:
    return tuple(handler.options.get("markers", DEFAULT_MARKERS))


def _build_judge(handler: HandlerConfig, config: EngineConfig) -> WorkerHandler:
    contract = config.get_contract(_required_option(handler, "contract"))
    return completeness_judge(contract, accept=handler.options.get("accept"), clarify=handler.options.get("clarify"))


def _build_requester(handler: HandlerConfig, config: EngineConfig) -> WorkerHandler:
    return confirmation_requester(_required_option(handler, "responder"), _markers(handler))


def _build_responder(handler: HandlerConfig, config: EngineConfig) -> WorkerHandler:
    return confirmation_responder(_required_option(handler, "requester"), _markers(handler))


HANDLER_TYPES: dict[str, Callable[[HandlerConfig, EngineConfig], WorkerHandler]] = {
    "completeness_judge": _build_judge,
    "confirmation_requester": _build_requester,
    "confirmation_responder": _build_responder,
}

# Options whose value names a handoff target.
_TARGET_OPTIONS = ("accept", "clarify", "responder", "requester")


def handler_targets(handler: HandlerConfig) -> list[str]:
    return [handler.options[key] for key in _TARGET_OPTIONS if handler.options.get(key)]


def build_worker(worker_cfg: WorkerConfig, config: EngineConfig, guardrail: bool = False) -> Worker:
    """Merge a worker config entry with its contract, tools and handler."""
    if worker_cfg.tools:
        try:
            resolve_tools(worker_cfg.tools)
        except ValueError as e:
            raise GraphMisconfiguration(f"Worker '{worker_cfg.name}': {e}") from e

    contract = config.get_contract(worker_cfg.output_contract) if worker_cfg.output_contract else None
    if guardrail and contract is None:
        contract = GUARDRAIL_CONTRACT

    handler = None
    if worker_cfg.handler is not None:
        handler = HANDLER_TYPES[worker_cfg.handler.type](worker_cfg.handler, config)

    worker = Worker(
        name=worker_cfg.name,
        instructions=worker_cfg.instructions,
        description=worker_cfg.description,
        model=worker_cfg.model or config.default_model,
        output_contract=contract,
        tools=tuple(worker_cfg.tools),
        require_tool=worker_cfg.require_tool,
        handler=handler,
    )
    if config.log_hooks:
        attach_logging_hooks(worker)
    return worker


def _log_handoff(source: str, target: str) -> Callable[[Any], None]:
    def observer(payload: Any) -> None:
        logger.info(f">>> {source}-to-{target} {payload!r:.500}")

    return observer


def build_worker_graph(graph_cfg: GraphConfig, config: EngineConfig) -> WorkerGraph:
    """Build, validate and freeze the worker graph for ``graph_cfg``."""
    graph = WorkerGraph(graph_cfg.id, rejection_message=graph_cfg.rejection_message)

    for worker_cfg in graph_cfg.workers:
        graph.add_worker(build_worker(worker_cfg, config, guardrail=worker_cfg.name == graph_cfg.guardrail))
    if graph_cfg.guardrail:
        graph.set_guardrail(graph_cfg.guardrail)

    # Edges are late-bound: every endpoint exists by now, so cycles are fine.
    for worker_cfg in graph_cfg.workers:
        for handoff in worker_cfg.handoffs:
            graph.add_edge(
                worker_cfg.name,
                handoff.target,
                description=handoff.description or "",
                input_contract=config.get_contract(handoff.input_contract) if handoff.input_contract else None,
                on_handoff=_log_handoff(worker_cfg.name, handoff.target),
            )

    for worker_cfg in graph_cfg.workers:
        if worker_cfg.handler is None:
            continue
        declared = set(graph.targets(worker_cfg.name))
        for target in handler_targets(worker_cfg.handler):
            if target not in declared:
                raise GraphMisconfiguration(
                    f"Worker '{worker_cfg.name}' handler '{worker_cfg.handler.type}' targets '{target}' "
                    f"but declares no handoff to it. Declared: {sorted(declared)}"
                )

    return graph.freeze()
