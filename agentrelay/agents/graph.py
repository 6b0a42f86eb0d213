"""Worker graph — workers plus an explicit adjacency map of handoff edges.

Edges are attached after both endpoints exist, so back-edges and cycles
(e.g. a confirmation ping-pong A -> B -> A) are allowed. The graph is
validated and frozen once before any run starts, then shared read-only.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from agentrelay.agents.worker import Worker
from agentrelay.contracts import GUARDRAIL_CONTRACT, OutputContract, validate
from agentrelay.errors import ContractViolation, GraphMisconfiguration

logger = logging.getLogger(__name__)

_RESERVED_NAMES = {"__start__", "__end__"}
_FORBIDDEN_CHARS = ("|", ":")

DEFAULT_REJECTION_MESSAGE = "This assistant cannot help with that request."


@dataclass(frozen=True)
class HandoffEdge:
    """A directed ``source -> target`` transition.

    input_contract — the forwarded object must satisfy it, else the run
                     fails with a graph misconfiguration
    on_handoff     — observer called with the (validated) payload
    transform      — maps the payload before the target receives it
    """

    source: str
    target: str
    description: str = ""
    input_contract: OutputContract | None = None
    on_handoff: Callable[[Any], None] | None = None
    transform: Callable[[Any], Any] | None = None

    def traverse(self, payload: Any) -> Any:
        """Return the payload the target worker receives."""
        if self.input_contract is not None:
            try:
                payload = validate(self.input_contract, payload)
            except ContractViolation as e:
                raise GraphMisconfiguration(
                    f"Handoff {self.source} -> {self.target}: payload does not match "
                    f"input contract '{self.input_contract.name}': {e}"
                ) from e

        if self.on_handoff is not None:
            try:
                self.on_handoff(payload)
            except Exception as e:
                logger.warning(f"Handoff observer {self.source} -> {self.target} raised: {e}", exc_info=True)

        if self.transform is not None:
            try:
                payload = self.transform(payload)
            except Exception as e:
                raise GraphMisconfiguration(
                    f"Handoff {self.source} -> {self.target}: input transform failed: {e}"
                ) from e
        return payload


class WorkerGraph:
    def __init__(
        self,
        name: str,
        guardrail: str | None = None,
        rejection_message: str = DEFAULT_REJECTION_MESSAGE,
    ):
        self.name = name
        self.rejection_message = rejection_message
        self._guardrail = guardrail
        self._workers: dict[str, Worker] = {}
        self._edges: dict[str, dict[str, HandoffEdge]] = {}
        self._frozen = False

    # -- construction -------------------------------------------------------

    def _check_mutable(self) -> None:
        if self._frozen:
            raise GraphMisconfiguration(f"Graph '{self.name}' is frozen; build it before starting runs")

    def add_worker(self, worker: Worker) -> Worker:
        self._check_mutable()
        if not worker.name or worker.name in _RESERVED_NAMES or any(c in worker.name for c in _FORBIDDEN_CHARS):
            raise GraphMisconfiguration(f"Invalid worker name {worker.name!r}")
        if worker.name in self._workers:
            raise GraphMisconfiguration(f"Worker '{worker.name}' is already registered in graph '{self.name}'")
        self._workers[worker.name] = worker
        self._edges[worker.name] = {}
        return worker

    def add_edge(
        self,
        source: str,
        target: str,
        *,
        description: str = "",
        input_contract: OutputContract | None = None,
        on_handoff: Callable[[Any], None] | None = None,
        transform: Callable[[Any], Any] | None = None,
    ) -> HandoffEdge:
        self._check_mutable()
        for endpoint in (source, target):
            if endpoint not in self._workers:
                raise GraphMisconfiguration(
                    f"Handoff {source} -> {target} references unknown worker '{endpoint}'. "
                    f"Available: {sorted(self._workers)}"
                )
        if source in self._edges and target in self._edges[source]:
            raise GraphMisconfiguration(f"Handoff {source} -> {target} is already registered")
        edge = HandoffEdge(
            source=source,
            target=target,
            description=description or self._workers[target].description,
            input_contract=input_contract,
            on_handoff=on_handoff,
            transform=transform,
        )
        self._edges[source][target] = edge
        return edge

    def set_guardrail(self, name: str) -> None:
        self._check_mutable()
        self._guardrail = name

    # -- inspection ---------------------------------------------------------

    @property
    def guardrail(self) -> str | None:
        return self._guardrail

    @property
    def workers(self) -> dict[str, Worker]:
        return dict(self._workers)

    def worker(self, name: str) -> Worker:
        if name not in self._workers:
            raise GraphMisconfiguration(
                f"Worker '{name}' not found in graph '{self.name}'. Available: {sorted(self._workers)}"
            )
        return self._workers[name]

    def edges_from(self, source: str) -> list[HandoffEdge]:
        return list(self._edges.get(source, {}).values())

    def targets(self, source: str) -> list[str]:
        return list(self._edges.get(source, {}))

    def edge(self, source: str, target: str) -> HandoffEdge:
        """Return the registered edge, or raise if ``source`` may not hand off to ``target``."""
        edge = self._edges.get(source, {}).get(target)
        if edge is None:
            raise GraphMisconfiguration(
                f"Worker '{source}' requested a handoff to '{target}' but no such edge is registered. "
                f"Registered targets: {self.targets(source)}"
            )
        return edge

    def adjacency(self) -> dict[str, list[str]]:
        return {source: list(targets) for source, targets in self._edges.items()}

    # -- validation ---------------------------------------------------------

    def validate(self) -> None:
        """Check that every referenced worker exists and the guardrail is well formed."""
        for source, targets in self._edges.items():
            for target in targets:
                if target not in self._workers:
                    raise GraphMisconfiguration(f"Handoff {source} -> {target} targets an unregistered worker")

        if self._guardrail is not None:
            guardrail = self.worker(self._guardrail)
            if self._edges.get(guardrail.name):
                raise GraphMisconfiguration(f"Guardrail '{guardrail.name}' must not hand off to other workers")
            for source, targets in self._edges.items():
                if guardrail.name in targets:
                    raise GraphMisconfiguration(f"Worker '{source}' must not hand off to the guardrail")
            contract = guardrail.output_contract
            if contract is None or contract.field("inDomain") is None:
                raise GraphMisconfiguration(
                    f"Guardrail '{guardrail.name}' must declare an output contract with an 'inDomain' field "
                    f"(e.g. '{GUARDRAIL_CONTRACT.name}')"
                )

    def freeze(self) -> WorkerGraph:
        self.validate()
        self._frozen = True
        logger.info(
            f"Graph '{self.name}' frozen: workers={sorted(self._workers)}, "
            f"edges={sum(len(t) for t in self._edges.values())}, guardrail={self._guardrail}"
        )
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

