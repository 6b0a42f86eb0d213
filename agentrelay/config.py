"""Configuration loader — reads config.yaml, validates with Pydantic.

Three-level hierarchy: contracts → graphs → workers. Native worker
handlers (judge, confirmation loop) are referenced by type name and
resolved in agents/registry.py.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator, model_validator

from agentrelay.contracts import GUARDRAIL_CONTRACT, OutputContract

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "AGENTRELAY_CONFIG"
DEFAULT_CONFIG_PATH = "config.yaml"


class HandoffConfig(BaseModel):
    """An outgoing handoff edge of a worker."""

    target: str
    description: str | None = None
    input_contract: str | None = None  # name of a contract the payload must satisfy


class HandlerConfig(BaseModel):
    """A native (Python) policy used instead of a model call."""

    type: Literal["completeness_judge", "confirmation_requester", "confirmation_responder"]
    options: dict[str, Any] = {}


class WorkerConfig(BaseModel):
    name: str
    description: str = ""
    model: str | None = None
    instructions: str = ""
    output_contract: str | None = None
    tools: list[str] = []
    require_tool: bool = False
    handler: HandlerConfig | None = None
    handoffs: list[HandoffConfig] = []


class GraphConfig(BaseModel):
    """A worker graph with one guardrail (optional) and a default entry worker."""

    id: str
    description: str | None = None
    entry: str
    guardrail: str | None = None
    rejection_message: str = "This assistant cannot help with that request."
    workers: list[WorkerConfig]

    @field_validator("workers")
    @classmethod
    def must_have_workers(cls, v: list[WorkerConfig]) -> list[WorkerConfig]:
        if not v:
            raise ValueError("A graph must have at least one worker")
        names = [w.name for w in v]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate worker names: {duplicates}")
        return v

    @model_validator(mode="after")
    def validate_topology(self) -> GraphConfig:
        names = {w.name for w in self.workers}
        if self.entry not in names:
            raise ValueError(f"Graph '{self.id}' entry '{self.entry}' is not a worker. Available: {sorted(names)}")
        if self.guardrail is not None:
            if self.guardrail not in names:
                raise ValueError(
                    f"Graph '{self.id}' guardrail '{self.guardrail}' is not a worker. Available: {sorted(names)}"
                )
            if self.guardrail == self.entry:
                raise ValueError(f"Graph '{self.id}': the guardrail cannot be the entry worker")
        for worker in self.workers:
            for handoff in worker.handoffs:
                if handoff.target not in names:
                    raise ValueError(
                        f"Worker '{worker.name}' in graph '{self.id}' hands off to unknown worker "
                        f"'{handoff.target}'. Available: {sorted(names)}"
                    )
        return self

    def get_worker(self, name: str) -> WorkerConfig:
        for worker in self.workers:
            if worker.name == name:
                return worker
        raise ValueError(f"Worker '{name}' not found in graph '{self.id}'")


class EngineConfig(BaseModel):
    """Top-level engine configuration."""

    contracts: list[OutputContract] = []
    graphs: list[GraphConfig]

    # Model boundary
    default_model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 4096
    invoke_timeout: float | None = 120.0

    # Engine
    recursion_limit: int = 1000
    log_hooks: bool = True

    # CORS
    allowed_origins: list[str] = ["*"]

    @model_validator(mode="after")
    def validate_references(self) -> EngineConfig:
        contract_names = {c.name for c in self.all_contracts()}

        for graph in self.graphs:
            for worker in graph.workers:
                refs = [worker.output_contract] + [h.input_contract for h in worker.handoffs]
                if worker.handler is not None:
                    refs.append(worker.handler.options.get("contract"))
                for ref in refs:
                    if ref is not None and ref not in contract_names:
                        raise ValueError(
                            f"Worker '{worker.name}' in graph '{graph.id}' references unknown contract "
                            f"'{ref}'. Available: {sorted(contract_names)}"
                        )

        ids = [g.id for g in self.graphs]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate graph ids: {ids}")
        return self

    def all_contracts(self) -> list[OutputContract]:
        return [GUARDRAIL_CONTRACT, *self.contracts]

    def get_contract(self, name: str) -> OutputContract:
        for contract in self.all_contracts():
            if contract.name == name:
                return contract
        raise ValueError(f"Contract '{name}' not found. Available: {[c.name for c in self.all_contracts()]}")

    def get_graph(self, graph_id: str) -> GraphConfig:
        """Return a graph by ID. Raises ValueError if not found."""
        for graph in self.graphs:
            if graph.id == graph_id:
                return graph
        raise ValueError(f"Graph '{graph_id}' not found. Available: {[g.id for g in self.graphs]}")


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: EngineConfig | None = None
_config_path: str = DEFAULT_CONFIG_PATH


def default_config_path() -> str:
    return os.environ.get(CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> EngineConfig:
    """Read config.yaml from disk, validate, and cache."""
    global _config, _config_path
    _config_path = path or default_config_path()

    config_file = Path(_config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file.resolve()}")

    raw = yaml.safe_load(config_file.read_text())
    _config = EngineConfig(**raw)

    logger.info(
        f"Loaded config: "
        f"graphs={len(_config.graphs)}, contracts={len(_config.contracts)}"
    )
    return _config


def get_config() -> EngineConfig:
    """Return cached config. Raises if not yet loaded."""
    if _config is None:
        raise RuntimeError("Config not loaded — call load_config() first")
    return _config


def reload_config() -> EngineConfig:
    """Re-read config from disk. Called by /reload endpoint."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
