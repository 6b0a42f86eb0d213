"""Capability registry — the tool boundary workers call through.

A capability is a LangChain ``BaseTool`` filed under its ``.name``.
Workers list the capabilities they may use in ``config.yaml``; the model
invoker binds them and ``InvocationContext.call_tool`` runs them through
``run_tool``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from langchain_core.tools import BaseTool

_capabilities: dict[str, BaseTool] = {}


def register(capability: BaseTool) -> BaseTool:
    """File ``capability`` under its name. Stack it above ``@tool``::

        @register
        @tool
        async def web_search(query: str) -> str:
            ...
    """
    _capabilities[capability.name] = capability
    return capability


def unregister(name: str) -> None:
    _capabilities.pop(name, None)


def resolve_tools(names: list[str]) -> list[BaseTool]:
    """Return the capabilities for ``names``, in order; ValueError on any unknown name."""
    unknown = [name for name in names if name not in _capabilities]
    if unknown:
        raise ValueError(f"Unknown tool(s): {unknown}. Available: {sorted(_capabilities)}")
    return [_capabilities[name] for name in names]


def list_tools() -> list[str]:
    return sorted(_capabilities)


async def run_tool(name: str, args: dict[str, Any]) -> Any:
    """Execute capability ``name`` with ``args`` and return its output."""
    (capability,) = resolve_tools([name])
    return await capability.ainvoke(args)


# Built-in capabilities register themselves on import.
import agentrelay.tools.search as _search  # noqa: E402, F401
import agentrelay.tools.pages as _pages  # noqa: E402, F401
