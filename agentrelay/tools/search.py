"""Tavily web search tool.

Requires: TAVILY_API_KEY environment variable.
"""

from __future__ import annotations

import json
import logging
import os

from langchain_core.tools import tool
from tavily import AsyncTavilyClient

from agentrelay.tools import register

logger = logging.getLogger(__name__)

_MAX_RESULTS = 5


@register
@tool
async def web_search(query: str, prefer_domains: list[str] | None = None) -> str:
    """Search the web using Tavily and return the top results as JSON.

    Use this for live fares, schedules and airline pages. Build the query
    from the structured flight query you were handed, not from the user's
    original wording.

    Args:
        query: The search query string.
        prefer_domains: Optional list of domains to restrict the search to
            (e.g. official airline sites).

    Returns:
        A JSON list of at most five results with title, url and snippet.
    """
    api_key = os.environ.get("TAVILY_API_KEY", "")
    if not api_key:
        raise RuntimeError("TAVILY_API_KEY environment variable is not set")

    client = AsyncTavilyClient(api_key=api_key)
    response = await client.search(
        query=query,
        max_results=_MAX_RESULTS,
        search_depth="basic",
        include_domains=prefer_domains or None,
    )
    results = response.get("results", [])
    logger.info(f"web_search {query!r}: {len(results)} result(s)")

    trimmed = []
    for r in results[:_MAX_RESULTS]:
        content = (r.get("content") or "").strip()
        trimmed.append(
            {
                "title": r.get("title", "Untitled"),
                "url": r.get("url", ""),
                "snippet": content[:300] + "..." if len(content) > 300 else content,
            }
        )
    return json.dumps(trimmed)
