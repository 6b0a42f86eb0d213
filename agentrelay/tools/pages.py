"""Page writer tool — saves generated HTML/CSS into the public directory.

The directory defaults to ``./public`` and can be moved with the
AGENTRELAY_PUBLIC_DIR environment variable.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from langchain_core.tools import tool

from agentrelay.tools import register

logger = logging.getLogger(__name__)

_ALLOWED_SUFFIXES = {".html", ".css"}
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def public_dir() -> Path:
    return Path(os.environ.get("AGENTRELAY_PUBLIC_DIR", "public"))


def safe_filename(filename: str) -> str:
    """Reduce ``filename`` to a flat name inside the public directory."""
    name = _UNSAFE_CHARS.sub("-", Path(filename).name).strip("-.")
    if not name:
        raise ValueError(f"Invalid file name {filename!r}")
    if Path(name).suffix.lower() not in _ALLOWED_SUFFIXES:
        raise ValueError(f"Only {sorted(_ALLOWED_SUFFIXES)} files may be written, got {filename!r}")
    return name


@register
@tool
def write_page(filename: str, content: str) -> str:
    """Write an HTML or CSS file into the public directory.

    Name files after the trip, e.g. ``winnipeg-new-york-2025-12-25.html``
    and the matching ``.css``.

    Args:
        filename: File name ending in .html or .css. Directories are ignored.
        content: The full file contents.

    Returns:
        The path the file was written to.
    """
    target_dir = public_dir()
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / safe_filename(filename)
    path.write_text(content, encoding="utf-8")
    logger.info(f"write_page: wrote {len(content)} chars to {path}")
    return str(path)
