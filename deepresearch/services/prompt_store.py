"""Prompt catalog for the research agents.

Prompts live in ``prompts/prompts.json`` as a nested object addressed with
dotted keys (``planner.system_prompt``, ``synthesizer.domains.textile``).
A value may be a string or a list of lines. ``$name`` placeholders are
filled with :class:`string.Template`.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any

CATALOG_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


@lru_cache(maxsize=4)
def _read_catalog(path: str, mtime_ns: int) -> dict[str, Any]:
    catalog = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"Prompt catalog {path} must hold a JSON object")
    return catalog


def _catalog() -> dict[str, Any]:
    # Keyed on mtime so edits to the JSON are picked up without a restart
    return _read_catalog(str(CATALOG_PATH), CATALOG_PATH.stat().st_mtime_ns)


def _lookup(key: str) -> str:
    node: Any = _catalog()
    for part in key.split("."):
        node = node.get(part) if isinstance(node, dict) else None
        if node is None:
            raise KeyError(f"Prompt key not found: {key}")
    if isinstance(node, list):
        return "\n".join(str(line) for line in node)
    if isinstance(node, str):
        return node
    raise TypeError(f"Prompt key {key} holds a section, not a prompt")


def has_prompt(key: str) -> bool:
    try:
        _lookup(key)
    except (KeyError, TypeError):
        return False
    return True


def render_prompt(key: str, **values: Any) -> str:
    try:
        return Template(_lookup(key)).substitute(values)
    except KeyError as exc:
        if str(exc.args[0]).startswith("Prompt key"):
            raise
        raise KeyError(f"Prompt {key} needs a value for {exc.args[0]!r}") from exc


def clear_prompt_cache() -> None:
    _read_catalog.cache_clear()
