"""JSON prompt catalog for the pipeline stages.

Keys are dotted paths (``briefing.news``). An entry is either a string or a
list of lines joined with newlines, rendered with ``string.Template``. Set
PROMPTS_PATH to point at a custom catalog; every stage prompt must exist in it.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

from competitor_intel.config import settings
from competitor_intel.models.research import Category

DEFAULT_CATALOG = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"

CATEGORY_STAGES = ("query", "enricher", "briefing")
STAGE_PROMPTS = (
    "common.context_block",
    "query.instruction",
    "query.company_sources",
    "grounding.industry_detection",
    "curator.score",
    "enricher.cross_category",
    "briefing.temporal",
    "briefing.enrichment_block",
    "editor.compile",
    "editor.polish",
)

# path -> (mtime_ns, catalog)
_catalogs: dict[Path, tuple[int, dict[str, Any]]] = {}


def catalog_path() -> Path:
    return Path(settings.prompts_path) if settings.prompts_path else DEFAULT_CATALOG


def load_catalog(path: Path | None = None) -> dict[str, Any]:
    """Load a catalog, re-reading it only when the file changed on disk."""
    path = path or catalog_path()
    mtime_ns = path.stat().st_mtime_ns
    cached = _catalogs.get(path)
    if cached is not None and cached[0] == mtime_ns:
        return cached[1]

    catalog = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(catalog, dict):
        raise ValueError(f"Prompt catalog must be a JSON object: {path}")
    _catalogs[path] = (mtime_ns, catalog)
    return catalog


def _lookup(key: str) -> str:
    node: Any = load_catalog()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(f"Prompt key not found: {key}")
        node = node[part]
    if isinstance(node, str):
        return node
    if isinstance(node, list) and all(isinstance(line, str) for line in node):
        return "\n".join(node)
    raise TypeError(f"Prompt {key} must be a string or a list of lines")


def has_prompt(key: str) -> bool:
    try:
        _lookup(key)
    except (KeyError, TypeError):
        return False
    return True


def required_prompts() -> list[str]:
    keys = [f"{stage}.{category.value}" for stage in CATEGORY_STAGES for category in Category]
    return keys + list(STAGE_PROMPTS)


def check_catalog() -> None:
    """Raise KeyError naming every stage prompt the active catalog lacks."""
    missing = [key for key in required_prompts() if not has_prompt(key)]
    if missing:
        raise KeyError(f"Prompt catalog {catalog_path()} is missing: {', '.join(missing)}")


def render_prompt(key: str, **values: Any) -> str:
    template = Template(_lookup(key))
    try:
        return template.substitute(**values)
    except KeyError as exc:
        raise KeyError(f"Prompt {key} needs a value for '{exc.args[0]}'") from exc


def render_category_prompt(stage: str, category: Category, **values: Any) -> str:
    return render_prompt(f"{stage}.{category.value}", **values)
