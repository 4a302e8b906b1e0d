from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from competitor_intel.models.research import Category
from competitor_intel.services.prompt_store import (
    check_catalog,
    has_prompt,
    render_category_prompt,
    render_prompt,
)


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt(
        "query.company_sources",
        company="Acme",
        company_domain="acme.com",
        year=2025,
    )
    assert "site:acme.com/about" in prompt
    assert "current year 2025" in prompt


def test_render_prompt_joins_line_lists():
    prompt = render_prompt("grounding.industry_detection", company="Acme", description="")

    assert prompt.splitlines()[0] == "What industry is Acme in?"


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_reports_missing_value():
    with pytest.raises(KeyError, match="company"):
        render_prompt("grounding.industry_detection", description="")


def test_every_stage_prompt_is_present():
    for key in (
        "query.instruction",
        "query.company",
        "query.industry",
        "query.financial",
        "query.news",
        "curator.score",
        "enricher.company",
        "enricher.cross_category",
        "briefing.news",
        "editor.compile",
        "editor.polish",
    ):
        assert has_prompt(key), key
    assert not has_prompt("common")


def test_bundled_catalog_passes_check():
    check_catalog()


def test_category_prompt_uses_category_key():
    prompt = render_category_prompt(
        "enricher",
        Category.NEWS,
        company="Acme",
        industry="Software",
        context="",
        documents="Source: x",
        year=2025,
    )

    assert "news research data for Acme" in prompt


def test_custom_catalog_missing_prompts_are_reported(tmp_path):
    catalog = tmp_path / "prompts.json"
    catalog.write_text(json.dumps({"query": {"instruction": "One per line."}}), encoding="utf-8")

    with patch("competitor_intel.services.prompt_store.settings") as mock_settings:
        mock_settings.prompts_path = str(catalog)
        assert render_prompt("query.instruction") == "One per line."
        with pytest.raises(KeyError) as excinfo:
            check_catalog()

    message = str(excinfo.value)
    assert "briefing.news" in message
    assert "editor.polish" in message
    assert "query.instruction" not in message
