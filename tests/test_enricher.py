from __future__ import annotations

from datetime import datetime, timezone

import pytest

from competitor_intel.agents.enricher import Enricher
from competitor_intel.models.research import Category, Document, ResearchState
from competitor_intel.services.progress import ProgressReporter

NOW = datetime(2025, 6, 15, tzinfo=timezone.utc)


def doc(url: str, published: str | None = None, content: str = "body") -> Document:
    return Document(url=url, title=url.rsplit("/", 1)[-1], content=content, published=published)


def test_select_prefers_recent_newest_first(capabilities):
    enricher = Enricher(capabilities, max_documents=2, clock=lambda: NOW)
    documents = [
        doc("https://x.example.com/old", "2020-01-01"),
        doc("https://x.example.com/recent", "2025-01-01"),
        doc("https://x.example.com/undated"),
        doc("https://x.example.com/newest", "2025-06-01"),
    ]

    selected = enricher.select_documents(documents)

    assert [d.url for d in selected] == ["https://x.example.com/newest", "https://x.example.com/recent"]


def test_select_falls_back_to_unfiltered_pool(capabilities):
    enricher = Enricher(capabilities, max_documents=5, clock=lambda: NOW)
    documents = [doc(f"https://x.example.com/{i}") for i in range(7)]

    assert len(enricher.select_documents(documents)) == 5


def test_format_truncates_excerpts(capabilities):
    enricher = Enricher(capabilities, excerpt_chars=10)

    text = enricher.format_documents([doc("https://x.example.com/a", "2025-01-01", content="x" * 50)])

    assert "Content: " + "x" * 10 + "..." in text
    assert "Date: 2025-01-01" in text


@pytest.mark.asyncio
async def test_enrich_each_category_and_cross_reference(capabilities, text_client):
    state = ResearchState(company="Acme", industry="Software")
    state.documents[Category.COMPANY] = {"https://c.example.com": doc("https://c.example.com")}
    state.documents[Category.NEWS] = {"https://n.example.com": doc("https://n.example.com")}
    text_client.when("company research data", "Company insight")
    text_client.when("news research data", "News insight")
    text_client.when("identify key connections", "Cross insight")

    summary = await Enricher(capabilities, clock=lambda: NOW).enrich(state, ProgressReporter())

    assert state.enrichments == {Category.COMPANY: "Company insight", Category.NEWS: "News insight"}
    assert state.cross_category_insights == "Cross insight"
    assert summary.skipped == [Category.INDUSTRY, Category.FINANCIAL]
    cross_prompt = text_client.prompts_containing("identify key connections")[0]
    assert "Analysis 1 (company):\nCompany insight" in cross_prompt
    assert "Analysis 2 (news):\nNews insight" in cross_prompt
    enrich_call = text_client.calls[0]
    assert enrich_call["max_tokens"] == 1000
    assert enrich_call["temperature"] == 0.5


@pytest.mark.asyncio
async def test_single_failure_does_not_block_others(capabilities, text_client):
    state = ResearchState(company="Acme")
    state.documents[Category.COMPANY] = {"https://c.example.com": doc("https://c.example.com")}
    state.documents[Category.FINANCIAL] = {"https://f.example.com": doc("https://f.example.com")}
    text_client.when("company research data", ValueError("invalid api key"))
    text_client.when("financial research data", "Financial insight")

    summary = await Enricher(capabilities).enrich(state, ProgressReporter())

    assert summary.failed == [Category.COMPANY]
    assert state.enrichments == {Category.FINANCIAL: "Financial insight"}
    assert state.cross_category_insights is None
    assert not text_client.prompts_containing("identify key connections")
