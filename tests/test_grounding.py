from __future__ import annotations

import pytest

from conftest import FakeExtractor
from competitor_intel.agents.grounding import (
    Grounding,
    detect_hq_location,
    detect_industry_from_keywords,
)
from competitor_intel.models.research import (
    BusinessContext,
    CompetitorDescriptor,
    Provenance,
    ResearchOptions,
    ResearchState,
)
from competitor_intel.services.progress import ProgressReporter


@pytest.mark.parametrize(
    "text,expected",
    [
        ("A SaaS platform for developers building on the cloud", "Software"),
        ("Online payments and lending for small businesses", "Fintech"),
        ("We make the best anvils", None),
        ("Daily news about the weather", None),
        (None, None),
    ],
)
def test_detect_industry_from_keywords(text, expected):
    assert detect_industry_from_keywords(text) == expected


def test_keywords_match_whole_words_only():
    assert detect_industry_from_keywords("Maintained by a paid staff") is None


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Acme is headquartered in San Francisco, California.", "San Francisco, California"),
        ("Acme, headquartered in Berlin, makes anvils", "Berlin"),
        ("Acme makes anvils", "Unknown"),
        (None, "Unknown"),
    ],
)
def test_detect_hq_location(text, expected):
    assert detect_hq_location(text) == expected


@pytest.mark.asyncio
async def test_business_context_industry_wins(capabilities, text_client):
    grounding = Grounding(capabilities)

    industry, source = await grounding.resolve_industry(
        CompetitorDescriptor(name="Acme", description="A SaaS platform"),
        BusinessContext(industry="Aerospace"),
    )

    assert (industry, source) == ("Aerospace", "business_context")
    assert text_client.calls == []


@pytest.mark.asyncio
async def test_llm_detects_industry_when_keywords_miss(capabilities, text_client):
    text_client.when("What industry is", '"Manufacturing".')

    industry, source = await Grounding(capabilities).resolve_industry(
        CompetitorDescriptor(name="Acme", description="Makes anvils")
    )

    assert (industry, source) == ("Manufacturing", "llm")
    assert "Description: Makes anvils" in text_client.calls[0]["prompt"]
    assert text_client.calls[0]["max_tokens"] == 50


@pytest.mark.asyncio
async def test_llm_failure_uses_default_industry(capabilities, text_client):
    text_client.when("What industry is", ValueError("invalid api key"))

    industry, source = await Grounding(capabilities, default_industry="Technology").resolve_industry(
        CompetitorDescriptor(name="Acme")
    )

    assert (industry, source) == ("Technology", "default")


@pytest.mark.asyncio
async def test_ground_scrapes_website_once(capabilities, text_client, extractor):
    state = ResearchState(company="Acme")
    descriptor = CompetitorDescriptor(
        name="Acme", website="acme.com", description="Cloud software, headquartered in Austin, Texas"
    )

    summary = await Grounding(capabilities).ground(state, descriptor, ProgressReporter())

    assert summary.industry == "Software"
    assert summary.industry_source == "keywords"
    assert summary.site_scraped
    assert state.hq_location == "Austin, Texas"
    assert [call["url"] for call in extractor.calls] == ["https://acme.com"]
    assert extractor.calls[0]["timeout"] == 30.0
    doc = state.site_documents["https://acme.com"]
    assert doc.provenance is Provenance.SITE_GROUNDING
    assert doc.title == "Page https://acme.com"


@pytest.mark.asyncio
async def test_ground_respects_skip_option(capabilities, text_client, extractor):
    state = ResearchState(company="Acme")
    descriptor = CompetitorDescriptor(name="Acme", website="https://acme.com")

    summary = await Grounding(capabilities).ground(
        state, descriptor, ProgressReporter(), options=ResearchOptions(skip_website_scraping=True)
    )

    assert not summary.site_scraped
    assert extractor.calls == []
    assert state.site_documents == {}


@pytest.mark.asyncio
async def test_failed_scrape_is_not_fatal(capabilities, text_client):
    capabilities.extractor = FakeExtractor(fail_urls={"https://acme.com"})
    state = ResearchState(company="Acme")

    summary = await Grounding(capabilities).ground(
        state, CompetitorDescriptor(name="Acme", website="https://acme.com"), ProgressReporter()
    )

    assert not summary.site_scraped
    assert state.site_documents == {}
