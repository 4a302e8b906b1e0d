from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FakeSearchClient
from competitor_intel.agents.analyzers import (
    CategoryResearch,
    CompanyAnalyzer,
    FinancialAnalyst,
    IndustryAnalyzer,
    NewsScanner,
    default_analyzers,
)
from competitor_intel.models.events import EventType
from competitor_intel.models.research import Category, Document, Provenance, ResearchState
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.search_executor import SearchExecutor
from competitor_intel.tools.tavily_search import SearchHit

NOW = datetime(2025, 6, 15, tzinfo=timezone.utc)


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    def of(self, event_type):
        return [event for event in self.events if event.event is event_type]


@pytest.fixture
def state() -> ResearchState:
    return ResearchState(company="Acme", industry="Software")


@pytest.mark.asyncio
async def test_company_analyzer_adds_targeted_queries(capabilities, text_client, extractor, state):
    text_client.when("company fundamentals", "Acme products\nAcme leadership")
    text_client.when("authoritative sources", "acme crunchbase\nACME PRODUCTS\nacme about\nacme revenue\nacme extra")
    recorder = Recorder()

    update = await CompanyAnalyzer(capabilities).analyze(state, ProgressReporter(recorder))

    assert update.category is Category.COMPANY
    assert update.queries == ["Acme products", "Acme leadership", "acme crunchbase", "acme about"]
    assert len(extractor.calls) == 5
    assert update.stats["extracted"] == 5
    assert recorder.of(EventType.QUERY_GENERATED)[0].data["queries"] == update.queries
    found = recorder.of(EventType.DOCUMENTS_FOUND)[0]
    assert found.data["documents_found"] == len(update.documents)
    assert recorder.of(EventType.CONTENT_EXTRACTED)


@pytest.mark.asyncio
async def test_company_analyzer_skips_fallback_targeted_queries(capabilities, text_client, state):
    text_client.when("company fundamentals", "Acme products")
    text_client.when("authoritative sources", ValueError("invalid api key"))

    update = await CompanyAnalyzer(capabilities).analyze(state, ProgressReporter())

    assert update.queries == ["Acme products"]


@pytest.mark.asyncio
async def test_analyzer_does_not_write_state(capabilities, text_client, state):
    text_client.when("industry analysis", "Acme market")

    update = await IndustryAnalyzer(capabilities).analyze(state, ProgressReporter())

    assert update.documents
    assert state.documents[Category.INDUSTRY] == {}
    assert state.queries == {}


@pytest.mark.asyncio
async def test_site_documents_seed_every_category(capabilities, text_client, state):
    site = Document(url="https://acme.com", title="Acme", content="home", provenance=Provenance.SITE_GROUNDING)
    state.site_documents[site.url] = site
    text_client.when("financial analysis", "Acme revenue")

    update = await FinancialAnalyst(capabilities).analyze(state, ProgressReporter())

    assert "https://acme.com" in update.documents
    assert update.documents["https://acme.com"] is not site
    assert update.stats["seeded"] == 1
    assert update.documents["https://acme.com"].provenance is Provenance.SITE_GROUNDING


@pytest.mark.asyncio
async def test_extraction_failure_keeps_snippets(capabilities, text_client, extractor, state):
    text_client.when("financial analysis", "Acme revenue")
    extractor.fail_urls = {"https://acme-revenue.example.com/1", "https://acme-revenue.example.com/2"}

    update = await FinancialAnalyst(capabilities).analyze(state, ProgressReporter())

    assert update.stats["extracted"] == 0
    assert update.documents["https://acme-revenue.example.com/1"].content == "Snippet 1 about Acme revenue"


@pytest.mark.asyncio
async def test_news_scanner_drops_stale_dated_documents(capabilities, text_client, search_client, state):
    text_client.when("recent news", "Acme launch")
    query = "Acme launch 2025 OR 2024"
    search_client.hits[query] = [
        SearchHit(title="Fresh", url="https://news.example.com/fresh", snippet="s", date="2025-05-01", position=1),
        SearchHit(title="Stale", url="https://news.example.com/stale", snippet="s", date="2021-01-01", position=2),
        SearchHit(title="Undated", url="https://news.example.com/undated", snippet="s", position=3),
    ]

    research = CategoryResearch(capabilities, search_executor=SearchExecutor(capabilities, clock=lambda: NOW))
    scanner = NewsScanner(capabilities, research, clock=lambda: NOW)
    update = await scanner.analyze(state, ProgressReporter())

    assert set(update.documents) == {"https://news.example.com/fresh", "https://news.example.com/undated"}
    assert update.stats["dropped"] == 1


@pytest.mark.asyncio
async def test_news_scanner_uses_news_mode(capabilities, text_client, search_client, state):
    text_client.when("recent news", "Acme launch")

    await NewsScanner(capabilities).analyze(state, ProgressReporter())

    assert search_client.calls
    assert all(call["news_mode"] for call in search_client.calls)


@pytest.mark.asyncio
async def test_analyzer_survives_search_outage(capabilities, text_client, state):
    capabilities.search_client = FakeSearchClient(failures={"Acme market": ValueError("forbidden")})
    text_client.when("industry analysis", "Acme market")

    update = await IndustryAnalyzer(capabilities).analyze(state, ProgressReporter())

    assert update.documents == {}
    assert update.stats["failed_queries"] == 1


def test_default_analyzers_cover_every_category(capabilities):
    analyzers = default_analyzers(capabilities)

    assert [analyzer.category for analyzer in analyzers] == list(Category)
