from __future__ import annotations

from datetime import datetime, timezone

import pytest

from conftest import FakeExtractor, FakeSearchClient, make_gateway, no_sleep
from competitor_intel.models.research import Document, Provenance
from competitor_intel.services.capabilities import Capabilities
from competitor_intel.services.search_executor import (
    ContentFetcher,
    SearchExecutor,
    hit_to_document,
    news_query,
)
from competitor_intel.tools.tavily_search import SearchHit

NOW = datetime(2025, 6, 15, tzinfo=timezone.utc)


def build(text_client, search_client=None, extractor=None) -> Capabilities:
    return Capabilities(
        make_gateway(),
        text_client,
        search_client or FakeSearchClient(),
        extractor or FakeExtractor(),
        pacing={},
        sleep=no_sleep,
    )


def test_news_query_appends_current_and_prior_year():
    assert news_query("Acme launches", NOW) == "Acme launches 2025 OR 2024"


def test_hit_to_document_uses_snippet_as_content():
    doc = hit_to_document(
        SearchHit(title="T", url="https://a.example.com", snippet=" s ", date="2025-01-01", position=2),
        "q",
    )

    assert doc.content == "s"
    assert doc.snippet == "s"
    assert doc.query == "q"
    assert doc.position == 2
    assert doc.provenance is Provenance.SEARCH


@pytest.mark.asyncio
async def test_first_occurrence_of_url_wins(text_client):
    shared = SearchHit(title="Shared", url="https://shared.example.com", snippet="x", position=1)
    search = FakeSearchClient(
        hits={
            "first": [shared],
            "second": [SearchHit(title="Other", url="https://shared.example.com", snippet="y", position=1)],
        }
    )
    executor = SearchExecutor(build(text_client, search), clock=lambda: NOW)
    documents: dict[str, Document] = {}

    outcome = await executor.search_all(["first", "second"], documents)

    assert list(documents) == ["https://shared.example.com"]
    assert documents["https://shared.example.com"].query == "first"
    assert documents["https://shared.example.com"].title == "Shared"
    assert outcome.added == 1
    assert outcome.queries_run == 2


@pytest.mark.asyncio
async def test_seeded_documents_are_not_overwritten(text_client):
    search = FakeSearchClient(
        hits={"q": [SearchHit(title="Hit", url="https://acme.example.com", snippet="s", position=1)]}
    )
    executor = SearchExecutor(build(text_client, search))
    seeded = Document(url="https://acme.example.com", title="Home", provenance=Provenance.SITE_GROUNDING)
    documents = {seeded.url: seeded}

    await executor.search_all(["q"], documents)

    assert documents[seeded.url].title == "Home"
    assert documents[seeded.url].provenance is Provenance.SITE_GROUNDING


@pytest.mark.asyncio
async def test_failed_query_is_counted_not_raised(text_client):
    search = FakeSearchClient(failures={"broken": ValueError("invalid api key")})
    executor = SearchExecutor(build(text_client, search))
    documents: dict[str, Document] = {}

    outcome = await executor.search_all(["broken", "fine"], documents)

    assert outcome.queries_failed == 1
    assert len(documents) == 8


@pytest.mark.asyncio
async def test_news_mode_biases_query_and_falls_back(text_client):
    search = FakeSearchClient(results_per_query=2, fail_news=True)
    executor = SearchExecutor(build(text_client, search), clock=lambda: NOW)
    documents: dict[str, Document] = {}

    outcome = await executor.search_all(["Acme launch"], documents, news_mode=True)

    news_calls = [call for call in search.calls if call["news_mode"]]
    generic_calls = [call for call in search.calls if not call["news_mode"]]
    assert news_calls and news_calls[0]["query"] == "Acme launch 2025 OR 2024"
    assert generic_calls[0]["query"] == "Acme launch"
    assert outcome.fallbacks == 1
    assert len(documents) == 2


def test_select_candidates_ranks_by_position_and_skips_extracted():
    documents = {
        "https://c.example.com": Document(url="https://c.example.com", position=3),
        "https://a.example.com": Document(url="https://a.example.com", position=1),
        "https://site.example.com": Document(url="https://site.example.com", provenance=Provenance.SITE_GROUNDING),
        "https://b.example.com": Document(url="https://b.example.com", position=2),
        "https://none.example.com": Document(url="https://none.example.com"),
    }

    assert ContentFetcher.select_candidates(documents, 3) == [
        "https://a.example.com",
        "https://b.example.com",
        "https://c.example.com",
    ]


@pytest.mark.asyncio
async def test_fetch_replaces_content_and_keeps_snippet_on_failure(text_client):
    extractor = FakeExtractor(fail_urls={"https://b.example.com"}, metadata={"published": "2025-05-01"})
    fetcher = ContentFetcher(build(text_client, extractor=extractor), max_parallel=2)
    documents = {
        "https://a.example.com": Document(url="https://a.example.com", content="snip a", snippet="snip a", position=1),
        "https://b.example.com": Document(url="https://b.example.com", content="snip b", snippet="snip b", position=2),
    }

    outcome = await fetcher.fetch(documents, 5)

    a = documents["https://a.example.com"]
    b = documents["https://b.example.com"]
    assert a.provenance is Provenance.EXTRACTION
    assert a.content.startswith("Full article text")
    assert a.published == "2025-05-01"
    assert a.extracted_at is not None
    assert b.provenance is Provenance.SEARCH
    assert b.content == "snip b"
    assert outcome.extracted == ["https://a.example.com"]
    assert outcome.failed == ["https://b.example.com"]


@pytest.mark.asyncio
async def test_fetch_respects_limit(text_client):
    extractor = FakeExtractor()
    fetcher = ContentFetcher(build(text_client, extractor=extractor))
    documents = {
        f"https://{i}.example.com": Document(url=f"https://{i}.example.com", position=i) for i in range(1, 7)
    }

    outcome = await fetcher.fetch(documents, 2)

    assert len(extractor.calls) == 2
    assert len(outcome.attempted) == 2
