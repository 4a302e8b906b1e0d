from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.models.research import Document, Provenance, utc_now
from competitor_intel.services.capabilities import Capabilities
from competitor_intel.services.gateway import SEARCH
from competitor_intel.tools import web_utils
from competitor_intel.tools.tavily_search import SearchHit


@dataclass(slots=True)
class SearchOutcome:
    queries_run: int = 0
    queries_failed: int = 0
    added: int = 0
    fallbacks: int = 0


@dataclass(slots=True)
class FetchOutcome:
    attempted: list[str] = field(default_factory=list)
    extracted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def news_query(query: str, now: datetime) -> str:
    """Bias a query towards the current and prior year."""
    year = now.year
    return f"{query} {year} OR {year - 1}"


def hit_to_document(hit: SearchHit, query: str) -> Document:
    snippet = (hit.snippet or "").strip()
    return Document(
        url=hit.url,
        title=hit.title or "",
        content=snippet,
        snippet=snippet,
        query=query,
        published=hit.date,
        position=hit.position,
        provenance=Provenance.SEARCH,
    )


class SearchExecutor:
    """Runs a category's queries and merges hits into its document map."""

    def __init__(
        self,
        capabilities: Capabilities,
        *,
        result_count: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.capabilities = capabilities
        self.result_count = result_count or settings.search_results_per_query
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _search_news(self, query: str, outcome: SearchOutcome, caller: str) -> list[SearchHit] | None:
        result = await self.capabilities.search(
            news_query(query, self._clock()),
            result_count=self.result_count,
            news_mode=True,
            caller=caller,
        )
        if result.ok:
            return result.value or []
        logger.warning(f"News search failed for '{query}', using generic search: {result.error}")
        outcome.fallbacks += 1
        fallback = await self.capabilities.search(query, result_count=self.result_count, caller=caller)
        if fallback.ok:
            return fallback.value or []
        logger.warning(f"Fallback search failed for '{query}': {fallback.error}")
        return None

    async def search_all(
        self,
        queries: list[str],
        documents: dict[str, Document],
        *,
        news_mode: bool = False,
        caller: str = "",
    ) -> SearchOutcome:
        """Search every query; the first occurrence of a URL wins."""
        outcome = SearchOutcome()
        for index, query in enumerate(queries):
            if index:
                await self.capabilities.pause(SEARCH)
            outcome.queries_run += 1

            if news_mode:
                hits = await self._search_news(query, outcome, caller)
            else:
                result = await self.capabilities.search(
                    query, result_count=self.result_count, caller=caller
                )
                hits = result.value if result.ok else None
                if not result.ok:
                    logger.warning(f"Search failed for '{query}': {result.error}")

            if hits is None:
                outcome.queries_failed += 1
                continue

            for hit in hits:
                if not web_utils.is_valid_url(hit.url) or hit.url in documents:
                    continue
                documents[hit.url] = hit_to_document(hit, query)
                outcome.added += 1

        logger.info(
            f"{caller or 'search'}: {outcome.queries_run} queries, "
            f"{outcome.added} new documents, {outcome.queries_failed} failed"
        )
        return outcome


class ContentFetcher:
    """Replaces snippets with extracted page text for the top candidates."""

    def __init__(self, capabilities: Capabilities, *, max_parallel: int | None = None):
        self.capabilities = capabilities
        self.max_parallel = max(max_parallel or settings.extract_max_parallel, 1)

    @staticmethod
    def select_candidates(documents: dict[str, Document], limit: int) -> list[str]:
        ranked: list[tuple[float, int, str]] = []
        for order, (url, doc) in enumerate(documents.items()):
            if doc.provenance is not Provenance.SEARCH or not web_utils.is_valid_url(url):
                continue
            position = float(doc.position) if doc.position is not None else math.inf
            ranked.append((position, order, url))
        ranked.sort()
        return [url for _, _, url in ranked[: max(limit, 0)]]

    async def fetch(
        self,
        documents: dict[str, Document],
        limit: int,
        *,
        caller: str = "",
    ) -> FetchOutcome:
        outcome = FetchOutcome(attempted=self.select_candidates(documents, limit))
        if not outcome.attempted:
            return outcome
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def fetch_one(url: str) -> None:
            async with semaphore:
                result = await self.capabilities.extract(url, only_main_content=True, caller=caller)
            page = result.value if result.ok else None
            if page is None or not page.text.strip():
                outcome.failed.append(url)
                return
            doc = documents[url]
            doc.content = page.text
            doc.provenance = Provenance.EXTRACTION
            doc.extracted_at = utc_now()
            if not doc.title and page.title:
                doc.title = page.title
            published = page.metadata.get("published") if page.metadata else None
            if not doc.published and published:
                doc.published = str(published)
            outcome.extracted.append(url)

        await asyncio.gather(*(fetch_one(url) for url in outcome.attempted))
        logger.info(
            f"{caller or 'extract'}: extracted {len(outcome.extracted)}/{len(outcome.attempted)} pages"
        )
        return outcome
