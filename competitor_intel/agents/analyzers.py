"""The four category analyzers.

Each analyzer reads the shared ResearchState but never writes it; the
orchestrator applies the returned CategoryUpdate once the fan-out joins.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Protocol

from loguru import logger

from competitor_intel.agents.query_generator import QueryGenerator
from competitor_intel.config import settings
from competitor_intel.models.research import (
    ANALYZER_STEPS,
    Category,
    Document,
    ResearchState,
    ResearchStep,
)
from competitor_intel.services import progress
from competitor_intel.services.capabilities import Capabilities
from competitor_intel.services.output_parsers import age_in_days
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.search_executor import ContentFetcher, SearchExecutor

TARGETED_QUERY_LIMIT = 3

DocumentFilter = Callable[[dict[str, Document]], int]


@dataclass
class CategoryUpdate:
    category: Category
    documents: dict[str, Document] = field(default_factory=dict)
    queries: list[str] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)


class CategoryAnalyzer(Protocol):
    category: Category
    step: ResearchStep

    async def analyze(self, state: ResearchState, reporter: ProgressReporter) -> CategoryUpdate: ...


def _merge_queries(*batches: list[str]) -> list[str]:
    merged: list[str] = []
    seen: set[str] = set()
    for batch in batches:
        for query in batch:
            key = query.lower()
            if key not in seen:
                seen.add(key)
                merged.append(query)
    return merged


class CategoryResearch:
    """Seed, generate queries, search, then extract for one category."""

    def __init__(
        self,
        capabilities: Capabilities,
        *,
        query_generator: QueryGenerator | None = None,
        search_executor: SearchExecutor | None = None,
        content_fetcher: ContentFetcher | None = None,
    ):
        self.capabilities = capabilities
        self.query_generator = query_generator or QueryGenerator(capabilities)
        self.search_executor = search_executor or SearchExecutor(capabilities)
        self.content_fetcher = content_fetcher or ContentFetcher(capabilities)

    async def run(
        self,
        state: ResearchState,
        reporter: ProgressReporter,
        *,
        category: Category,
        queries: list[str],
        extract_limit: int,
        news_mode: bool = False,
        document_filter: DocumentFilter | None = None,
    ) -> CategoryUpdate:
        step = ANALYZER_STEPS[category].value
        documents = {url: doc.copy() for url, doc in state.site_documents.items()}
        seeded = len(documents)
        await reporter.emit(progress.queries_generated(step, queries, category=category.value))

        await reporter.status(step, f"Searching for {category.value} information", queries=queries)
        outcome = await self.search_executor.search_all(
            queries, documents, news_mode=news_mode, caller=step
        )
        dropped = document_filter(documents) if document_filter else 0

        await reporter.emit(
            progress.documents_found(
                step,
                len(documents),
                category=category.value,
                queries=queries,
                seeded=seeded,
                dropped=dropped,
            )
        )

        fetched = await self.content_fetcher.fetch(documents, extract_limit, caller=step)
        await reporter.emit(
            progress.content_extracted(
                step, len(fetched.extracted), len(fetched.attempted), category=category.value
            )
        )

        return CategoryUpdate(
            category=category,
            documents=documents,
            queries=list(queries),
            stats={
                "seeded": seeded,
                "searched": outcome.queries_run,
                "failed_queries": outcome.queries_failed,
                "added": outcome.added,
                "dropped": dropped,
                "extracted": len(fetched.extracted),
            },
        )


class CompanyAnalyzer:
    category = Category.COMPANY
    step = ResearchStep.COMPANY_ANALYZER

    def __init__(self, capabilities: Capabilities, research: CategoryResearch | None = None):
        self.research = research or CategoryResearch(capabilities)

    async def analyze(self, state: ResearchState, reporter: ProgressReporter) -> CategoryUpdate:
        await reporter.status(self.step.value, "Generating company analysis queries")
        generator = self.research.query_generator
        base = await generator.generate(state, "company", category=self.category)
        targeted = await generator.generate(state, "company_sources", category=self.category)
        extra = [] if targeted.used_fallback else targeted.queries[:TARGETED_QUERY_LIMIT]
        queries = _merge_queries(base.queries, extra)
        return await self.research.run(
            state,
            reporter,
            category=self.category,
            queries=queries,
            extract_limit=settings.extract_limit_for(self.category.value),
        )


class IndustryAnalyzer:
    category = Category.INDUSTRY
    step = ResearchStep.INDUSTRY_ANALYZER

    def __init__(self, capabilities: Capabilities, research: CategoryResearch | None = None):
        self.research = research or CategoryResearch(capabilities)

    async def analyze(self, state: ResearchState, reporter: ProgressReporter) -> CategoryUpdate:
        await reporter.status(self.step.value, "Generating industry analysis queries")
        batch = await self.research.query_generator.generate(state, "industry", category=self.category)
        return await self.research.run(
            state,
            reporter,
            category=self.category,
            queries=batch.queries,
            extract_limit=settings.extract_limit_for(self.category.value),
        )


class FinancialAnalyst:
    category = Category.FINANCIAL
    step = ResearchStep.FINANCIAL_ANALYST

    def __init__(self, capabilities: Capabilities, research: CategoryResearch | None = None):
        self.research = research or CategoryResearch(capabilities)

    async def analyze(self, state: ResearchState, reporter: ProgressReporter) -> CategoryUpdate:
        await reporter.status(self.step.value, "Generating financial analysis queries")
        batch = await self.research.query_generator.generate(state, "financial", category=self.category)
        return await self.research.run(
            state,
            reporter,
            category=self.category,
            queries=batch.queries,
            extract_limit=settings.extract_limit_for(self.category.value),
        )


class NewsScanner:
    category = Category.NEWS
    step = ResearchStep.NEWS_SCANNER

    def __init__(
        self,
        capabilities: Capabilities,
        research: CategoryResearch | None = None,
        *,
        max_age_days: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.research = research or CategoryResearch(capabilities)
        self.max_age_days = max_age_days if max_age_days is not None else settings.news_max_age_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def drop_stale(self, documents: dict[str, Document]) -> int:
        """Remove dated documents older than the cutoff; undated ones stay."""
        now = self._clock()
        stale = [
            url
            for url, doc in documents.items()
            if (age := age_in_days(doc.published, now)) is not None and age > self.max_age_days
        ]
        for url in stale:
            del documents[url]
        if stale:
            logger.info(f"News scanner dropped {len(stale)} documents older than {self.max_age_days} days")
        return len(stale)

    async def analyze(self, state: ResearchState, reporter: ProgressReporter) -> CategoryUpdate:
        await reporter.status(self.step.value, "Generating news analysis queries")
        batch = await self.research.query_generator.generate(state, "news", category=self.category)
        return await self.research.run(
            state,
            reporter,
            category=self.category,
            queries=batch.queries,
            extract_limit=settings.extract_limit_for(self.category.value),
            news_mode=True,
            document_filter=self.drop_stale,
        )


def default_analyzers(capabilities: Capabilities) -> list[CategoryAnalyzer]:
    return [
        CompanyAnalyzer(capabilities),
        IndustryAnalyzer(capabilities),
        FinancialAnalyst(capabilities),
        NewsScanner(capabilities),
    ]
