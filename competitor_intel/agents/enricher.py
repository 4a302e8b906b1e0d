from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from competitor_intel.agents.query_generator import business_context_block
from competitor_intel.config import settings
from competitor_intel.models.research import Category, Document, ResearchState, ResearchStep
from competitor_intel.services.capabilities import QUICK, Capabilities
from competitor_intel.services.gateway import LLM
from competitor_intel.services.output_parsers import age_in_days
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.prompt_store import render_category_prompt, render_prompt

ENRICH_MAX_TOKENS = 1000
ENRICH_TEMPERATURE = 0.5
CROSS_MAX_TOKENS = 800
CROSS_TEMPERATURE = 0.4


@dataclass(slots=True)
class EnrichmentSummary:
    enriched: list[Category] = field(default_factory=list)
    skipped: list[Category] = field(default_factory=list)
    failed: list[Category] = field(default_factory=list)
    cross_category: bool = False


class Enricher:
    """Writes a deeper per-category analysis from curated documents."""

    def __init__(
        self,
        capabilities: Capabilities,
        *,
        max_documents: int | None = None,
        recent_months: int | None = None,
        excerpt_chars: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.capabilities = capabilities
        self.max_documents = max_documents or settings.enrich_max_documents
        self.recent_months = recent_months or settings.enrich_recent_months
        self.excerpt_chars = excerpt_chars or settings.enrich_excerpt_chars
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def select_documents(self, documents: list[Document]) -> list[Document]:
        """Recent documents first, newest first; the whole pool when nothing is recent."""
        now = self._clock()
        max_age = self.recent_months * 30
        dated: list[tuple[float, int, Document]] = []
        for index, doc in enumerate(documents):
            age = age_in_days(doc.published, now)
            if age is not None and age <= max_age:
                dated.append((age, index, doc))
        if dated:
            dated.sort(key=lambda item: (item[0], item[1]))
            return [doc for _, _, doc in dated[: self.max_documents]]
        return documents[: self.max_documents]

    def format_documents(self, documents: list[Document]) -> str:
        blocks = []
        for doc in documents:
            blocks.append(
                f"Source: {doc.title or doc.url} ({doc.url})\n"
                f"Date: {doc.published or 'unknown'}\n"
                f"Content: {doc.excerpt(self.excerpt_chars)}"
            )
        return "\n\n".join(blocks)

    async def enrich_category(self, state: ResearchState, category: Category) -> str | None:
        documents = list(state.category_data(category).values())
        if not documents:
            return None
        selected = self.select_documents(documents)
        prompt = render_category_prompt(
            "enricher",
            category,
            company=state.company,
            industry=state.industry,
            context=business_context_block(state),
            documents=self.format_documents(selected),
            year=self._clock().year,
        )
        result = await self.capabilities.generate(
            prompt,
            tier=QUICK,
            max_tokens=ENRICH_MAX_TOKENS,
            temperature=ENRICH_TEMPERATURE,
            caller=f"enricher.{category.value}",
        )
        if not result.ok:
            logger.warning(f"Enrichment failed for {category.value}: {result.error}")
            return None
        text = (result.value or "").strip()
        return text or None

    async def cross_reference(self, state: ResearchState) -> str | None:
        analyses = [
            f"Analysis {index} ({category.value}):\n{text}"
            for index, (category, text) in enumerate(state.enrichments.items(), start=1)
        ]
        prompt = render_prompt(
            "enricher.cross_category",
            company=state.company,
            industry=state.industry,
            analyses="\n\n".join(analyses),
        )
        result = await self.capabilities.generate(
            prompt,
            tier=QUICK,
            max_tokens=CROSS_MAX_TOKENS,
            temperature=CROSS_TEMPERATURE,
            caller="enricher.cross_category",
        )
        if not result.ok:
            logger.warning(f"Cross-category synthesis failed: {result.error}")
            return None
        return (result.value or "").strip() or None

    async def enrich(self, state: ResearchState, reporter: ProgressReporter) -> EnrichmentSummary:
        step = ResearchStep.ENRICHER.value
        summary = EnrichmentSummary()
        first = True
        for category in Category:
            if not state.category_data(category):
                summary.skipped.append(category)
                continue
            if not first:
                await self.capabilities.pause(LLM)
            first = False
            await reporter.status(step, f"Enriching {category.value} analysis", category=category.value)
            text = await self.enrich_category(state, category)
            if text is None:
                summary.failed.append(category)
                continue
            state.enrichments[category] = text
            summary.enriched.append(category)

        if len(state.enrichments) >= 2:
            await self.capabilities.pause(LLM)
            await reporter.status(step, "Cross-referencing category analyses")
            insights = await self.cross_reference(state)
            if insights:
                state.cross_category_insights = insights
                summary.cross_category = True

        logger.info(
            f"Enriched {len(summary.enriched)} categories "
            f"(skipped {len(summary.skipped)}, failed {len(summary.failed)})"
        )
        await reporter.status(
            step,
            f"Enriched {len(summary.enriched)} categories",
            enriched=[category.value for category in summary.enriched],
            cross_category=summary.cross_category,
        )
        return summary
