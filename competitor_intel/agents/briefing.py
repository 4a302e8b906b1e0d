from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.models.research import Category, Document, ResearchState, ResearchStep
from competitor_intel.services import progress
from competitor_intel.services.capabilities import QUICK, Capabilities
from competitor_intel.services.gateway import LLM
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.prompt_store import render_category_prompt, render_prompt

BRIEFING_MAX_TOKENS = 2000
BRIEFING_TEMPERATURE = 0.3


@dataclass(slots=True)
class BriefingSummary:
    generated: list[Category] = field(default_factory=list)
    empty: list[Category] = field(default_factory=list)
    failed: list[Category] = field(default_factory=list)


def top_documents(documents: list[Document], limit: int) -> list[Document]:
    # Stable sort keeps curator order between equal scores.
    ranked = sorted(documents, key=lambda doc: doc.relevance_score or 0.0, reverse=True)
    return ranked[:limit]


class Briefing:
    def __init__(
        self,
        capabilities: Capabilities,
        *,
        max_documents: int | None = None,
        excerpt_chars: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.capabilities = capabilities
        self.max_documents = max_documents or settings.briefing_max_documents
        self.excerpt_chars = excerpt_chars or settings.briefing_excerpt_chars
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def format_documents(self, documents: list[Document]) -> str:
        return "\n\n".join(
            f"Source: {doc.title or doc.url}\nURL: {doc.url}\nContent: {doc.excerpt(self.excerpt_chars)}"
            for doc in documents
        )

    def build_prompt(self, state: ResearchState, category: Category, documents: list[Document]) -> str:
        now = self._clock()
        enrichment = state.enrichments.get(category)
        temporal = render_prompt(
            "briefing.temporal",
            date=now.strftime("%B %d, %Y"),
            year=now.year,
            prior_year=now.year - 1,
        )
        return render_category_prompt(
            "briefing",
            category,
            company=state.company,
            industry=state.industry,
            temporal=temporal,
            documents=self.format_documents(documents),
            enrichment=render_prompt("briefing.enrichment_block", enrichment=enrichment) if enrichment else "",
            year=now.year,
            prior_year=now.year - 1,
        )

    async def brief_category(self, state: ResearchState, category: Category) -> str | None:
        documents = top_documents(list(state.category_data(category).values()), self.max_documents)
        if not documents:
            return None
        result = await self.capabilities.generate(
            self.build_prompt(state, category, documents),
            tier=QUICK,
            max_tokens=BRIEFING_MAX_TOKENS,
            temperature=BRIEFING_TEMPERATURE,
            caller=f"briefing.{category.value}",
        )
        if not result.ok:
            logger.warning(f"Briefing failed for {category.value}: {result.error}")
            return None
        return (result.value or "").strip() or None

    async def generate(self, state: ResearchState, reporter: ProgressReporter) -> BriefingSummary:
        step = ResearchStep.BRIEFING.value
        summary = BriefingSummary()
        first = True
        for category in Category:
            if not state.category_data(category):
                summary.empty.append(category)
                logger.info(f"No curated documents for {category.value}, skipping briefing")
                continue
            if not first:
                await self.capabilities.pause(LLM)
            first = False
            await reporter.status(step, f"Generating {category.value} briefing", category=category.value)
            text = await self.brief_category(state, category)
            if text is None:
                summary.failed.append(category)
                continue
            state.briefings[category] = text
            summary.generated.append(category)
            await reporter.emit(progress.briefing_generated(category.value, len(text)))

        logger.info(f"Generated {len(summary.generated)} briefings for {state.company}")
        return summary
