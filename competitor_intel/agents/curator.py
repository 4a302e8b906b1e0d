from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.errors import ParseError
from competitor_intel.models.research import (
    Category,
    Document,
    ReferenceInfo,
    ResearchState,
    ResearchStep,
)
from competitor_intel.services.capabilities import QUICK, Capabilities
from competitor_intel.services.gateway import LLM
from competitor_intel.services.output_parsers import parse_score_list, split_score_tokens
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.prompt_store import render_prompt

SCORE_MAX_TOKENS = 100
SCORE_TEMPERATURE = 0.3
SNIPPET_CHARS = 200


@dataclass(slots=True)
class CurationSummary:
    scored: int = 0
    kept: int = 0
    dropped: int = 0
    failed_batches: int = 0
    threshold: float = 0.0
    top_score: float | None = None


class Curator:
    """Scores every collected document once and keeps those above the threshold."""

    def __init__(
        self,
        capabilities: Capabilities,
        *,
        batch_size: int | None = None,
        threshold: float | None = None,
        default_score: float | None = None,
    ):
        self.capabilities = capabilities
        self.batch_size = max(batch_size or settings.curator_batch_size, 1)
        self.threshold = threshold if threshold is not None else settings.curator_relevance_threshold
        self.default_score = (
            default_score if default_score is not None else settings.curator_default_score
        )

    def build_prompt(self, state: ResearchState, batch: list[Document]) -> str:
        entries = []
        for index, doc in enumerate(batch, start=1):
            category = doc.category.value if doc.category else "company"
            snippet = (doc.snippet or doc.content[:SNIPPET_CHARS]).strip()
            entries.append(f"{index}. [{category}] Title: {doc.title}\nSnippet: {snippet}...\n")
        return render_prompt(
            "curator.score",
            company=state.company,
            industry=state.industry,
            documents="\n".join(entries),
            count=len(batch),
        )

    async def score_batch(self, state: ResearchState, batch: list[Document]) -> tuple[list[float], bool]:
        """Scores for ``batch`` in order, and whether the batch fell back entirely to defaults."""
        result = await self.capabilities.generate(
            self.build_prompt(state, batch),
            tier=QUICK,
            max_tokens=SCORE_MAX_TOKENS,
            temperature=SCORE_TEMPERATURE,
            caller="curator",
        )
        if not result.ok:
            logger.warning(f"Scoring batch failed, using default {self.default_score}: {result.error}")
            return [self.default_score] * len(batch), True

        try:
            parsed = parse_score_list(result.value, len(batch))
        except ParseError as exc:
            logger.warning(f"Unparseable scores, using default {self.default_score}: {exc}")
            return [self.default_score] * len(batch), True

        returned = len(split_score_tokens(result.value))
        missing = sum(1 for score in parsed if score is None)
        if returned != len(batch) or missing:
            logger.warning(
                f"Score count mismatch: expected {len(batch)}, got {returned} "
                f"({missing} positions defaulted)"
            )
        return [self.default_score if score is None else score for score in parsed], False

    async def curate(self, state: ResearchState, reporter: ProgressReporter) -> CurationSummary:
        step = ResearchStep.CURATOR.value
        documents = list(state.collected.values())
        summary = CurationSummary(threshold=self.threshold)
        if not documents:
            await reporter.status(step, "No documents to curate", curated_documents=0)
            state.documents = {category: {} for category in Category}
            return summary

        batches = [
            documents[start : start + self.batch_size]
            for start in range(0, len(documents), self.batch_size)
        ]
        scored: list[Document] = []
        for number, batch in enumerate(batches, start=1):
            if number > 1:
                await self.capabilities.pause(LLM)
            await reporter.status(
                step,
                f"Scoring batch {number}/{len(batches)}",
                current_batch=number,
                total_batches=len(batches),
            )
            scores, failed = await self.score_batch(state, batch)
            if failed:
                summary.failed_batches += 1
            scored.extend(doc.with_score(score) for doc, score in zip(batch, scores))

        survivors = sorted(
            (doc for doc in scored if (doc.relevance_score or 0.0) >= self.threshold),
            key=lambda doc: doc.relevance_score or 0.0,
            reverse=True,
        )

        curated: dict[Category, dict[str, Document]] = {category: {} for category in Category}
        for doc in survivors:
            for category in doc.categories or [Category.COMPANY]:
                curated[category][doc.url] = doc.copy()
            state.reference_info[doc.url] = ReferenceInfo(
                title=doc.title, date=doc.published, relevance_score=doc.relevance_score
            )
            state.reference_titles[doc.url] = doc.title

        state.collected = {doc.url: doc for doc in scored}
        state.documents = curated

        summary.scored = len(scored)
        summary.kept = len(survivors)
        summary.dropped = len(scored) - len(survivors)
        summary.top_score = survivors[0].relevance_score if survivors else None
        logger.info(
            f"Curator kept {summary.kept}/{summary.scored} documents "
            f"(threshold {self.threshold}, {summary.failed_batches} failed batches)"
        )
        await reporter.status(
            step,
            f"Curated {summary.kept} relevant documents from {summary.scored} total",
            curated_documents=summary.kept,
            total_documents=summary.scored,
            threshold=self.threshold,
        )
        return summary
