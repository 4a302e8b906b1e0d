from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Sequence, Union

from loguru import logger

from competitor_intel.agents.analyzers import CategoryAnalyzer, CategoryUpdate, default_analyzers
from competitor_intel.agents.briefing import Briefing
from competitor_intel.agents.collector import collect
from competitor_intel.agents.curator import Curator
from competitor_intel.agents.editor import Editor
from competitor_intel.agents.enricher import Enricher
from competitor_intel.agents.grounding import Grounding
from competitor_intel.errors import FatalWorkflowError
from competitor_intel.models.events import ProgressEvent
from competitor_intel.models.research import (
    BusinessContext,
    Category,
    CompetitorDescriptor,
    ResearchMetadata,
    ResearchOptions,
    ResearchResult,
    ResearchState,
    ResearchStep,
    RunStatus,
    utc_now,
)
from competitor_intel.services import logger as log_service
from competitor_intel.services import progress
from competitor_intel.services.capabilities import (
    Capabilities,
    ContentExtractor,
    SearchClient,
    TextGenerator,
)
from competitor_intel.services.cost_tracker import CostTracker
from competitor_intel.services.gateway import RateLimitedGateway
from competitor_intel.services.progress import ProgressObserver, ProgressReporter
from competitor_intel.services.prompt_store import check_catalog
from competitor_intel.tools.llm_client import OpenRouterTextClient
from competitor_intel.tools.page_extractor import PageExtractor
from competitor_intel.tools.search_provider import WebSearchClient

AnalyzerFactory = Callable[[Capabilities], Sequence[CategoryAnalyzer]]
CompetitorInput = Union[CompetitorDescriptor, dict, str]


def coerce_competitor(competitor: CompetitorInput) -> CompetitorDescriptor:
    """Accept a descriptor, a plain dict or a bare company name."""
    if isinstance(competitor, CompetitorDescriptor):
        return competitor
    if isinstance(competitor, str):
        return CompetitorDescriptor(name=competitor)
    if isinstance(competitor, dict):
        return CompetitorDescriptor.model_validate(competitor)
    raise TypeError(f"Unsupported competitor input: {type(competitor).__name__}")


class ResearchOrchestrator:
    """Drives one competitor through the research pipeline.

    Flow:
      1. Grounding: industry, headquarters and an optional homepage scrape
      2. Fan out: the four category analyzers run as concurrent tasks
      3. Fan in: collector merges the category maps once all four finish
      4. Curator, enricher and briefing run sequentially
      5. Editor compiles, then streams a polished report

    Collaborators are injected; anything omitted is built from settings.
    The gateway is shared by every run of this orchestrator, while each run
    gets its own CostTracker.
    """

    def __init__(
        self,
        gateway: RateLimitedGateway | None = None,
        text_client: TextGenerator | None = None,
        search_client: SearchClient | None = None,
        extractor: ContentExtractor | None = None,
        analyzers: Sequence[CategoryAnalyzer] | AnalyzerFactory | None = None,
        options: ResearchOptions | None = None,
        *,
        clock: Callable[[], float] | None = None,
        pacing: dict[str, float] | None = None,
    ):
        self.gateway = gateway or RateLimitedGateway()
        self.text_client = text_client or OpenRouterTextClient()
        self.search_client = search_client or WebSearchClient()
        self.extractor = extractor or PageExtractor()
        self.analyzers = analyzers
        self.options = options or ResearchOptions()
        self._clock = clock or time.monotonic
        self._pacing = pacing
        check_catalog()

    def build_capabilities(self) -> Capabilities:
        return Capabilities(
            self.gateway,
            self.text_client,
            self.search_client,
            self.extractor,
            CostTracker(),
            pacing=self._pacing,
        )

    def _analyzers_for(self, capabilities: Capabilities) -> list[CategoryAnalyzer]:
        if self.analyzers is None:
            return list(default_analyzers(capabilities))
        if callable(self.analyzers):
            return list(self.analyzers(capabilities))
        return list(self.analyzers)

    # ------------------------------------------------------------------
    # Step bookkeeping
    # ------------------------------------------------------------------

    async def _complete_step(
        self,
        state: ResearchState,
        reporter: ProgressReporter,
        step: ResearchStep,
        started: float,
        ended: float,
        message: str,
        **data: Any,
    ) -> None:
        state.stage_timings[step] = {"started": started, "ended": ended, "duration": ended - started}
        state.mark_completed(step)
        log_service.log_research_step(state.company, step.value, "completed", data or None)
        await reporter.emit(progress.progress(step.value, state.progress(), message, **data))

    @contextlib.asynccontextmanager
    async def _stage(
        self,
        state: ResearchState,
        reporter: ProgressReporter,
        step: ResearchStep,
        message: str,
    ) -> AsyncIterator[dict[str, Any]]:
        """Run a sequential stage; the yielded dict becomes the completion payload."""
        state.current_step = step
        started = self._clock()
        log_service.log_research_step(state.company, step.value, "started")
        await reporter.status(step.value, message, node=step.value)
        data: dict[str, Any] = {}
        yield data
        summary = data.pop("message", f"{step.value.replace('_', ' ').capitalize()} completed")
        await self._complete_step(state, reporter, step, started, self._clock(), summary, **data)

    # ------------------------------------------------------------------
    # Fan-out / fan-in
    # ------------------------------------------------------------------

    async def _timed_analysis(
        self,
        analyzer: CategoryAnalyzer,
        state: ResearchState,
        reporter: ProgressReporter,
    ) -> tuple[CategoryUpdate, float, float]:
        started = self._clock()
        log_service.log_research_step(state.company, analyzer.step.value, "started")
        update = await analyzer.analyze(state, reporter)
        return update, started, self._clock()

    async def _run_analyzers(
        self,
        state: ResearchState,
        reporter: ProgressReporter,
        analyzers: list[CategoryAnalyzer],
    ) -> None:
        """Run every analyzer concurrently; the first failure cancels the rest."""
        state.current_step = ResearchStep.COMPANY_ANALYZER
        await reporter.status(
            ResearchStep.COMPANY_ANALYZER.value,
            f"Running {len(analyzers)} research analyzers in parallel",
            analyzers=[analyzer.step.value for analyzer in analyzers],
        )
        tasks = {
            asyncio.create_task(self._timed_analysis(analyzer, state, reporter)): analyzer
            for analyzer in analyzers
        }
        pending = set(tasks)
        updates: dict[Category, CategoryUpdate] = {}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    analyzer = tasks[task]
                    exc = task.exception()
                    if exc is not None:
                        raise FatalWorkflowError(f"{analyzer.step.value} failed: {exc}") from exc
                    update, started, ended = task.result()
                    updates[analyzer.category] = update
                    await self._complete_step(
                        state,
                        reporter,
                        analyzer.step,
                        started,
                        ended,
                        f"{analyzer.category.value.capitalize()} research completed",
                        category=analyzer.category.value,
                        documents=len(update.documents),
                    )
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        for category in Category:
            update = updates.get(category)
            if update is None:
                continue
            state.documents[category] = update.documents
            state.queries[category] = list(update.queries)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _execute(
        self,
        state: ResearchState,
        descriptor: CompetitorDescriptor,
        business_context: BusinessContext | None,
        capabilities: Capabilities,
        reporter: ProgressReporter,
    ) -> None:
        async with self._stage(state, reporter, ResearchStep.GROUNDING, f"Researching {state.company}") as data:
            grounding = await Grounding(capabilities).ground(
                state,
                descriptor,
                reporter,
                business_context=business_context,
                options=self.options,
            )
            data.update(
                message=f"Research initialized for {state.company}",
                industry=grounding.industry,
                industry_source=grounding.industry_source,
                site_scraped=grounding.site_scraped,
            )

        await self._run_analyzers(state, reporter, self._analyzers_for(capabilities))

        async with self._stage(state, reporter, ResearchStep.COLLECTOR, "Collecting research documents") as data:
            collected = collect(state)
            data.update(
                message=f"Collected {collected.unique} unique documents",
                total=collected.total,
                unique=collected.unique,
            )

        async with self._stage(state, reporter, ResearchStep.CURATOR, "Curating documents by relevance") as data:
            curated = await Curator(capabilities).curate(state, reporter)
            data.update(
                message=f"Curated {curated.kept} relevant documents",
                kept=curated.kept,
                dropped=curated.dropped,
            )

        async with self._stage(state, reporter, ResearchStep.ENRICHER, "Enriching curated documents") as data:
            enriched = await Enricher(capabilities).enrich(state, reporter)
            data.update(
                message=f"Enriched {len(enriched.enriched)} categories",
                cross_category=enriched.cross_category,
            )

        async with self._stage(state, reporter, ResearchStep.BRIEFING, "Generating category briefings") as data:
            briefed = await Briefing(capabilities).generate(state, reporter)
            data.update(
                message=f"Generated {len(briefed.generated)} briefings",
                briefings=[category.value for category in briefed.generated],
            )

        async with self._stage(state, reporter, ResearchStep.EDITOR, "Compiling final report") as data:
            edited = await Editor(capabilities).edit(state, reporter)
            state.report = edited.report
            data.update(message="Report compiled", length=len(edited.report))

        state.current_step = ResearchStep.COMPLETED
        state.mark_completed(ResearchStep.COMPLETED)
        state.status = RunStatus.COMPLETED
        state.ended_at = utc_now()
        log_service.log_research_step(state.company, ResearchStep.COMPLETED.value, "completed")
        await reporter.emit(
            progress.progress(
                ResearchStep.COMPLETED.value, 100, f"Research completed for {state.company}"
            )
        )

    def _metadata(self, state: ResearchState, capabilities: Capabilities, duration: float) -> ResearchMetadata:
        counts = state.document_counts()
        return ResearchMetadata(
            total_documents=sum(counts.values()),
            documents_per_category=counts,
            cost_estimate=round(capabilities.costs.total_cost, 4),
            duration=round(duration, 2),
            queries_generated=state.all_queries(),
            sources_used=list(state.references),
        )

    async def _rejected(
        self,
        competitor: Any,
        business_context: BusinessContext | None,
        reporter: ProgressReporter,
        exc: Exception,
    ) -> ResearchResult:
        raw_name = competitor.get("name") if isinstance(competitor, dict) else competitor
        name = str(raw_name or "").strip()
        logger.error(f"Rejected competitor input {competitor!r}: {exc}")
        state = ResearchState(
            company=name,
            business_context=business_context,
            current_step=ResearchStep.ERROR,
            status=RunStatus.ERROR,
            error=str(exc),
            started_at=utc_now(),
            ended_at=utc_now(),
        )
        step = ResearchStep.GROUNDING.value
        await reporter.error(step, f"Research failed: {exc}", node=step)
        return ResearchResult.failed(
            CompetitorDescriptor.model_construct(name=name), state, str(exc), duration=0.0
        )

    async def run(
        self,
        competitor: CompetitorInput,
        business_context: BusinessContext | None = None,
        observer: ProgressObserver | None = None,
    ) -> ResearchResult:
        """Research one competitor.

        Never raises: an invalid competitor input or a pipeline failure comes
        back as a result with ``success=False``.
        """
        started = time.monotonic()
        reporter = ProgressReporter(observer)
        try:
            descriptor = coerce_competitor(competitor)
        except (TypeError, ValueError) as exc:
            return await self._rejected(competitor, business_context, reporter, exc)

        capabilities = self.build_capabilities()
        state = ResearchState(
            company=descriptor.name,
            business_context=business_context,
            status=RunStatus.PROCESSING,
            started_at=utc_now(),
        )
        logger.info(f"Starting research for {descriptor.name}")

        try:
            await self._execute(state, descriptor, business_context, capabilities, reporter)
        except Exception as exc:
            duration = time.monotonic() - started
            logger.exception(f"Research failed for {descriptor.name} at {state.current_step.value}: {exc}")
            failed_step = state.current_step
            state.current_step = ResearchStep.ERROR
            state.status = RunStatus.ERROR
            state.report = ""
            state.error = str(exc)
            state.ended_at = utc_now()
            await reporter.error(failed_step.value, f"Research failed: {exc}", node=failed_step.value)
            return ResearchResult.failed(descriptor, state, str(exc), duration=round(duration, 2))

        duration = time.monotonic() - started
        metadata = self._metadata(state, capabilities, duration)
        logger.info(
            f"Research completed for {descriptor.name} in {metadata.duration:.1f}s "
            f"({metadata.total_documents} documents, ${metadata.cost_estimate:.4f})"
        )
        return ResearchResult(
            competitor=descriptor,
            state=state,
            report=state.report,
            briefings={category.value: state.briefings.get(category, "") for category in Category},
            metadata=metadata,
            success=True,
        )

    async def stream(
        self,
        competitor: CompetitorInput,
        business_context: BusinessContext | None = None,
    ) -> AsyncGenerator[ProgressEvent, None]:
        """Yield progress events as they happen, then one ``result`` event."""
        queue: asyncio.Queue[ProgressEvent | None] = asyncio.Queue()
        task = asyncio.create_task(self.run(competitor, business_context, observer=queue.put))
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
            yield progress.result(task.result().to_dict())
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task


async def run_research(
    competitor: CompetitorInput,
    business_context: BusinessContext | dict | None = None,
    observer: ProgressObserver | None = None,
    **kwargs: Any,
) -> ResearchResult:
    """Convenience entry point; ``kwargs`` go to ResearchOrchestrator."""
    if isinstance(business_context, dict):
        business_context = BusinessContext.model_validate(business_context)
    orchestrator = ResearchOrchestrator(**kwargs)
    return await orchestrator.run(competitor, business_context, observer)
