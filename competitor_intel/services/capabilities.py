"""Per-run facade over the three external capabilities.

Every call goes through the shared RateLimitedGateway and is priced into the
run's CostTracker. Agents only ever talk to this facade.
"""
from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, AsyncContextManager, AsyncIterator, Awaitable, Callable, Protocol

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.models.events import ChunkKind, StreamChunk
from competitor_intel.services import logger as log_service
from competitor_intel.services.cost_tracker import CostTracker
from competitor_intel.services.gateway import (
    EXTRACT,
    LLM,
    SEARCH,
    CallResult,
    RateLimitedGateway,
    RetryPolicy,
)
from competitor_intel.tools.llm_client import Completion, Usage
from competitor_intel.tools.page_extractor import ExtractedPage
from competitor_intel.tools.tavily_search import SearchHit

QUICK = "quick"
STANDARD = "standard"


class TextStream(Protocol):
    usage: Usage

    def __aiter__(self) -> AsyncIterator[str]: ...


class TextGenerator(Protocol):
    async def complete(
        self, prompt: str, *, model: str, max_tokens: int, temperature: float
    ) -> Completion: ...

    def stream(
        self, prompt: str, *, model: str, max_tokens: int, temperature: float
    ) -> AsyncContextManager[TextStream]: ...


class SearchClient(Protocol):
    async def search(
        self, query: str, *, result_count: int = 8, news_mode: bool = False
    ) -> list[SearchHit]: ...


class ContentExtractor(Protocol):
    async def extract(
        self, url: str, *, only_main_content: bool = True, timeout: float = 30.0
    ) -> ExtractedPage: ...


class Capabilities:
    def __init__(
        self,
        gateway: RateLimitedGateway,
        text_client: TextGenerator,
        search_client: SearchClient,
        extractor: ContentExtractor,
        costs: CostTracker | None = None,
        *,
        quick_model: str | None = None,
        standard_model: str | None = None,
        pacing: dict[str, float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        self.gateway = gateway
        self.text_client = text_client
        self.search_client = search_client
        self.extractor = extractor
        self.costs = costs or CostTracker()
        self.quick_model = quick_model or settings.quick_model
        self.standard_model = standard_model or settings.standard_model
        self.pacing = pacing if pacing is not None else {
            LLM: settings.llm_pacing_seconds,
            SEARCH: settings.search_pacing_seconds,
            EXTRACT: settings.extract_pacing_seconds,
        }
        self._sleep = sleep or asyncio.sleep

    def model_for(self, tier: str) -> str:
        return self.standard_model if tier == STANDARD else self.quick_model

    async def pause(self, capability: str) -> None:
        delay = self.pacing.get(capability, 0.0)
        if delay > 0:
            await self._sleep(delay)

    async def generate(
        self,
        prompt: str,
        *,
        tier: str = QUICK,
        max_tokens: int = 1000,
        temperature: float = 0.0,
        caller: str = "",
    ) -> CallResult[str]:
        model = self.model_for(tier)
        started = time.monotonic()

        async def operation() -> Completion:
            return await self.text_client.complete(
                prompt, model=model, max_tokens=max_tokens, temperature=temperature
            )

        result = await self.gateway.call(LLM, operation)
        duration_ms = int((time.monotonic() - started) * 1000)
        if not result.ok:
            log_service.log_llm_call(
                model=model,
                caller=caller,
                duration_ms=duration_ms,
                status="error",
                error=result.error.message if result.error else "unknown error",
            )
            return CallResult(ok=False, error=result.error, attempts=result.attempts)

        completion = result.value
        usage = completion.usage if completion is not None else Usage()
        self.costs.track_llm(model, usage.input_tokens, usage.output_tokens, caller=caller)
        log_service.log_llm_call(
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=duration_ms,
        )
        text = completion.text if completion is not None else ""
        return CallResult(ok=True, value=text, attempts=result.attempts)

    async def stream_generate(
        self,
        prompt: str,
        *,
        tier: str = QUICK,
        max_tokens: int = 4000,
        temperature: float = 0.0,
        caller: str = "",
    ) -> AsyncIterator[StreamChunk]:
        """Stream a completion as delta chunks ending in ``done`` or ``error``.

        A retried attempt that follows partial output is announced with a
        ``reset`` chunk, after which deltas restart from the beginning.
        """
        model = self.model_for(tier)
        queue: asyncio.Queue[StreamChunk] = asyncio.Queue()
        emitted = False

        async def consume() -> tuple[str, Usage]:
            nonlocal emitted
            if emitted:
                await queue.put(StreamChunk(ChunkKind.RESET))
                emitted = False
            parts: list[str] = []
            async with self.text_client.stream(
                prompt, model=model, max_tokens=max_tokens, temperature=temperature
            ) as stream:
                async for delta in stream:
                    parts.append(delta)
                    emitted = True
                    await queue.put(StreamChunk(ChunkKind.DELTA, text=delta))
                usage = getattr(stream, "usage", None) or Usage()
            return "".join(parts), usage

        async def drive() -> None:
            started = time.monotonic()
            result = await self.gateway.call(
                LLM, consume, RetryPolicy.from_settings(LLM, streaming=True)
            )
            duration_ms = int((time.monotonic() - started) * 1000)
            if result.ok and result.value is not None:
                text, usage = result.value
                self.costs.track_llm(model, usage.input_tokens, usage.output_tokens, caller=caller)
                log_service.log_llm_call(
                    model=model,
                    caller=caller,
                    input_tokens=usage.input_tokens,
                    output_tokens=usage.output_tokens,
                    duration_ms=duration_ms,
                )
                await queue.put(StreamChunk(ChunkKind.DONE, text=text))
                return
            message = result.error.message if result.error else "stream failed"
            log_service.log_llm_call(
                model=model, caller=caller, duration_ms=duration_ms, status="error", error=message
            )
            await queue.put(StreamChunk(ChunkKind.ERROR, error=message))

        task = asyncio.create_task(drive())
        try:
            while True:
                chunk = await queue.get()
                yield chunk
                if chunk.terminal:
                    break
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    async def search(
        self,
        query: str,
        *,
        result_count: int | None = None,
        news_mode: bool = False,
        caller: str = "",
    ) -> CallResult[list[SearchHit]]:
        count = result_count or settings.search_results_per_query
        started = time.monotonic()

        async def operation() -> list[SearchHit]:
            return await self.search_client.search(query, result_count=count, news_mode=news_mode)

        result = await self.gateway.call(SEARCH, operation)
        if result.attempts:
            self.costs.track_search(query)
        log_service.log_capability_call(
            capability=SEARCH,
            caller=caller,
            attempts=result.attempts,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=result.error.message if result.error else None,
        )
        return result

    async def extract(
        self,
        url: str,
        *,
        only_main_content: bool = True,
        timeout: float | None = None,
        caller: str = "",
    ) -> CallResult[ExtractedPage]:
        policy = RetryPolicy.from_settings(EXTRACT)
        request_timeout = timeout if timeout is not None else min(30.0, policy.timeout)
        started = time.monotonic()

        async def operation() -> ExtractedPage:
            return await self.extractor.extract(
                url, only_main_content=only_main_content, timeout=request_timeout
            )

        result = await self.gateway.call(EXTRACT, operation, policy)
        if result.ok:
            self.costs.track_extract(url)
        log_service.log_capability_call(
            capability=EXTRACT,
            caller=caller,
            attempts=result.attempts,
            duration_ms=int((time.monotonic() - started) * 1000),
            error=result.error.message if result.error else None,
        )
        if not result.ok:
            logger.debug(f"Extraction failed for {url}: {result.error}")
        return result
