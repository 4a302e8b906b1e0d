"""In-memory fakes for the three capabilities."""
from __future__ import annotations

import re
from typing import Any, Callable

import pytest

from competitor_intel.errors import TransientError
from competitor_intel.services.capabilities import Capabilities
from competitor_intel.services.gateway import EXTRACT, LLM, SEARCH, RateLimitedGateway
from competitor_intel.tools.llm_client import Completion, Usage
from competitor_intel.tools.page_extractor import ExtractedPage
from competitor_intel.tools.tavily_search import SearchHit

Reply = Any  # str, exception instance, or callable(prompt) -> str


async def no_sleep(_: float) -> None:
    return None


class FakeStream:
    def __init__(self, text: str | None, error: BaseException | None = None, chunk_size: int = 40):
        self.text = text or ""
        self.error = error
        self.chunk_size = chunk_size
        self.usage = Usage()

    async def __aenter__(self) -> "FakeStream":
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for start in range(0, len(self.text), self.chunk_size):
            yield self.text[start : start + self.chunk_size]
        self.usage = Usage(input_tokens=200, output_tokens=len(self.text) // 4)


class FakeTextClient:
    """Answers prompts by the first rule whose marker appears in the prompt."""

    def __init__(self, default: str = ""):
        self.default = default
        self.rules: list[tuple[str, Reply]] = []
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[str] = []

    def when(self, marker: str, reply: Reply) -> "FakeTextClient":
        self.rules.append((marker, reply))
        return self

    def _reply(self, prompt: str) -> Reply:
        for marker, reply in self.rules:
            if marker in prompt:
                return reply
        return self.default

    async def complete(self, prompt, *, model, max_tokens, temperature) -> Completion:
        self.calls.append(
            {"prompt": prompt, "model": model, "max_tokens": max_tokens, "temperature": temperature}
        )
        reply = self._reply(prompt)
        if isinstance(reply, BaseException):
            raise reply
        text = reply(prompt) if callable(reply) else reply
        return Completion(text=text, model=model, usage=Usage(input_tokens=100, output_tokens=50))

    def stream(self, prompt, *, model, max_tokens, temperature) -> FakeStream:
        self.stream_calls.append(prompt)
        reply = self._reply(prompt)
        if isinstance(reply, BaseException):
            return FakeStream(None, error=reply)
        return FakeStream(reply(prompt) if callable(reply) else reply)

    def prompts_containing(self, marker: str) -> list[str]:
        return [call["prompt"] for call in self.calls if marker in call["prompt"]]


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-") or "q"


class FakeSearchClient:
    """Returns ``results_per_query`` hits with urls derived from the query."""

    def __init__(
        self,
        results_per_query: int = 8,
        *,
        hits: dict[str, list[SearchHit]] | None = None,
        failures: dict[str, BaseException] | None = None,
        fail_news: bool = False,
    ):
        self.results_per_query = results_per_query
        self.hits = hits or {}
        self.failures = failures or {}
        self.fail_news = fail_news
        self.calls: list[dict[str, Any]] = []

    async def search(self, query: str, *, result_count: int = 8, news_mode: bool = False) -> list[SearchHit]:
        self.calls.append({"query": query, "result_count": result_count, "news_mode": news_mode})
        if news_mode and self.fail_news:
            raise TransientError("news search unavailable", capability=SEARCH)
        if query in self.failures:
            raise self.failures[query]
        if query in self.hits:
            return list(self.hits[query])
        slug = _slug(query)
        return [
            SearchHit(
                title=f"Result {index} for {query}",
                url=f"https://{slug}.example.com/{index}",
                snippet=f"Snippet {index} about {query}",
                position=index,
            )
            for index in range(1, min(self.results_per_query, result_count) + 1)
        ]


class FakeExtractor:
    def __init__(
        self,
        *,
        fail_urls: set[str] | None = None,
        text_for: Callable[[str], str] | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        self.fail_urls = fail_urls or set()
        self.text_for = text_for or (lambda url: f"Full article text extracted from {url}.")
        self.metadata = metadata or {}
        self.calls: list[dict[str, Any]] = []

    async def extract(self, url: str, *, only_main_content: bool = True, timeout: float = 30.0) -> ExtractedPage:
        self.calls.append({"url": url, "only_main_content": only_main_content, "timeout": timeout})
        if url in self.fail_urls:
            raise TransientError(f"could not fetch {url}", capability=EXTRACT)
        return ExtractedPage(url=url, title=f"Page {url}", text=self.text_for(url), metadata=dict(self.metadata))


def make_gateway(limit: int = 1000, **kwargs: Any) -> RateLimitedGateway:
    kwargs.setdefault("sleep", no_sleep)
    kwargs.setdefault("rng", lambda: 0.0)
    return RateLimitedGateway({LLM: limit, SEARCH: limit, EXTRACT: limit}, **kwargs)


@pytest.fixture
def text_client() -> FakeTextClient:
    return FakeTextClient()


@pytest.fixture
def search_client() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def gateway() -> RateLimitedGateway:
    return make_gateway()


@pytest.fixture
def capabilities(gateway, text_client, search_client, extractor) -> Capabilities:
    return Capabilities(gateway, text_client, search_client, extractor, pacing={}, sleep=no_sleep)
