from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.errors import AuthenticationError
from competitor_intel.services.env_safety import sanitize_ssl_keylogfile
from competitor_intel.tools import brave_search, tavily_search
from competitor_intel.tools.tavily_search import SearchHit

__all__ = ["SearchHit", "SearchResponse", "WebSearchClient", "search"]


@dataclass
class SearchResponse:
    results: list[SearchHit]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


async def search(
    query: str,
    *,
    max_results: int = 8,
    news_mode: bool = False,
    country: str | None = None,
    language: str | None = None,
    provider: str | None = None,
    use_fallback: bool | None = None,
) -> SearchResponse:
    sanitize_ssl_keylogfile()
    provider = (provider or settings.search_provider).lower().strip()
    if use_fallback is None:
        use_fallback = settings.search_fallback_to_tavily

    if provider == "tavily":
        results = await tavily_search.search(
            query=query,
            max_results=max_results,
            news_mode=news_mode,
        )
        return SearchResponse(results=results, provider="tavily")

    if provider == "brave":
        try:
            results = await brave_search.search(
                query=query,
                max_results=max_results,
                news_mode=news_mode,
                country=country,
                language=language,
            )
        except AuthenticationError:
            if not use_fallback or not settings.tavily_api_key:
                raise
            fallback_reason = "brave is not configured"
        except Exception as e:
            if not use_fallback:
                raise
            fallback_reason = str(e)
        else:
            if results or not use_fallback:
                return SearchResponse(results=results, provider="brave")
            fallback_reason = "brave returned zero results"

        logger.warning(f"Falling back to Tavily for '{query}': {fallback_reason}")
        fallback_results = await tavily_search.search(
            query=query,
            max_results=max_results,
            news_mode=news_mode,
        )
        return SearchResponse(
            results=fallback_results,
            provider="tavily",
            fallback_from="brave",
            fallback_reason=fallback_reason,
        )

    raise ValueError(f"Unsupported SEARCH_PROVIDER: {provider}")


class WebSearchClient:
    """Search capability backed by Brave, with optional Tavily fallback."""

    def __init__(
        self,
        provider: str | None = None,
        *,
        use_fallback: bool | None = None,
        country: str | None = None,
        language: str | None = None,
    ):
        self.provider = provider or settings.search_provider
        self.use_fallback = (
            use_fallback if use_fallback is not None else settings.search_fallback_to_tavily
        )
        self.country = country or settings.search_country
        self.language = language or settings.search_language
        self.last_provider: str | None = None

    async def search(
        self,
        query: str,
        *,
        result_count: int = 8,
        news_mode: bool = False,
    ) -> list[SearchHit]:
        response = await search(
            query,
            max_results=result_count,
            news_mode=news_mode,
            country=self.country,
            language=self.language,
            provider=self.provider,
            use_fallback=self.use_fallback,
        )
        self.last_provider = response.provider
        if response.fallback_from:
            logger.debug(
                f"Search for '{query}' served by {response.provider} "
                f"(fallback from {response.fallback_from}: {response.fallback_reason})"
            )
        return response.results
