from __future__ import annotations

from typing import Any

import httpx

from competitor_intel.config import settings
from competitor_intel.errors import AuthenticationError
from competitor_intel.tools.tavily_search import SearchHit

BRAVE_WEB_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
BRAVE_NEWS_SEARCH_URL = "https://api.search.brave.com/res/v1/news/search"
MAX_BRAVE_COUNT = 20

FRESHNESS_MAP = {
    "day": "pd",
    "week": "pw",
    "month": "pm",
    "year": "py",
}


def _map_results(raw_results: list[dict[str, Any]]) -> list[SearchHit]:
    total = max(len(raw_results), 1)
    mapped: list[SearchHit] = []
    for idx, item in enumerate(raw_results):
        url = item.get("url", "")
        if not url:
            continue
        snippets = item.get("extra_snippets", []) or []
        description = item.get("description", "") or ""
        snippet = description.strip() or " ".join(snippets).strip()
        # Brave does not expose a direct relevance score in this response shape.
        score = max(0.0, 1.0 - (idx / total))
        mapped.append(
            SearchHit(
                title=item.get("title", "") or "",
                url=url,
                snippet=snippet,
                date=item.get("page_age") or item.get("age") or None,
                position=idx + 1,
                score=score,
            )
        )
    return mapped


async def search(
    query: str,
    *,
    max_results: int = 8,
    news_mode: bool = False,
    country: str | None = None,
    language: str | None = None,
    time_range: str | None = None,
    api_key: str | None = None,
) -> list[SearchHit]:
    """Execute a Brave web or news search and normalize results."""
    key = api_key if api_key is not None else settings.brave_api_key
    if not key:
        raise AuthenticationError("BRAVE_API_KEY is not configured", capability="search")

    params: dict[str, Any] = {
        "q": query,
        "count": min(max(max_results, 1), MAX_BRAVE_COUNT),
        "country": country or settings.search_country,
        "search_lang": language or settings.search_language,
    }
    if time_range and time_range in FRESHNESS_MAP:
        params["freshness"] = FRESHNESS_MAP[time_range]

    async with httpx.AsyncClient(timeout=30.0) as client:
        response = await client.get(
            BRAVE_NEWS_SEARCH_URL if news_mode else BRAVE_WEB_SEARCH_URL,
            params=params,
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": key,
            },
        )
        response.raise_for_status()
        payload = response.json()

    if news_mode:
        raw_results = payload.get("results", []) or []
    else:
        raw_results = payload.get("web", {}).get("results", []) or []
    return _map_results(raw_results)[:max_results]
