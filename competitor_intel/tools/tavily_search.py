from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from tavily import AsyncTavilyClient

from competitor_intel.config import settings
from competitor_intel.errors import AuthenticationError


@dataclass
class SearchHit:
    title: str
    url: str
    snippet: str
    date: str | None = None
    position: int | None = None
    score: float = 0.0


async def search(
    query: str,
    *,
    max_results: int = 8,
    news_mode: bool = False,
    search_depth: str = "basic",
    api_key: str | None = None,
    days: int | None = None,
) -> list[SearchHit]:
    """Execute a Tavily search and return ranked hits."""
    key = api_key if api_key is not None else settings.tavily_api_key
    if not key:
        raise AuthenticationError("TAVILY_API_KEY is not configured", capability="search")
    client = AsyncTavilyClient(api_key=key)

    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": "news" if news_mode else "general",
    }
    if news_mode and days:
        kwargs["days"] = days

    response = await client.search(**kwargs)

    hits: list[SearchHit] = []
    for index, item in enumerate(response.get("results", []), start=1):
        url = item.get("url", "")
        if not url:
            continue
        hits.append(
            SearchHit(
                title=item.get("title", "") or "",
                url=url,
                snippet=item.get("content", "") or "",
                date=item.get("published_date") or None,
                position=index,
                score=float(item.get("score", 0.0) or 0.0),
            )
        )
    return hits
