"""Web-content extraction: Firecrawl first, plain HTTP fetch as fallback."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from competitor_intel.config import settings
from competitor_intel.errors import CapabilityError, TransientError
from competitor_intel.services.env_safety import sanitize_ssl_keylogfile
from competitor_intel.tools import content_extractor, web_utils

FIRECRAWL_SCRAPE_PATH = "/v1/scrape"
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


@dataclass
class ExtractedPage:
    url: str
    title: str
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


async def firecrawl_scrape(
    url: str,
    *,
    only_main_content: bool = True,
    timeout: float = 30.0,
    api_key: str | None = None,
    base_url: str | None = None,
    max_chars: int | None = None,
) -> ExtractedPage:
    key = api_key if api_key is not None else settings.firecrawl_api_key
    base = (base_url or settings.firecrawl_base_url).rstrip("/")
    payload = {
        "url": url,
        "formats": ["markdown"],
        "onlyMainContent": only_main_content,
        "timeout": int(timeout * 1000),
    }
    async with httpx.AsyncClient(timeout=timeout + 5.0) as client:
        response = await client.post(
            f"{base}{FIRECRAWL_SCRAPE_PATH}",
            json=payload,
            headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
        )
        response.raise_for_status()
        body = response.json()

    if not body.get("success", False):
        raise TransientError(
            f"Firecrawl scrape failed for {url}: {body.get('error', 'unknown error')}",
            capability="extract",
        )
    data = body.get("data") or {}
    metadata = data.get("metadata") or {}
    text = content_extractor.normalize_text(data.get("markdown") or "")
    limit = max_chars if max_chars is not None else settings.extractor_max_page_chars
    return ExtractedPage(
        url=url,
        title=metadata.get("title", "") or "",
        text=web_utils.truncate(text, limit),
        metadata={
            "provider": "firecrawl",
            "description": metadata.get("description"),
            "published": metadata.get("publishedTime") or metadata.get("article:published_time"),
            "status_code": metadata.get("statusCode"),
        },
    )


async def http_fetch(
    url: str,
    *,
    timeout: float = 30.0,
    max_chars: int | None = None,
) -> ExtractedPage:
    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
    ) as client:
        response = await client.get(url)
        response.raise_for_status()
        raw = response.text

    extracted = content_extractor.extract_main_content(url, raw, max_chars=max_chars)
    return ExtractedPage(
        url=url,
        title=extracted.title,
        text=extracted.text,
        metadata={
            "provider": "http",
            "method": extracted.method,
            "published": extracted.published,
            "raw_length": extracted.raw_length,
        },
    )


class PageExtractor:
    """Content extraction capability with a provider chain."""

    def __init__(
        self,
        provider: str | None = None,
        *,
        firecrawl_api_key: str | None = None,
        firecrawl_base_url: str | None = None,
        max_chars: int | None = None,
    ):
        self.provider = (provider or settings.extract_provider).lower().strip()
        self.firecrawl_api_key = (
            firecrawl_api_key if firecrawl_api_key is not None else settings.firecrawl_api_key
        )
        self.firecrawl_base_url = firecrawl_base_url or settings.firecrawl_base_url
        self.max_chars = max_chars if max_chars is not None else settings.extractor_max_page_chars
        if self.provider not in ("firecrawl", "http", "auto"):
            raise ValueError(f"Unsupported EXTRACT_PROVIDER: {self.provider}")

    def chain(self) -> list[str]:
        if self.provider == "http":
            return ["http"]
        if self.firecrawl_api_key:
            return ["firecrawl", "http"]
        return ["http"]

    async def extract(
        self,
        url: str,
        *,
        only_main_content: bool = True,
        timeout: float = 30.0,
    ) -> ExtractedPage:
        if not web_utils.is_valid_url(url):
            raise ValueError(f"Not an http(s) URL: {url}")
        sanitize_ssl_keylogfile()

        last_error: Exception | None = None
        for provider in self.chain():
            try:
                if provider == "firecrawl":
                    page = await firecrawl_scrape(
                        url,
                        only_main_content=only_main_content,
                        timeout=timeout,
                        api_key=self.firecrawl_api_key,
                        base_url=self.firecrawl_base_url,
                        max_chars=self.max_chars,
                    )
                else:
                    page = await http_fetch(url, timeout=timeout, max_chars=self.max_chars)
            except CapabilityError as exc:
                last_error = exc
                if not exc.retryable:
                    raise
                logger.debug(f"{provider} extraction failed for {url}: {exc}")
                continue
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.debug(f"{provider} extraction failed for {url}: {exc}")
                continue

            if page.text.strip():
                return page
            last_error = TransientError(f"{provider} returned no content for {url}", capability="extract")

        if last_error is None:
            raise TransientError(f"No extraction provider available for {url}", capability="extract")
        raise last_error
