from __future__ import annotations

import re
from dataclasses import dataclass

import trafilatura
from bs4 import BeautifulSoup
from loguru import logger

from competitor_intel.config import settings

NAV_MARKERS = (
    "main menu",
    "navigation",
    "skip to content",
    "cookie",
    "sign in",
    "subscribe",
)
MIN_USEFUL_CHARS = 200


@dataclass
class ExtractedContent:
    url: str
    title: str
    text: str
    method: str
    published: str | None
    raw_length: int
    extracted_length: int


def normalize_text(text: str) -> str:
    text = text.replace("\xa0", " ")
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


def _extract_title(raw_content: str) -> str:
    soup = BeautifulSoup(raw_content, "html.parser")
    if soup.title and soup.title.string:
        return normalize_text(soup.title.string)
    heading = soup.find("h1")
    return normalize_text(heading.get_text(" ")) if heading else ""


def _visible_text(raw_html: str) -> str:
    soup = BeautifulSoup(raw_html, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]):
        tag.decompose()
    return normalize_text(soup.get_text("\n"))


def _looks_low_quality(text: str) -> bool:
    normalized = text.lower()
    marker_hits = sum(normalized.count(marker) for marker in NAV_MARKERS)
    if len(text) < MIN_USEFUL_CHARS:
        return True
    return marker_hits >= 4 and len(text) < 1500


def _extract_with_trafilatura(raw_html: str) -> str:
    extracted = trafilatura.extract(raw_html, output_format="txt", include_comments=False)
    if not isinstance(extracted, str):
        return ""
    return normalize_text(extracted)


def _extract_published_date(raw_html: str) -> str | None:
    try:
        metadata = trafilatura.extract_metadata(raw_html)
    except Exception as exc:
        logger.debug(f"trafilatura metadata extraction failed: {exc}")
        return None
    date = getattr(metadata, "date", None) if metadata is not None else None
    return date or None


def extract_main_content(
    url: str,
    raw_content: str,
    *,
    max_chars: int | None = None,
) -> ExtractedContent:
    """Extract main article content from a fetched HTML page."""
    target_chars = max_chars if max_chars is not None else int(settings.extractor_max_page_chars)

    seems_html = "<html" in raw_content.lower() or "<body" in raw_content.lower()
    primary_input = raw_content if seems_html else f"<html><body>{raw_content}</body></html>"
    title = _extract_title(primary_input)
    published = _extract_published_date(primary_input) if seems_html else None

    primary_text = _extract_with_trafilatura(primary_input)
    if primary_text and not _looks_low_quality(primary_text):
        method = "trafilatura"
        text = primary_text
    else:
        visible = _visible_text(primary_input)
        # Keep the trafilatura output if stripping tags found nothing better.
        if primary_text and len(primary_text) >= len(visible):
            method, text = "trafilatura", primary_text
        else:
            method, text = "raw", visible

    clipped = _truncate(text, target_chars)
    return ExtractedContent(
        url=url,
        title=title,
        text=clipped,
        method=method,
        published=published,
        raw_length=len(raw_content),
        extracted_length=len(clipped),
    )
