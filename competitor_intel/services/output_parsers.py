"""Parsers for generative output.

Each parser documents the grammar it accepts and what it returns when the
text does not match. None of them call out to a capability.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from competitor_intel.errors import ParseError

LIST_MARKER_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])")
SCORE_TOKEN_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
SCORE_LIST_MARKER_RE = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+")
CODE_FENCE_RE = re.compile(r"^\s*```[\w-]*\s*$")
RELATIVE_DATE_RE = re.compile(
    r"^(?P<count>\d+|an?|one)\s+(?P<unit>minute|hour|day|week|month|year)s?\s+ago$",
    re.IGNORECASE,
)

MAX_INDUSTRY_LABEL_CHARS = 60
QUOTE_CHARS = "\"'`“”‘’"

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%d %b %Y",
    "%d %B %Y",
    "%m/%d/%Y",
    "%Y-%m",
    "%B %Y",
    "%b %Y",
)


def parse_query_lines(text: str | None, limit: int = 4) -> list[str]:
    """One query per line.

    Blank lines and lines opening with a list marker (``1.``, ``1)``, ``-``,
    ``*``, ``•``) are discarded, surrounding quotes are stripped, and
    duplicates are removed case-insensitively. Returns at most ``limit``
    queries, possibly none.
    """
    if not text:
        return []
    queries: list[str] = []
    seen: set[str] = set()
    for raw_line in strip_code_fences(text).splitlines():
        line = raw_line.strip()
        if not line or LIST_MARKER_RE.match(line):
            continue
        line = " ".join(line.strip(QUOTE_CHARS).split())
        if not line:
            continue
        key = line.lower()
        if key in seen:
            continue
        seen.add(key)
        queries.append(line)
        if len(queries) >= limit:
            break
    return queries


def split_score_tokens(text: str | None) -> list[str]:
    """Non-empty comma- or newline-separated tokens, list markers removed."""
    tokens = [SCORE_LIST_MARKER_RE.sub("", token).strip() for token in re.split(r"[,\n]", text or "")]
    return [token for token in tokens if token]


def parse_score_list(text: str | None, expected: int) -> list[float | None]:
    """Comma- or newline-separated relevance scores, read positionally.

    A leading list marker (``1.``, ``2)``, ``-``) on a token is ignored, so
    a numbered reply reads as its scores. Always returns ``expected``
    entries: extra tokens are dropped, and a position with no parseable
    number is ``None``. Parsed values are clamped to [0, 1]. Raises
    ParseError when the text holds no number at all.
    """
    tokens = split_score_tokens(text)

    scores: list[float | None] = []
    for token in tokens[:expected]:
        match = SCORE_TOKEN_RE.match(token)
        if match is None:
            scores.append(None)
            continue
        try:
            value = float(match.group(0))
        except ValueError:
            scores.append(None)
            continue
        scores.append(min(max(value, 0.0), 1.0))

    if not any(score is not None for score in scores):
        raise ParseError(f"no relevance scores found in {text!r}")

    scores.extend([None] * (expected - len(scores)))
    return scores


def parse_industry_label(text: str | None) -> str | None:
    """First non-empty line, cleaned of quotes and an ``Industry:`` prefix."""
    if not text:
        return None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        line = re.sub(r"^industry\s*:\s*", "", line, flags=re.IGNORECASE)
        line = line.strip().rstrip(".!;:,").strip(QUOTE_CHARS).rstrip(".!;:,").strip()
        if not line or len(line) > MAX_INDUSTRY_LABEL_CHARS:
            return None
        return line
    return None


def parse_published_date(value: str | None, now: datetime | None = None) -> datetime | None:
    """Best-effort publish date; ``None`` when the value is not recognised."""
    if not value:
        return None
    now = now or datetime.now(timezone.utc)
    text = " ".join(str(value).strip().split())
    if not text:
        return None

    relative = RELATIVE_DATE_RE.match(text)
    if relative:
        raw_count = relative.group("count").lower()
        count = 1 if raw_count in ("a", "an", "one") else int(raw_count)
        unit = relative.group("unit").lower()
        if unit == "minute":
            return now - timedelta(minutes=count)
        if unit == "hour":
            return now - timedelta(hours=count)
        if unit == "day":
            return now - timedelta(days=count)
        if unit == "week":
            return now - timedelta(weeks=count)
        if unit == "month":
            return now - timedelta(days=30 * count)
        return now - timedelta(days=365 * count)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def age_in_days(value: str | None, now: datetime | None = None) -> float | None:
    now = now or datetime.now(timezone.utc)
    parsed = parse_published_date(value, now)
    if parsed is None:
        return None
    return (now - parsed).total_seconds() / 86400


def strip_code_fences(text: str) -> str:
    """Drop markdown code-fence lines, keeping what they enclosed."""
    return "\n".join(line for line in text.splitlines() if not CODE_FENCE_RE.match(line))
