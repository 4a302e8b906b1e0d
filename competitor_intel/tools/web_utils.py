from __future__ import annotations

import re
from urllib.parse import urlparse


def is_valid_url(url: str | None) -> bool:
    """Basic http(s) URL validation."""
    if not url or not isinstance(url, str):
        return False
    try:
        result = urlparse(url.strip())
        return all([result.scheme in ("http", "https"), result.netloc])
    except ValueError:
        return False


def truncate(text: str, max_length: int) -> str:
    if max_length <= 0 or len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def normalize_website(website: str | None) -> str | None:
    """Add a scheme to bare domains; None when the result is not a URL."""
    if not website:
        return None
    candidate = website.strip()
    if not re.match(r"^https?://", candidate, flags=re.IGNORECASE):
        candidate = f"https://{candidate}"
    return candidate if is_valid_url(candidate) else None


def guess_company_domain(company: str) -> str:
    """``Acme Corp`` -> ``acmecorp.com``; used only to seed site: queries."""
    slug = re.sub(r"[^a-z0-9]", "", company.lower())
    return f"{slug}.com" if slug else "example.com"
