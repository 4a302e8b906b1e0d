from __future__ import annotations

import re
from dataclasses import dataclass

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.models.research import (
    BusinessContext,
    CompetitorDescriptor,
    Document,
    Provenance,
    ResearchOptions,
    ResearchState,
    ResearchStep,
    utc_now,
)
from competitor_intel.services.capabilities import QUICK, Capabilities
from competitor_intel.services.output_parsers import parse_industry_label
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.prompt_store import render_prompt
from competitor_intel.tools.web_utils import normalize_website

INDUSTRY_MAX_TOKENS = 50
SITE_SCRAPE_TIMEOUT = 30.0

INDUSTRY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Software": ("software", "saas", "platform", "developer", "developers", "api", "cloud"),
    "Fintech": ("fintech", "payments", "payment", "banking", "lending", "credit card", "neobank"),
    "Healthcare": ("healthcare", "health", "medical", "clinical", "patients", "hospital", "pharma"),
    "E-commerce": ("e-commerce", "ecommerce", "online store", "marketplace", "retail", "shopping"),
    "Education": ("education", "edtech", "learning", "students", "courses", "university"),
    "Artificial Intelligence": ("artificial intelligence", "machine learning", "ai", "llm", "generative"),
    "Cybersecurity": ("cybersecurity", "security", "threat", "identity", "zero trust"),
    "Manufacturing": ("manufacturing", "factory", "industrial", "supply chain"),
    "Media": ("media", "streaming", "publishing", "entertainment", "content creators"),
}

HQ_RE = re.compile(r"\bheadquartered\s+in\s+([A-Z][\w.'-]*(?:[ ,]+[A-Z][\w.'-]*)*)")


@dataclass(slots=True)
class GroundingSummary:
    industry: str
    industry_source: str
    hq_location: str
    site_scraped: bool = False


def detect_industry_from_keywords(text: str | None) -> str | None:
    """Industry label with the most whole-word keyword hits, or None."""
    if not text:
        return None
    lowered = text.lower()
    best: tuple[int, str] | None = None
    for label, keywords in INDUSTRY_KEYWORDS.items():
        hits = sum(len(re.findall(rf"\b{re.escape(word)}\b", lowered)) for word in keywords)
        if hits and (best is None or hits > best[0]):
            best = (hits, label)
    return best[1] if best else None


def detect_hq_location(text: str | None) -> str:
    if not text:
        return "Unknown"
    match = HQ_RE.search(text)
    if not match:
        return "Unknown"
    return match.group(1).strip(" ,.") or "Unknown"


class Grounding:
    """Resolves industry and headquarters and optionally scrapes the homepage once."""

    def __init__(
        self,
        capabilities: Capabilities,
        *,
        default_industry: str | None = None,
        skip_website_scraping: bool | None = None,
    ):
        self.capabilities = capabilities
        self.default_industry = default_industry or settings.default_industry
        self.skip_website_scraping = (
            skip_website_scraping if skip_website_scraping is not None else settings.skip_website_scraping
        )

    async def detect_industry_with_llm(self, descriptor: CompetitorDescriptor) -> str | None:
        description = f"\nDescription: {descriptor.description}" if descriptor.description else ""
        prompt = render_prompt(
            "grounding.industry_detection", company=descriptor.name, description=description
        )
        result = await self.capabilities.generate(
            prompt,
            tier=QUICK,
            max_tokens=INDUSTRY_MAX_TOKENS,
            temperature=0,
            caller="grounding.industry",
        )
        if not result.ok:
            logger.warning(f"Industry detection failed for {descriptor.name}: {result.error}")
            return None
        return parse_industry_label(result.value)

    async def resolve_industry(
        self,
        descriptor: CompetitorDescriptor,
        business_context: BusinessContext | None = None,
    ) -> tuple[str, str]:
        """Return ``(industry, source)`` where source names the tier that answered."""
        if business_context is not None and business_context.industry and business_context.industry.strip():
            return business_context.industry.strip(), "business_context"
        keyword_match = detect_industry_from_keywords(descriptor.description)
        if keyword_match:
            return keyword_match, "keywords"
        detected = await self.detect_industry_with_llm(descriptor)
        if detected:
            return detected, "llm"
        return self.default_industry, "default"

    async def scrape_site(
        self, state: ResearchState, website: str, reporter: ProgressReporter
    ) -> Document | None:
        url = normalize_website(website)
        if url is None:
            logger.warning(f"Skipping site grounding, invalid website: {website!r}")
            return None
        await reporter.status(ResearchStep.GROUNDING.value, f"Scraping company website: {url}")
        result = await self.capabilities.extract(
            url, only_main_content=True, timeout=SITE_SCRAPE_TIMEOUT, caller="grounding"
        )
        page = result.value if result.ok else None
        if page is None or not page.text.strip():
            logger.warning(f"Failed to scrape company website {url}: {result.error}")
            return None
        doc = Document(
            url=url,
            title=page.title or state.company,
            content=page.text,
            snippet=page.text[:200],
            provenance=Provenance.SITE_GROUNDING,
            extracted_at=utc_now(),
        )
        state.site_documents[url] = doc
        logger.info(f"Scraped company website ({len(page.text)} chars)")
        return doc

    async def ground(
        self,
        state: ResearchState,
        descriptor: CompetitorDescriptor,
        reporter: ProgressReporter,
        *,
        business_context: BusinessContext | None = None,
        options: ResearchOptions | None = None,
    ) -> GroundingSummary:
        state.industry, source = await self.resolve_industry(descriptor, business_context)
        state.hq_location = detect_hq_location(descriptor.description)
        logger.info(f"Grounded {state.company}: industry={state.industry} ({source}), hq={state.hq_location}")

        skip = self.skip_website_scraping or bool(options and options.skip_website_scraping)
        scraped = None
        if descriptor.website and not skip:
            scraped = await self.scrape_site(state, descriptor.website, reporter)

        return GroundingSummary(
            industry=state.industry,
            industry_source=source,
            hq_location=state.hq_location,
            site_scraped=scraped is not None,
        )
