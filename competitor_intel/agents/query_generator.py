from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from competitor_intel.models.research import Category, ResearchState
from competitor_intel.services.capabilities import QUICK, Capabilities
from competitor_intel.services.output_parsers import parse_query_lines
from competitor_intel.services.prompt_store import render_prompt
from competitor_intel.tools.web_utils import guess_company_domain

MAX_QUERIES = 4
QUERY_MAX_TOKENS = 200
QUERY_TEMPERATURE = 0.7

CATEGORY_KEYWORDS: dict[Category, str] = {
    Category.COMPANY: "business model",
    Category.INDUSTRY: "market competitors",
    Category.FINANCIAL: "revenue funding",
    Category.NEWS: "latest news",
}


@dataclass(slots=True)
class QueryBatch:
    queries: list[str] = field(default_factory=list)
    used_fallback: bool = False


def business_context_block(state: ResearchState) -> str:
    if state.business_context is None:
        return ""
    summary = state.business_context.summary()
    if not summary:
        return ""
    return render_prompt("common.context_block", summary=summary)


def prompt_values(state: ResearchState, now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return {
        "company": state.company,
        "industry": state.industry,
        "context": business_context_block(state),
        "year": now.year,
        "prior_year": now.year - 1,
        "company_domain": guess_company_domain(state.company),
    }


def fallback_queries(company: str, industry: str, category: Category) -> list[str]:
    return [
        f"{company} company information",
        f"{company} {industry} analysis".replace("  ", " "),
        f"{company} {CATEGORY_KEYWORDS[category]}",
    ]


class QueryGenerator:
    """Turns a category prompt into a handful of search queries."""

    def __init__(self, capabilities: Capabilities, *, max_queries: int = MAX_QUERIES):
        self.capabilities = capabilities
        self.max_queries = max_queries

    async def generate(
        self,
        state: ResearchState,
        prompt_key: str,
        *,
        category: Category,
        caller: str = "",
    ) -> QueryBatch:
        """Render ``query.<prompt_key>`` and ask for queries; never raises on bad output."""
        prompt = render_prompt(f"query.{prompt_key}", **prompt_values(state))
        instruction = render_prompt("query.instruction")
        result = await self.capabilities.generate(
            f"{prompt}\n\n{instruction}",
            tier=QUICK,
            max_tokens=QUERY_MAX_TOKENS,
            temperature=QUERY_TEMPERATURE,
            caller=caller or f"query_generator.{category.value}",
        )

        queries = parse_query_lines(result.value, limit=self.max_queries) if result.ok else []
        if queries:
            logger.info(f"Generated {len(queries)} {category.value} queries for {state.company}")
            return QueryBatch(queries=queries)

        reason = result.error.message if result.error else "no usable queries in output"
        logger.warning(f"Query generation for {category.value} fell back to defaults: {reason}")
        return QueryBatch(
            queries=fallback_queries(state.company, state.industry, category),
            used_fallback=True,
        )
