from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Category(str, Enum):
    COMPANY = "company"
    INDUSTRY = "industry"
    FINANCIAL = "financial"
    NEWS = "news"


class ResearchStep(str, Enum):
    GROUNDING = "grounding"
    COMPANY_ANALYZER = "company_analyzer"
    INDUSTRY_ANALYZER = "industry_analyzer"
    FINANCIAL_ANALYST = "financial_analyst"
    NEWS_SCANNER = "news_scanner"
    COLLECTOR = "collector"
    CURATOR = "curator"
    ENRICHER = "enricher"
    BRIEFING = "briefing"
    EDITOR = "editor"
    COMPLETED = "completed"
    ERROR = "error"


WORKFLOW_STEPS: tuple[ResearchStep, ...] = (
    ResearchStep.GROUNDING,
    ResearchStep.COMPANY_ANALYZER,
    ResearchStep.INDUSTRY_ANALYZER,
    ResearchStep.FINANCIAL_ANALYST,
    ResearchStep.NEWS_SCANNER,
    ResearchStep.COLLECTOR,
    ResearchStep.CURATOR,
    ResearchStep.ENRICHER,
    ResearchStep.BRIEFING,
    ResearchStep.EDITOR,
)

ANALYZER_STEPS: dict[Category, ResearchStep] = {
    Category.COMPANY: ResearchStep.COMPANY_ANALYZER,
    Category.INDUSTRY: ResearchStep.INDUSTRY_ANALYZER,
    Category.FINANCIAL: ResearchStep.FINANCIAL_ANALYST,
    Category.NEWS: ResearchStep.NEWS_SCANNER,
}


class RunStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Provenance(str, Enum):
    SEARCH = "search"
    EXTRACTION = "extraction"
    SITE_GROUNDING = "site_grounding"


# --- Inputs ---


class CompetitorDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    website: str | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("competitor name must not be empty")
        return value


class BusinessContext(BaseModel):
    company: str | None = None
    industry: str | None = None
    target_markets: list[str] = []
    business_model: str | None = None
    value_proposition: str | None = None
    products: list[str] = []
    advantages: list[str] = []
    challenges: list[str] = []
    objectives: list[str] = []

    def summary(self) -> str:
        """Plain-text digest used to seed prompts."""
        lines: list[str] = []
        if self.company:
            lines.append(f"Company: {self.company}")
        if self.industry:
            lines.append(f"Industry: {self.industry}")
        if self.target_markets:
            lines.append(f"Target markets: {', '.join(self.target_markets)}")
        if self.business_model:
            lines.append(f"Business model: {self.business_model}")
        if self.value_proposition:
            lines.append(f"Value proposition: {self.value_proposition}")
        if self.products:
            lines.append(f"Products: {', '.join(self.products)}")
        if self.advantages:
            lines.append(f"Advantages: {', '.join(self.advantages)}")
        if self.challenges:
            lines.append(f"Challenges: {', '.join(self.challenges)}")
        if self.objectives:
            lines.append(f"Objectives: {', '.join(self.objectives)}")
        return "\n".join(lines)


@dataclass(slots=True)
class ResearchOptions:
    skip_website_scraping: bool = False


# --- Documents ---


@dataclass
class Document:
    url: str
    title: str = ""
    content: str = ""
    snippet: str = ""
    query: str | None = None
    published: str | None = None
    position: int | None = None
    relevance_score: float | None = None
    provenance: Provenance = Provenance.SEARCH
    extracted_at: str | None = None
    category: Category | None = None
    categories: list[Category] = field(default_factory=list)

    def tag(self, category: Category) -> None:
        if self.category is None:
            self.category = category
        if category not in self.categories:
            self.categories.append(category)

    def excerpt(self, limit: int) -> str:
        text = (self.content or self.snippet or "").strip()
        if len(text) <= limit:
            return text
        return text[:limit] + "..."

    def with_score(self, score: float) -> "Document":
        return replace(
            self,
            relevance_score=min(max(float(score), 0.0), 1.0),
            categories=list(self.categories),
        )

    def copy(self) -> "Document":
        return replace(self, categories=list(self.categories))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["provenance"] = self.provenance.value
        data["category"] = self.category.value if self.category else None
        data["categories"] = [c.value for c in self.categories]
        return data


@dataclass(slots=True)
class ReferenceInfo:
    title: str
    date: str | None = None
    relevance_score: float | None = None


# --- Run state ---


def _empty_category_maps() -> dict[Category, dict[str, Document]]:
    return {category: {} for category in Category}


@dataclass
class ResearchState:
    """Single mutable aggregate for one research run."""

    company: str
    industry: str = ""
    hq_location: str = "Unknown"
    business_context: BusinessContext | None = None

    documents: dict[Category, dict[str, Document]] = field(default_factory=_empty_category_maps)
    collected: dict[str, Document] = field(default_factory=dict)
    site_documents: dict[str, Document] = field(default_factory=dict)
    queries: dict[Category, list[str]] = field(default_factory=dict)

    briefings: dict[Category, str] = field(default_factory=dict)
    enrichments: dict[Category, str] = field(default_factory=dict)
    cross_category_insights: str | None = None

    current_step: ResearchStep = ResearchStep.GROUNDING
    completed_steps: list[ResearchStep] = field(default_factory=list)
    stage_timings: dict[ResearchStep, dict[str, float]] = field(default_factory=dict)

    references: list[str] = field(default_factory=list)
    reference_info: dict[str, ReferenceInfo] = field(default_factory=dict)
    reference_titles: dict[str, str] = field(default_factory=dict)

    report: str = ""
    status: RunStatus = RunStatus.PENDING
    started_at: str | None = None
    ended_at: str | None = None
    error: str | None = None

    def category_data(self, category: Category) -> dict[str, Document]:
        return self.documents.setdefault(category, {})

    def mark_completed(self, step: ResearchStep) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)

    def progress(self) -> int:
        done = sum(1 for step in self.completed_steps if step in WORKFLOW_STEPS)
        return round(done / len(WORKFLOW_STEPS) * 100)

    def add_reference(self, url: str) -> None:
        if url and url not in self.references:
            self.references.append(url)

    def document_counts(self) -> dict[str, int]:
        return {category.value: len(self.category_data(category)) for category in Category}

    def all_queries(self) -> list[str]:
        queries: list[str] = []
        for category in Category:
            for query in self.queries.get(category, []):
                if query not in queries:
                    queries.append(query)
        return queries

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company,
            "industry": self.industry,
            "hq_location": self.hq_location,
            "documents": {
                category.value: {url: doc.to_dict() for url, doc in docs.items()}
                for category, docs in self.documents.items()
            },
            "briefings": {category.value: text for category, text in self.briefings.items()},
            "enrichments": {category.value: text for category, text in self.enrichments.items()},
            "cross_category_insights": self.cross_category_insights,
            "current_step": self.current_step.value,
            "completed_steps": [step.value for step in self.completed_steps],
            "references": list(self.references),
            "reference_titles": dict(self.reference_titles),
            "report": self.report,
            "status": self.status.value,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "error": self.error,
        }


# --- Results ---


@dataclass
class ResearchMetadata:
    total_documents: int = 0
    documents_per_category: dict[str, int] = field(
        default_factory=lambda: {category.value: 0 for category in Category}
    )
    cost_estimate: float = 0.0
    duration: float = 0.0
    queries_generated: list[str] = field(default_factory=list)
    sources_used: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ResearchResult:
    competitor: CompetitorDescriptor
    state: ResearchState
    report: str
    briefings: dict[str, str]
    metadata: ResearchMetadata
    success: bool
    error: str | None = None

    @classmethod
    def failed(
        cls,
        competitor: CompetitorDescriptor,
        state: ResearchState,
        error: str,
        *,
        duration: float,
    ) -> "ResearchResult":
        return cls(
            competitor=competitor,
            state=state,
            report="",
            briefings={category.value: "" for category in Category},
            metadata=ResearchMetadata(duration=duration),
            success=False,
            error=error,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "competitor": self.competitor.model_dump(),
            "state": self.state.to_dict(),
            "report": self.report,
            "briefings": dict(self.briefings),
            "metadata": self.metadata.to_dict(),
            "success": self.success,
            "error": self.error,
        }
