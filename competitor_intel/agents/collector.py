from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from competitor_intel.models.research import Category, Document, ResearchState


@dataclass(slots=True)
class CollectionSummary:
    per_category: dict[str, int] = field(default_factory=dict)
    total: int = 0
    unique: int = 0


def merge_category_documents(
    documents: dict[Category, dict[str, Document]],
) -> tuple[dict[str, Document], dict[str, int]]:
    """Deduplicate the category maps by url, tagging each copy with every category it came from.

    A category map that is not a dict counts as empty.
    """
    merged: dict[str, Document] = {}
    counts: dict[str, int] = {}
    for category in Category:
        category_docs = documents.get(category) if isinstance(documents, dict) else None
        if not isinstance(category_docs, dict):
            counts[category.value] = 0
            continue
        count = 0
        for url, doc in category_docs.items():
            if not url or not isinstance(doc, Document):
                continue
            count += 1
            entry = merged.get(url)
            if entry is None:
                entry = doc.copy()
                entry.category = None
                entry.categories = []
                merged[url] = entry
            entry.tag(category)
        counts[category.value] = count
    return merged, counts


def collect(state: ResearchState) -> CollectionSummary:
    merged, counts = merge_category_documents(state.documents)
    state.collected = merged
    for url in merged:
        state.add_reference(url)

    summary = CollectionSummary(per_category=counts, total=sum(counts.values()), unique=len(merged))
    logger.info(
        f"Collector merged {summary.total} documents into {summary.unique} unique urls "
        f"({', '.join(f'{name}={count}' for name, count in counts.items())})"
    )
    return summary
