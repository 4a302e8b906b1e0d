from __future__ import annotations

from competitor_intel.agents.collector import collect, merge_category_documents
from competitor_intel.models.research import Category, Document, ResearchState


def make_state() -> ResearchState:
    state = ResearchState(company="Acme")
    state.documents[Category.COMPANY] = {
        "https://a.example.com": Document(url="https://a.example.com", title="A"),
        "https://shared.example.com": Document(url="https://shared.example.com", title="Shared"),
    }
    state.documents[Category.NEWS] = {
        "https://shared.example.com": Document(url="https://shared.example.com", title="Shared news"),
        "https://n.example.com": Document(url="https://n.example.com", title="N"),
    }
    return state


def test_merge_tags_urls_with_every_category():
    state = make_state()

    summary = collect(state)

    assert summary.total == 4
    assert summary.unique == 3
    assert summary.per_category == {"company": 2, "industry": 0, "financial": 0, "news": 2}
    shared = state.collected["https://shared.example.com"]
    assert shared.categories == [Category.COMPANY, Category.NEWS]
    assert shared.category is Category.COMPANY
    assert shared.title == "Shared"


def test_references_follow_first_seen_order():
    state = make_state()

    collect(state)

    assert state.references == [
        "https://a.example.com",
        "https://shared.example.com",
        "https://n.example.com",
    ]


def test_collect_is_idempotent():
    state = make_state()

    collect(state)
    first = {url: doc.to_dict() for url, doc in state.collected.items()}
    first_refs = list(state.references)
    collect(state)

    assert {url: doc.to_dict() for url, doc in state.collected.items()} == first
    assert state.references == first_refs


def test_collect_does_not_mutate_category_maps():
    state = make_state()

    collect(state)

    assert state.documents[Category.COMPANY]["https://shared.example.com"].categories == []


def test_malformed_category_map_counts_as_zero():
    documents = {
        Category.COMPANY: {"https://a.example.com": Document(url="https://a.example.com")},
        Category.INDUSTRY: ["not", "a", "map"],
    }

    merged, counts = merge_category_documents(documents)

    assert list(merged) == ["https://a.example.com"]
    assert counts["industry"] == 0
    assert counts["financial"] == 0
