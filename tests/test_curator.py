from __future__ import annotations

import re
from unittest.mock import patch

import pytest

from competitor_intel.agents.collector import collect
from competitor_intel.agents.curator import Curator
from competitor_intel.models.research import Category, Document, ResearchState
from competitor_intel.services.progress import ProgressReporter


def state_with(counts: dict[Category, int]) -> ResearchState:
    state = ResearchState(company="Acme", industry="Software")
    for category, count in counts.items():
        state.documents[category] = {
            f"https://{category.value}.example.com/{i}": Document(
                url=f"https://{category.value}.example.com/{i}",
                title=f"{category.value} {i}",
                snippet=f"snippet {i}",
            )
            for i in range(count)
        }
    collect(state)
    return state


def scores(*values: float):
    """Reply with ``values`` cycled to the requested count."""

    def reply(prompt: str) -> str:
        count = int(re.search(r"only the (\d+) scores", prompt).group(1))
        return ",".join(str(values[i % len(values)]) for i in range(count))

    return reply


@pytest.mark.asyncio
async def test_scores_are_bounded_and_low_scores_dropped(capabilities, text_client):
    state = state_with({Category.COMPANY: 4})
    text_client.when("content curator", "0.9,0.2,1.5,0.4")

    summary = await Curator(capabilities, batch_size=5, threshold=0.4).curate(state, ProgressReporter())

    kept = state.documents[Category.COMPANY]
    assert summary.kept == 3
    assert summary.dropped == 1
    assert "https://company.example.com/1" not in kept
    assert all(0.0 <= doc.relevance_score <= 1.0 for doc in state.collected.values())
    assert [doc.relevance_score for doc in kept.values()] == [1.0, 0.9, 0.4]


@pytest.mark.asyncio
async def test_failed_batch_gets_default_scores(capabilities, text_client):
    state = state_with({Category.COMPANY: 5})
    text_client.when("content curator", ValueError("invalid api key"))

    summary = await Curator(capabilities, batch_size=5, threshold=0.5).curate(state, ProgressReporter())

    assert summary.failed_batches == 1
    assert summary.kept == 5
    assert all(doc.relevance_score == 0.5 for doc in state.documents[Category.COMPANY].values())


@pytest.mark.asyncio
async def test_unparseable_scores_get_default(capabilities, text_client):
    state = state_with({Category.INDUSTRY: 2})
    text_client.when("content curator", "These all look relevant.")

    summary = await Curator(capabilities, batch_size=5).curate(state, ProgressReporter())

    assert summary.failed_batches == 1
    assert {doc.relevance_score for doc in state.collected.values()} == {0.5}


@pytest.mark.asyncio
async def test_short_score_list_defaults_missing_positions(capabilities, text_client):
    state = state_with({Category.NEWS: 3})
    text_client.when("content curator", "0.9")

    await Curator(capabilities, batch_size=5).curate(state, ProgressReporter())

    by_url = {url: doc.relevance_score for url, doc in state.collected.items()}
    assert by_url == {
        "https://news.example.com/0": 0.9,
        "https://news.example.com/1": 0.5,
        "https://news.example.com/2": 0.5,
    }


@pytest.mark.asyncio
async def test_numbered_score_reply_keeps_positions(capabilities, text_client):
    state = state_with({Category.COMPANY: 3})
    text_client.when("content curator", "1. 0.9\n2. 0.2\n3. 0.7")

    summary = await Curator(capabilities, batch_size=5, threshold=0.4).curate(state, ProgressReporter())

    assert summary.kept == 2
    assert "https://company.example.com/1" not in state.documents[Category.COMPANY]
    assert state.collected["https://company.example.com/1"].relevance_score == 0.2


@pytest.mark.asyncio
async def test_extra_scores_are_logged_as_mismatch(capabilities, text_client):
    state = state_with({Category.COMPANY: 2})
    text_client.when("content curator", "0.9,0.8,0.7,0.6")

    with patch("competitor_intel.agents.curator.logger") as mock_logger:
        await Curator(capabilities, batch_size=5).curate(state, ProgressReporter())

    warnings = [call.args[0] for call in mock_logger.warning.call_args_list]
    assert any("expected 2, got 4" in message for message in warnings)
    by_url = {url: doc.relevance_score for url, doc in state.collected.items()}
    assert by_url == {"https://company.example.com/0": 0.9, "https://company.example.com/1": 0.8}


@pytest.mark.asyncio
async def test_exact_score_count_logs_no_mismatch(capabilities, text_client):
    state = state_with({Category.COMPANY: 2})
    text_client.when("content curator", "0.9,0.8")

    with patch("competitor_intel.agents.curator.logger") as mock_logger:
        await Curator(capabilities, batch_size=5).curate(state, ProgressReporter())

    mock_logger.warning.assert_not_called()


@pytest.mark.asyncio
async def test_documents_are_batched(capabilities, text_client):
    state = state_with({Category.COMPANY: 7, Category.FINANCIAL: 5})
    text_client.when("content curator", scores(0.8))

    summary = await Curator(capabilities, batch_size=5).curate(state, ProgressReporter())

    assert len(text_client.prompts_containing("content curator")) == 3
    assert summary.scored == 12
    assert summary.kept == 12
    call = text_client.calls[0]
    assert call["max_tokens"] == 100
    assert call["temperature"] == 0.3


@pytest.mark.asyncio
async def test_prompt_includes_document_category(capabilities, text_client):
    state = state_with({Category.FINANCIAL: 1})
    text_client.when("content curator", "0.7")

    await Curator(capabilities).curate(state, ProgressReporter())

    assert "[financial] Title: financial 0" in text_client.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_shared_url_is_resplit_into_every_category(capabilities, text_client):
    state = ResearchState(company="Acme")
    doc = Document(url="https://shared.example.com", title="Shared")
    state.documents[Category.COMPANY] = {doc.url: doc}
    state.documents[Category.NEWS] = {doc.url: doc.copy()}
    collect(state)
    text_client.when("content curator", "0.8")

    await Curator(capabilities).curate(state, ProgressReporter())

    company = state.documents[Category.COMPANY]["https://shared.example.com"]
    news = state.documents[Category.NEWS]["https://shared.example.com"]
    assert company is not news
    assert company.relevance_score == news.relevance_score == 0.8
    assert len(text_client.calls) == 1


@pytest.mark.asyncio
async def test_reference_metadata_for_survivors(capabilities, text_client):
    state = state_with({Category.COMPANY: 2})
    text_client.when("content curator", "0.9,0.1")

    await Curator(capabilities).curate(state, ProgressReporter())

    assert list(state.reference_info) == ["https://company.example.com/0"]
    assert state.reference_info["https://company.example.com/0"].relevance_score == 0.9
    assert state.reference_titles["https://company.example.com/0"] == "company 0"


@pytest.mark.asyncio
async def test_empty_collection_is_a_no_op(capabilities, text_client):
    state = ResearchState(company="Acme")

    summary = await Curator(capabilities).curate(state, ProgressReporter())

    assert summary.scored == 0
    assert text_client.calls == []
    assert all(docs == {} for docs in state.documents.values())
