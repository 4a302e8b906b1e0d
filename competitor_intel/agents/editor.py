"""Two-pass report compiler.

Pass 1 merges the briefings into the canonical skeleton; pass 2 streams a
cleanup of that document. The references block is always built here from
the run state and re-appended after each pass, never written by the model.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from loguru import logger

from competitor_intel.errors import NoBriefingsError
from competitor_intel.models.events import ChunkKind
from competitor_intel.models.research import Category, ResearchState, ResearchStep
from competitor_intel.services import progress
from competitor_intel.services.capabilities import QUICK, STANDARD, Capabilities
from competitor_intel.services.gateway import LLM
from competitor_intel.services.output_parsers import strip_code_fences
from competitor_intel.services.progress import ProgressReporter
from competitor_intel.services.prompt_store import render_prompt

COMPILE_MAX_TOKENS = 4000
POLISH_MAX_TOKENS = 4000

CANONICAL_SECTIONS: dict[Category, str] = {
    Category.COMPANY: "Company Overview",
    Category.INDUSTRY: "Industry Overview",
    Category.FINANCIAL: "Financial Overview",
    Category.NEWS: "News",
}

SECTION_ALIASES: dict[str, str] = {
    "company overview": "Company Overview",
    "company": "Company Overview",
    "company briefing": "Company Overview",
    "industry overview": "Industry Overview",
    "industry": "Industry Overview",
    "industry briefing": "Industry Overview",
    "market overview": "Industry Overview",
    "financial overview": "Financial Overview",
    "financial": "Financial Overview",
    "financials": "Financial Overview",
    "financial briefing": "Financial Overview",
    "news": "News",
    "recent news": "News",
    "latest news": "News",
    "news briefing": "News",
    "recent developments": "News",
}

REFERENCES_LABEL = "**References**"
REFERENCE_SECTION_NAMES = {"references", "sources", "citations", "reference", "bibliography"}

HEADING_RE = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
HEADING_NUMBER_RE = re.compile(r"^\d+[.)]\s*")


@dataclass(slots=True)
class EditResult:
    report: str
    compiled_with_fallback: bool = False
    polished_with_fallback: bool = False


def _normalize_heading(name: str) -> str:
    name = HEADING_NUMBER_RE.sub("", name.strip().strip("*_").strip())
    return name.rstrip(":").strip().lower()


def _is_references_label(line: str) -> bool:
    if not line.startswith("**"):
        return False
    return line.strip("*: ").lower() in REFERENCE_SECTION_NAMES


def format_references(state: ResearchState) -> str:
    """Numbered ``N. Title - url`` lines under the bold references label.

    Lists curated urls in reference order; when curation kept nothing, lists
    every collected url instead. Returns an empty string when there are none.
    """
    urls = [url for url in state.references if url in state.reference_info]
    if not urls:
        urls = list(state.references)
    if not urls:
        return ""
    lines = [REFERENCES_LABEL, ""]
    for number, url in enumerate(urls, start=1):
        info = state.reference_info.get(url)
        title = state.reference_titles.get(url) or (info.title if info else "") or url
        lines.append(f"{number}. {title} - {url}")
    return "\n".join(lines)


def split_sections(text: str) -> dict[str, list[str]]:
    """Canonical section name -> body lines.

    Title lines are dropped, unknown ``##`` headings and deeper headings become
    ``###`` inside the current section, and any references section is skipped.
    Content before the first canonical heading is dropped.
    """
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in strip_code_fences(text).splitlines():
        stripped = line.strip()
        match = HEADING_RE.match(stripped)
        if match:
            level = len(match.group(1))
            name = match.group(2)
            key = _normalize_heading(name)
            if level == 1:
                continue
            if key in REFERENCE_SECTION_NAMES:
                current = None
                continue
            if level == 2 and key in SECTION_ALIASES:
                current = SECTION_ALIASES[key]
                sections.setdefault(current, [])
                continue
            if current is not None:
                sections[current].append(f"### {name.strip()}")
            continue
        if _is_references_label(stripped):
            current = None
            continue
        if current is not None:
            sections[current].append(line.rstrip())
    return sections


def _collapse_blank_lines(lines: list[str]) -> list[str]:
    collapsed: list[str] = []
    for line in lines:
        if not line.strip() and (not collapsed or not collapsed[-1].strip()):
            continue
        collapsed.append(line)
    while collapsed and not collapsed[-1].strip():
        collapsed.pop()
    return collapsed


def enforce_report_structure(text: str, company: str, references: str = "") -> str:
    sections = split_sections(text)
    lines = [f"# {company} Research Report", ""]
    for heading in CANONICAL_SECTIONS.values():
        body = _collapse_blank_lines(sections.get(heading, []))
        if not body:
            continue
        lines.extend([f"## {heading}", "", *body, ""])
    output = "\n".join(_collapse_blank_lines(lines))
    if references:
        output = f"{output}\n\n{references}"
    return output + "\n"


def has_canonical_sections(text: str) -> bool:
    return any(_collapse_blank_lines(body) for body in split_sections(text).values())


def fallback_report(state: ResearchState) -> str:
    parts = [f"# {state.company} Research Report"]
    for category, heading in CANONICAL_SECTIONS.items():
        brief = state.briefings.get(category, "").strip()
        if brief:
            parts.append(f"## {heading}\n\n{brief}")
    return "\n\n".join(parts)


class Editor:
    def __init__(self, capabilities: Capabilities, *, clock: Callable[[], datetime] | None = None):
        self.capabilities = capabilities
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _briefings_block(self, state: ResearchState) -> str:
        return "\n\n".join(
            f"## {heading}\n{state.briefings[category].strip()}"
            for category, heading in CANONICAL_SECTIONS.items()
            if state.briefings.get(category, "").strip()
        )

    async def compile(self, state: ResearchState) -> tuple[str, bool]:
        now = self._clock()
        prompt = render_prompt(
            "editor.compile",
            company=state.company,
            date=now.strftime("%B %d, %Y"),
            briefings=self._briefings_block(state),
            year=now.year,
            industry=state.industry,
            hq_location=state.hq_location,
        )
        result = await self.capabilities.generate(
            prompt,
            tier=STANDARD,
            max_tokens=COMPILE_MAX_TOKENS,
            temperature=0,
            caller="editor.compile",
        )
        text = (result.value or "").strip() if result.ok else ""
        if text and has_canonical_sections(text):
            return text, False
        reason = result.error if not result.ok else "no canonical sections in output"
        logger.warning(f"Report compilation fell back to concatenated briefings: {reason}")
        return fallback_report(state), True

    async def polish(self, state: ResearchState, reporter: ProgressReporter, document: str) -> str | None:
        prompt = render_prompt(
            "editor.polish",
            company=state.company,
            date=self._clock().strftime("%B %d, %Y"),
            report=document,
        )
        step = ResearchStep.EDITOR.value
        async for chunk in self.capabilities.stream_generate(
            prompt,
            tier=QUICK,
            max_tokens=POLISH_MAX_TOKENS,
            temperature=0,
            caller="editor.polish",
        ):
            if chunk.kind is ChunkKind.DELTA:
                await reporter.emit(progress.report_chunk(chunk.text))
            elif chunk.kind is ChunkKind.RESET:
                await reporter.status(step, "Retrying report formatting", reset=True)
            elif chunk.kind is ChunkKind.DONE:
                return chunk.text.strip() or None
            else:
                logger.warning(f"Report polish failed, keeping compiled report: {chunk.error}")
                return None
        return None

    async def edit(self, state: ResearchState, reporter: ProgressReporter) -> EditResult:
        if not any(text.strip() for text in state.briefings.values()):
            raise NoBriefingsError()

        step = ResearchStep.EDITOR.value
        references = format_references(state)

        await reporter.status(step, "Compiling briefings into report")
        compiled, compile_fallback = await self.compile(state)
        compiled_doc = enforce_report_structure(compiled, state.company, references)

        await self.capabilities.pause(LLM)
        await reporter.status(step, "Formatting final report")
        polished = await self.polish(state, reporter, compiled_doc)
        polish_fallback = polished is None or not has_canonical_sections(polished)
        if polish_fallback and polished is not None:
            logger.warning("Polished report lost its sections, keeping compiled report")

        final = compiled_doc if polish_fallback else enforce_report_structure(
            polished, state.company, references
        )
        logger.info(f"Editor produced {len(final)} character report for {state.company}")
        return EditResult(
            report=final,
            compiled_with_fallback=compile_fallback,
            polished_with_fallback=polish_fallback,
        )
