from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Union

from loguru import logger

from competitor_intel.models.events import EventType, ProgressEvent
from competitor_intel.services import logger as log_service

ProgressObserver = Callable[[ProgressEvent], Union[Awaitable[Any], Any]]


def status(step: str, message: str, *, node: str | None = None, **data: Any) -> ProgressEvent:
    return ProgressEvent(event=EventType.STATUS, step=step, message=message, node=node, data=data)


def progress(step: str, percent: int, message: str = "", **data: Any) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.PROGRESS,
        step=step,
        message=message or f"{step} completed",
        progress=percent,
        data=data,
    )


def queries_generated(step: str, queries: list[str], *, category: str) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.QUERY_GENERATED,
        step=step,
        message=f"Generated {len(queries)} {category} queries",
        data={"category": category, "queries": list(queries)},
    )


def documents_found(step: str, count: int, *, category: str, **data: Any) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.DOCUMENTS_FOUND,
        step=step,
        message=f"Found {count} {category} documents",
        data={"category": category, "documents_found": count, **data},
    )


def content_extracted(step: str, extracted: int, attempted: int, *, category: str) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.CONTENT_EXTRACTED,
        step=step,
        message=f"Extracted {extracted}/{attempted} {category} pages",
        data={"category": category, "extracted": extracted, "attempted": attempted},
    )


def briefing_generated(category: str, length: int) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.BRIEFING_GENERATED,
        step="briefing",
        message=f"Generated {category} briefing",
        data={"category": category, "length": length},
    )


def report_chunk(chunk: str) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.REPORT_CHUNK,
        step="editor",
        message="Formatting final report",
        data={"chunk": chunk},
    )


def result(payload: dict[str, Any]) -> ProgressEvent:
    return ProgressEvent(
        event=EventType.RESULT,
        step="completed" if payload.get("success") else "error",
        message="Research finished",
        progress=100 if payload.get("success") else None,
        data=payload,
    )


def error(step: str, message: str, *, node: str | None = None) -> ProgressEvent:
    return ProgressEvent(event=EventType.ERROR, step=step, message=message, node=node)


class ProgressReporter:
    """Delivers events to an optional observer without ever failing the run."""

    def __init__(self, observer: ProgressObserver | None = None):
        self.observer = observer
        self.events_sent = 0

    async def emit(self, event: ProgressEvent) -> None:
        log_service.log_event(
            event.event.value, event.step, event.message, progress=event.progress, node=event.node
        )
        if self.observer is None:
            return
        try:
            outcome = self.observer(event)
            if inspect.isawaitable(outcome):
                await outcome
            self.events_sent += 1
        except Exception as exc:
            logger.warning(f"Progress observer failed on {event.event.value} event: {exc}")

    async def status(self, step: str, message: str, **data: Any) -> None:
        await self.emit(status(step, message, **data))

    async def error(self, step: str, message: str, *, node: str | None = None) -> None:
        await self.emit(error(step, message, node=node))
