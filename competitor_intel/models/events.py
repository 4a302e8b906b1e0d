from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from competitor_intel.models.research import utc_now


class EventType(str, Enum):
    STATUS = "status"
    PROGRESS = "progress"
    QUERY_GENERATED = "query_generated"
    DOCUMENTS_FOUND = "documents_found"
    CONTENT_EXTRACTED = "content_extracted"
    BRIEFING_GENERATED = "briefing_generated"
    REPORT_CHUNK = "report_chunk"
    RESULT = "result"
    ERROR = "error"


@dataclass
class ProgressEvent:
    event: EventType
    step: str
    message: str = ""
    progress: int | None = None
    data: dict[str, Any] = field(default_factory=dict)
    node: str | None = None
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "type": self.event.value,
            "step": self.step,
            "message": self.message,
            "timestamp": self.timestamp,
        }
        if self.progress is not None:
            payload["progress"] = self.progress
        if self.node:
            payload["node"] = self.node
        if self.data:
            payload["data"] = self.data
        return payload


class ChunkKind(str, Enum):
    DELTA = "delta"
    RESET = "reset"
    DONE = "done"
    ERROR = "error"


@dataclass(slots=True)
class StreamChunk:
    kind: ChunkKind
    text: str = ""
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.kind in (ChunkKind.DONE, ChunkKind.ERROR)
