from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from typing import Any

from competitor_intel.config import settings

# USD per million tokens, matched by substring against the model id.
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "claude-opus-4": (15.0, 75.0),
    "claude-sonnet-4": (3.0, 15.0),
    "claude-3-7-sonnet": (3.0, 15.0),
    "claude-3.7-sonnet": (3.0, 15.0),
    "claude-3-5-sonnet": (3.0, 15.0),
    "claude-3.5-sonnet": (3.0, 15.0),
    "claude-3-5-haiku": (0.8, 4.0),
    "claude-3.5-haiku": (0.8, 4.0),
    "claude-3-haiku": (0.25, 1.25),
    "gpt-4o-mini": (0.15, 0.6),
    "gpt-4o": (2.5, 10.0),
}
DEFAULT_PRICING = (3.0, 15.0)
LONG_CONTEXT_TOKENS = 200_000


def pricing_for(model: str) -> tuple[float, float]:
    lowered = model.lower()
    # Longest match wins.
    for key in sorted(MODEL_PRICING, key=len, reverse=True):
        if key in lowered:
            return MODEL_PRICING[key]
    return DEFAULT_PRICING


@dataclass(slots=True)
class LLMCost:
    model: str
    caller: str
    input_tokens: int
    output_tokens: int
    input_cost: float
    output_cost: float

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


@dataclass(slots=True)
class ExternalCost:
    service: str
    description: str
    cost: float
    units: int = 1


@dataclass
class CostTracker:
    """Per-run ledger of generation and external-call spend."""

    search_unit_cost: float = field(default_factory=lambda: settings.search_cost_per_call)
    extract_unit_cost: float = field(default_factory=lambda: settings.extract_cost_per_call)
    llm_calls: list[LLMCost] = field(default_factory=list)
    external_calls: list[ExternalCost] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def track_llm(self, model: str, input_tokens: int, output_tokens: int, *, caller: str = "") -> LLMCost:
        input_rate, output_rate = pricing_for(model)
        if "sonnet-4" in model and input_tokens > LONG_CONTEXT_TOKENS:
            input_rate, output_rate = input_rate * 2, output_rate * 1.5
        entry = LLMCost(
            model=model,
            caller=caller,
            input_tokens=int(input_tokens),
            output_tokens=int(output_tokens),
            input_cost=input_tokens / 1_000_000 * input_rate,
            output_cost=output_tokens / 1_000_000 * output_rate,
        )
        with self._lock:
            self.llm_calls.append(entry)
        return entry

    def track_search(self, query: str) -> ExternalCost:
        return self._track_external("search", f"search: {query[:80]}", self.search_unit_cost)

    def track_extract(self, url: str) -> ExternalCost:
        return self._track_external("extract", f"extract: {url}", self.extract_unit_cost)

    def _track_external(self, service: str, description: str, cost: float) -> ExternalCost:
        entry = ExternalCost(service=service, description=description, cost=cost)
        with self._lock:
            self.external_calls.append(entry)
        return entry

    @property
    def total_cost(self) -> float:
        with self._lock:
            llm = sum(call.total_cost for call in self.llm_calls)
            external = sum(call.cost for call in self.external_calls)
        return llm + external

    def summary(self) -> dict[str, Any]:
        with self._lock:
            llm_calls = list(self.llm_calls)
            external_calls = list(self.external_calls)
        by_service: dict[str, dict[str, float]] = {}
        for call in external_calls:
            bucket = by_service.setdefault(call.service, {"calls": 0, "cost": 0.0})
            bucket["calls"] += call.units
            bucket["cost"] += call.cost
        return {
            "total_cost": round(self.total_cost, 6),
            "llm_requests": len(llm_calls),
            "input_tokens": sum(call.input_tokens for call in llm_calls),
            "output_tokens": sum(call.output_tokens for call in llm_calls),
            "llm_cost": round(sum(call.total_cost for call in llm_calls), 6),
            "external": by_service,
            "calls": [asdict(call) for call in llm_calls],
        }
