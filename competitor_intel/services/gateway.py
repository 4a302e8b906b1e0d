from __future__ import annotations

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from loguru import logger

from competitor_intel.config import settings
from competitor_intel.errors import (
    CapabilityError,
    CapabilityTimeoutError,
    ErrorKind,
    RateLimitExceeded,
    is_throughput_limit,
    to_capability_error,
)

T = TypeVar("T")

LLM = "llm"
SEARCH = "search"
EXTRACT = "extract"
CAPABILITIES = (LLM, SEARCH, EXTRACT)

THROUGHPUT_BACKOFF_CAP = 120.0
THROUGHPUT_JITTER = 60.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    timeout: float = 30.0

    @property
    def max_attempts(self) -> int:
        return max(self.max_retries, 0) + 1

    @classmethod
    def from_settings(cls, capability: str, *, streaming: bool = False) -> "RetryPolicy":
        if capability == LLM:
            return cls(
                max_retries=settings.llm_max_retries,
                base_delay=settings.llm_base_delay,
                max_delay=settings.llm_max_delay,
                timeout=(
                    settings.llm_stream_timeout_seconds
                    if streaming
                    else settings.llm_timeout_seconds
                ),
            )
        if capability == SEARCH:
            return cls(
                max_retries=settings.search_max_retries,
                base_delay=settings.search_base_delay,
                max_delay=settings.search_max_delay,
                timeout=settings.search_timeout_seconds,
            )
        if capability == EXTRACT:
            return cls(
                max_retries=settings.extract_max_retries,
                base_delay=settings.extract_base_delay,
                max_delay=settings.extract_max_delay,
                timeout=settings.extract_timeout_seconds,
            )
        return cls()


@dataclass(slots=True)
class CallResult(Generic[T]):
    ok: bool
    value: T | None = None
    error: CapabilityError | None = None
    attempts: int = 0

    def unwrap(self) -> T:
        if not self.ok:
            raise self.error or CapabilityError("capability call failed")
        return self.value  # type: ignore[return-value]


def compute_backoff(
    kind: ErrorKind,
    attempt: int,
    policy: RetryPolicy,
    *,
    throughput: bool = False,
    jitter: float = 0.0,
) -> float:
    """Delay in seconds before retrying after a failed 0-based `attempt`."""
    base = policy.base_delay
    if kind is ErrorKind.RATE_LIMITED:
        if throughput:
            return min(base * 3 ** (attempt + 3) + jitter * THROUGHPUT_JITTER, THROUGHPUT_BACKOFF_CAP)
        return min(base * 2 ** (attempt + 2) + jitter * 2, policy.max_delay * 2)
    if kind is ErrorKind.TIMEOUT:
        return min(base * 2 ** (attempt + 1) + jitter, policy.max_delay)
    return min(base * 2**attempt + jitter, policy.max_delay)


class RateWindow:
    """Fixed-window call counter for one capability."""

    def __init__(self, limit: int, window_seconds: float, clock: Callable[[], float]):
        self.limit = max(int(limit), 0)
        self.window_seconds = max(float(window_seconds), 0.001)
        self._clock = clock
        self._lock = threading.Lock()
        self._count = 0
        self._reset_at: float | None = None

    def try_acquire(self) -> tuple[bool, float]:
        """Atomically take one slot. Returns (allowed, seconds until reset)."""
        with self._lock:
            now = self._clock()
            if self._reset_at is None or now >= self._reset_at:
                self._count = 0
                self._reset_at = now + self.window_seconds
            if self._count >= self.limit:
                return False, max(self._reset_at - now, 0.0)
            self._count += 1
            return True, 0.0

    def remaining(self) -> tuple[int, float]:
        with self._lock:
            now = self._clock()
            if self._reset_at is None or now >= self._reset_at:
                return self.limit, self.window_seconds
            return max(self.limit - self._count, 0), max(self._reset_at - now, 0.0)


class RateLimitedGateway:
    """Uniform retry/backoff/timeout wrapper with per-capability call windows.

    The gateway is shared by every run in the process; the windows are the
    only state touched by concurrent callers.
    """

    def __init__(
        self,
        limits: dict[str, int] | None = None,
        *,
        window_seconds: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
        clock: Callable[[], float] | None = None,
        rng: Callable[[], float] | None = None,
    ):
        if limits is None:
            limits = {
                LLM: settings.llm_requests_per_minute,
                SEARCH: settings.search_requests_per_minute,
                EXTRACT: settings.extract_requests_per_minute,
            }
        self.window_seconds = (
            window_seconds if window_seconds is not None else settings.rate_limit_window_seconds
        )
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._rng = rng or random.random
        self._windows_lock = threading.Lock()
        self._windows: dict[str, RateWindow] = {
            name: RateWindow(limit, self.window_seconds, self._clock)
            for name, limit in limits.items()
        }

    def _window(self, capability: str) -> RateWindow | None:
        with self._windows_lock:
            return self._windows.get(capability)

    def snapshot(self) -> dict[str, dict[str, float]]:
        """Remaining budget per capability for the current window."""
        with self._windows_lock:
            windows = dict(self._windows)
        info: dict[str, dict[str, float]] = {}
        for name, window in windows.items():
            remaining, reset_in = window.remaining()
            info[name] = {"limit": window.limit, "remaining": remaining, "reset_in": reset_in}
        return info

    async def call(
        self,
        capability: str,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy | None = None,
    ) -> CallResult[T]:
        policy = policy or RetryPolicy.from_settings(capability)

        window = self._window(capability)
        if window is not None:
            allowed, retry_after = window.try_acquire()
            if not allowed:
                error = RateLimitExceeded(capability, retry_after)
                logger.warning(error.message)
                return CallResult(ok=False, error=error, attempts=0)

        last_error: CapabilityError | None = None
        for attempt in range(policy.max_attempts):
            try:
                value = await asyncio.wait_for(operation(), timeout=policy.timeout)
                return CallResult(ok=True, value=value, attempts=attempt + 1)
            except asyncio.CancelledError:
                raise
            except asyncio.TimeoutError:
                last_error = CapabilityTimeoutError(
                    f"{capability} request timed out after {policy.timeout:g}s",
                    capability=capability,
                )
            except Exception as exc:
                last_error = to_capability_error(exc, capability)

            if not last_error.retryable:
                logger.error(
                    f"Non-retryable {last_error.kind.value} error from {capability}, "
                    f"failing immediately: {last_error.message}"
                )
                return CallResult(ok=False, error=last_error, attempts=attempt + 1)

            if attempt + 1 >= policy.max_attempts:
                break

            delay = compute_backoff(
                last_error.kind,
                attempt,
                policy,
                throughput=is_throughput_limit(last_error),
                jitter=self._rng(),
            )
            logger.warning(
                f"{capability} request failed (attempt {attempt + 1}/{policy.max_attempts}), "
                f"retrying in {delay:.1f}s: {last_error.message}"
            )
            await self._sleep(delay)

        return CallResult(ok=False, error=last_error, attempts=policy.max_attempts)
