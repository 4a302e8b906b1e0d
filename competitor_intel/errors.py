"""Failure taxonomy for capability calls and the research workflow."""
from __future__ import annotations

import asyncio
from enum import Enum

import httpx

NON_RETRYABLE_MARKERS = (
    "authentication",
    "unauthorized",
    "invalid api key",
    "invalid credentials",
    "quota exceeded",
    "insufficient_quota",
    "forbidden",
)
QUOTA_MARKERS = ("quota exceeded", "insufficient_quota", "payment required")
RATE_LIMIT_MARKERS = ("rate limit", "rate_limit", "too many requests", "429")
THROUGHPUT_MARKERS = (
    "tokens per minute",
    "output tokens per minute",
    "input tokens per minute",
    "token rate",
    "throughput",
)
TIMEOUT_MARKERS = ("timeout", "timed out", "streaming is required")


class ErrorKind(str, Enum):
    AUTHENTICATION = "authentication"
    QUOTA = "quota"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    TRANSIENT = "transient"

    @property
    def retryable(self) -> bool:
        return self not in (ErrorKind.AUTHENTICATION, ErrorKind.QUOTA)


class CapabilityError(Exception):
    """Base error for a failed call to an external capability."""

    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, *, capability: str = ""):
        super().__init__(message)
        self.message = message
        self.capability = capability

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class AuthenticationError(CapabilityError):
    kind = ErrorKind.AUTHENTICATION


class QuotaExceededError(CapabilityError):
    kind = ErrorKind.QUOTA


class RateLimitedError(CapabilityError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, *, capability: str = "", throughput: bool = False):
        super().__init__(message, capability=capability)
        self.throughput = throughput


class CapabilityTimeoutError(CapabilityError):
    kind = ErrorKind.TIMEOUT


class TransientError(CapabilityError):
    kind = ErrorKind.TRANSIENT


class RateLimitExceeded(CapabilityError):
    """The local call budget for the current window is spent; never retried."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(self, capability: str, retry_after: float):
        seconds = max(int(retry_after + 0.999), 0)
        super().__init__(
            f"Rate limit exceeded for {capability}. Try again in {seconds} seconds.",
            capability=capability,
        )
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        return False


class ParseError(ValueError):
    """Generative output did not match the expected grammar."""


class FatalWorkflowError(RuntimeError):
    """Terminates a research run."""


class NoBriefingsError(FatalWorkflowError):
    def __init__(self, message: str = "No briefings available to compile"):
        super().__init__(message)


_KIND_TO_ERROR: dict[ErrorKind, type[CapabilityError]] = {
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.QUOTA: QuotaExceededError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.TIMEOUT: CapabilityTimeoutError,
    ErrorKind.TRANSIENT: TransientError,
}


def _status_code(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by a capability call to an ErrorKind."""
    if isinstance(exc, CapabilityError):
        return exc.kind
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return ErrorKind.TIMEOUT

    message = str(exc).lower()
    status = _status_code(exc)
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status == 402:
        return ErrorKind.QUOTA
    if status in (401, 403) and not any(m in message for m in RATE_LIMIT_MARKERS):
        return ErrorKind.AUTHENTICATION

    if any(marker in message for marker in QUOTA_MARKERS):
        return ErrorKind.QUOTA
    if any(marker in message for marker in NON_RETRYABLE_MARKERS):
        return ErrorKind.AUTHENTICATION
    if any(marker in message for marker in RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    if any(marker in message for marker in TIMEOUT_MARKERS):
        return ErrorKind.TIMEOUT
    return ErrorKind.TRANSIENT


def is_throughput_limit(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitedError) and exc.throughput:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in THROUGHPUT_MARKERS)


def to_capability_error(exc: BaseException, capability: str) -> CapabilityError:
    """Wrap a raw exception in the matching CapabilityError subclass."""
    if isinstance(exc, CapabilityError):
        if not exc.capability:
            exc.capability = capability
        return exc
    kind = classify_error(exc)
    message = str(exc) or exc.__class__.__name__
    if kind is ErrorKind.RATE_LIMITED:
        wrapped: CapabilityError = RateLimitedError(
            message, capability=capability, throughput=is_throughput_limit(exc)
        )
    else:
        wrapped = _KIND_TO_ERROR[kind](message, capability=capability)
    wrapped.__cause__ = exc
    return wrapped
