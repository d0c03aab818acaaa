#!/usr/bin/env python3
"""
Error Classification + Retry Policy for analyzer backends.

Every exception raised while talking to an analyzer (LLM API, local model
endpoint, static analysis binary) is classified into a failure kind. The
kind decides whether the call is retried inside its per-call timeout and
is what ends up in ``AnalyzerFailure.kind``:

- timeout: NOT retryable (the per-call budget is already spent)
- rate_limit: retryable, medium backoff
- auth: NOT retryable
- config: NOT retryable
- unavailable: NOT retryable (tool binary or endpoint missing)
- parse: NOT retryable (the backend answered, the answer was unusable)
- transport: retryable, exponential backoff
- permanent: NOT retryable (fail-safe default)

Usage:
    from error_classifier import classify_analyzer_error, retrying_call

    classified = classify_analyzer_error(exc, source="openai")

    raw = await retrying_call(lambda: client.chat(...), source="openai")
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from exceptions import AnalyzerError, ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Failure kind constants
# ---------------------------------------------------------------------------

KIND_TIMEOUT = "timeout"
KIND_RATE_LIMIT = "rate_limit"
KIND_AUTH = "auth"
KIND_CONFIG = "config"
KIND_UNAVAILABLE = "unavailable"
KIND_PARSE = "parse"
KIND_TRANSPORT = "transport"
KIND_PERMANENT = "permanent"

FAILURE_KINDS = (
    KIND_TIMEOUT,
    KIND_RATE_LIMIT,
    KIND_AUTH,
    KIND_CONFIG,
    KIND_UNAVAILABLE,
    KIND_PARSE,
    KIND_TRANSPORT,
    KIND_PERMANENT,
)

_RETRYABLE_KINDS = frozenset({KIND_RATE_LIMIT, KIND_TRANSPORT})

# ---------------------------------------------------------------------------
# Pattern registries for error classification
# ---------------------------------------------------------------------------

RATE_LIMIT_PATTERNS: list[str] = [
    "rate limit",
    "429",
    "too many requests",
    "rate_limit_error",
    "throttled",
    "requests per minute",
    "insufficient_quota",
    "quota exceeded",
]

AUTH_PATTERNS: list[str] = [
    "invalid api key",
    "authentication",
    "unauthorized",
    "invalid_api_key",
    "permission denied",
    "forbidden",
    "401",
    "403",
    "invalid x-api-key",
]

CONFIG_PATTERNS: list[str] = [
    "invalid model",
    "model not found",
    "does not exist",
    "missing required",
    "invalid config",
    "api key not configured",
]

UNAVAILABLE_PATTERNS: list[str] = [
    "no such file",
    "enoent",
    "command not found",
    "not installed",
]

PARSE_PATTERNS: list[str] = [
    "invalid json",
    "malformed",
    "parse error",
    "jsondecodeerror",
    "expecting value",
    "no parseable",
]

TRANSPORT_PATTERNS: list[str] = [
    "network",
    "connection",
    "econnreset",
    "econnrefused",
    "server error",
    "internal server error",
    "service unavailable",
    "overloaded",
    "503",
    "502",
    "500",
    "temporarily unavailable",
    "bad gateway",
    "504",
]

# Ordered: more specific patterns first
_PATTERN_REGISTRY: list[tuple[str, list[str]]] = [
    (KIND_AUTH, AUTH_PATTERNS),
    (KIND_CONFIG, CONFIG_PATTERNS),
    (KIND_UNAVAILABLE, UNAVAILABLE_PATTERNS),
    (KIND_RATE_LIMIT, RATE_LIMIT_PATTERNS),
    (KIND_PARSE, PARSE_PATTERNS),
    (KIND_TRANSPORT, TRANSPORT_PATTERNS),
]


# ---------------------------------------------------------------------------
# ClassifiedFailure dataclass
# ---------------------------------------------------------------------------


@dataclass
class ClassifiedFailure:
    """A classified analyzer error with retry metadata.

    Attributes:
        kind:      One of ``FAILURE_KINDS``.
        retryable: Whether the call should be retried.
        original:  The original exception instance.
        context:   Additional context about the error (e.g. HTTP status).
        source:    The analyzer source label that raised the error.
    """

    kind: str
    retryable: bool
    original: BaseException
    context: dict[str, Any] = field(default_factory=dict)
    source: str = ""

    @property
    def reason(self) -> str:
        message = str(self.original).strip()
        name = type(self.original).__name__
        return f"{name}: {message}" if message else name

    def __str__(self) -> str:
        retry_label = "retryable" if self.retryable else "non-retryable"
        return (
            f"ClassifiedFailure(kind={self.kind}, {retry_label}, "
            f"source={self.source!r}, original={self.original!r})"
        )


def _build(kind: str, error: BaseException, context: dict[str, Any], source: str) -> ClassifiedFailure:
    return ClassifiedFailure(
        kind=kind,
        retryable=kind in _RETRYABLE_KINDS,
        original=error,
        context=context,
        source=source,
    )


# ---------------------------------------------------------------------------
# Classification function
# ---------------------------------------------------------------------------


def classify_analyzer_error(error: BaseException, source: str = "") -> ClassifiedFailure:
    """Classify an analyzer error.

    Typed exceptions are checked first (timeouts, our own ``AnalyzerError``
    with an explicit kind, JSON decode errors, missing binaries), then the
    message and class name are matched against the pattern registry. If
    nothing matches the failure is ``permanent``.

    Parameters
    ----------
    error:
        The exception to classify.
    source:
        The analyzer source label (e.g. ``"openai"``, ``"slither"``).

    Returns
    -------
    ClassifiedFailure
        The classified failure with kind and retryability.
    """
    context: dict[str, Any] = {"error_class": type(error).__name__}
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        context["status_code"] = status_code

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return _build(KIND_TIMEOUT, error, context, source)
    if isinstance(error, AnalyzerError) and error.kind in FAILURE_KINDS:
        return _build(error.kind, error, context, source or error.source)
    if isinstance(error, (json.JSONDecodeError, ExtractionError)):
        return _build(KIND_PARSE, error, context, source)
    if isinstance(error, FileNotFoundError):
        return _build(KIND_UNAVAILABLE, error, context, source)

    if status_code == 429:
        return _build(KIND_RATE_LIMIT, error, context, source)
    if status_code in (401, 403):
        return _build(KIND_AUTH, error, context, source)

    combined = f"{type(error).__name__.lower()} {str(error).lower()}"
    for kind, patterns in _PATTERN_REGISTRY:
        for pattern in patterns:
            if pattern in combined:
                return _build(kind, error, context, source)

    if isinstance(error, ConnectionError):
        return _build(KIND_TRANSPORT, error, context, source)

    return _build(KIND_PERMANENT, error, context, source)


def is_retryable_error(error: BaseException, source: str = "") -> bool:
    """Return True if the error should be retried within the call budget."""
    return classify_analyzer_error(error, source).retryable


# ---------------------------------------------------------------------------
# Retry delay calculation
# ---------------------------------------------------------------------------


def get_retry_delay(classified: ClassifiedFailure, attempt: int) -> float:
    """Calculate retry delay based on failure kind and attempt number.

    Delays are short: every retry happens inside a per-call timeout that is
    usually well under a minute.

    Parameters
    ----------
    classified:
        The classified failure.
    attempt:
        The attempt number (1-based).

    Returns
    -------
    float
        Delay in seconds before the next retry.
    """
    if classified.kind == KIND_RATE_LIMIT:
        return min(2.0 + attempt * 2.0, 10.0)

    if classified.kind == KIND_TRANSPORT:
        jitter = random.uniform(0, 0.5)  # noqa: S311
        return min(math.pow(2, attempt - 1) + jitter, 8.0)

    return 0.0


# ---------------------------------------------------------------------------
# Tenacity integration
# ---------------------------------------------------------------------------


def classified_retry_predicate(source: str = "") -> Callable[[BaseException], bool]:
    """Return a predicate suitable for tenacity's ``retry`` parameter."""

    def _predicate(error: BaseException) -> bool:
        return is_retryable_error(error, source)

    return _predicate


def classified_wait(source: str = "") -> Callable:
    """Return a wait function suitable for tenacity's ``wait`` parameter."""

    def _wait(retry_state: Any) -> float:
        exc = retry_state.outcome.exception()
        if exc is None:
            return 0.0
        classified = classify_analyzer_error(exc, source)
        return get_retry_delay(classified, retry_state.attempt_number)

    return _wait


async def retrying_call(
    call: Callable[[], Awaitable[T]],
    source: str = "",
    max_attempts: int = 2,
) -> T:
    """Await ``call()`` with classified retries.

    Non-retryable errors propagate immediately; retryable ones are retried
    up to ``max_attempts`` total attempts, then the last error propagates.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=classified_wait(source),
        retry=retry_if_exception(classified_retry_predicate(source)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await call()
    raise AssertionError("unreachable")  # pragma: no cover


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "ClassifiedFailure",
    "classify_analyzer_error",
    "is_retryable_error",
    "get_retry_delay",
    "classified_retry_predicate",
    "classified_wait",
    "retrying_call",
    "FAILURE_KINDS",
    "KIND_TIMEOUT",
    "KIND_RATE_LIMIT",
    "KIND_AUTH",
    "KIND_CONFIG",
    "KIND_UNAVAILABLE",
    "KIND_PARSE",
    "KIND_TRANSPORT",
    "KIND_PERMANENT",
]
