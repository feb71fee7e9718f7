"""
Error Classifier — maps any failure to a retry decision.

Pure function, no hidden state: classifying the same error twice gives
the same answer.

Decision order:
  1. Transport status code (retryable / non-retryable tables)
  2. Message patterns: circuit-breaker > fatal > transient
  3. Programming-error types (TypeError, SyntaxError, ...) are fatal
  4. Anything else is retryable without tripping the breaker

Usage:
    result = classify_error(exc)
    if result.should_retry:
        await asyncio.sleep(result.retry_delay or backoff)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    RETRYABLE_TRANSIENT = "RETRYABLE_TRANSIENT"  # timeouts, rate limits, 5xx
    RETRYABLE_IDEMPOTENT = "RETRYABLE_IDEMPOTENT"  # unknown, safe to retry
    NON_RETRYABLE_CLIENT = "NON_RETRYABLE_CLIENT"  # 4xx
    NON_RETRYABLE_FATAL = "NON_RETRYABLE_FATAL"  # OOM, syntax, auth failure
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"  # provider looks down


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    should_retry: bool
    should_trigger_circuit_breaker: bool
    reason: str
    retry_delay: float | None = None  # seconds


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504, 507, 509, 510})

NON_RETRYABLE_STATUS_CODES = frozenset(
    {
        400, 401, 403, 404, 405, 406, 409, 410, 411, 412, 413, 414,
        415, 416, 417, 418, 421, 422, 423, 424, 426, 428, 431, 451,
    }
)

RATE_LIMIT_DELAY = 5.0

CIRCUIT_BREAKER_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"service.*down",
        r"service.*unavailable",
        r"connection.*failed",
        r"upstream.*error",
        r"backend.*error",
        r"database.*error",
        r"external.*service.*error",
    )
)

FATAL_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"out of memory",
        r"stack overflow",
        r"syntax error",
        r"parse error",
        r"invalid.*syntax",
        r"compilation.*failed",
        r"permission.*denied",
        r"access.*denied",
        r"authentication.*failed",
        r"authorization.*failed",
        r"invalid.*credentials",
        r"malformed",
        r"corrupt",
    )
)

TRANSIENT_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"timeout",
        r"connection.*reset",
        r"connection.*refused",
        r"network.*error",
        r"temporary.*failure",
        r"service.*unavailable",
        r"rate.*limit",
        r"quota.*exceeded",
        r"throttle",
        r"busy",
        r"overload",
    )
)

PROGRAMMING_ERRORS: tuple[type[BaseException], ...] = (
    TypeError,
    SyntaxError,
    AttributeError,
    NameError,
)


def classify_error(error: Any) -> ErrorClassification:
    """Classify a failure. Accepts exceptions, strings or any object."""
    status = get_status_code(error)

    if status is not None:
        if status in NON_RETRYABLE_STATUS_CODES:
            return ErrorClassification(
                category=ErrorCategory.NON_RETRYABLE_CLIENT,
                should_retry=False,
                should_trigger_circuit_breaker=False,
                reason=f"HTTP {status} - client error, not retryable",
            )
        if status in RETRYABLE_STATUS_CODES:
            return ErrorClassification(
                category=ErrorCategory.RETRYABLE_TRANSIENT,
                should_retry=True,
                should_trigger_circuit_breaker=status >= 500,
                reason=f"HTTP {status} - retryable",
                retry_delay=RATE_LIMIT_DELAY if status == 429 else None,
            )

    text = _describe(error)

    for pattern in CIRCUIT_BREAKER_PATTERNS:
        if pattern.search(text):
            return ErrorClassification(
                category=ErrorCategory.CIRCUIT_BREAKER,
                should_retry=True,
                should_trigger_circuit_breaker=True,
                reason=f"Circuit breaker pattern matched: {pattern.pattern}",
            )

    for pattern in FATAL_PATTERNS:
        if pattern.search(text):
            return ErrorClassification(
                category=ErrorCategory.NON_RETRYABLE_FATAL,
                should_retry=False,
                should_trigger_circuit_breaker=False,
                reason=f"Fatal error pattern matched: {pattern.pattern}",
            )

    for pattern in TRANSIENT_PATTERNS:
        if pattern.search(text):
            return ErrorClassification(
                category=ErrorCategory.RETRYABLE_TRANSIENT,
                should_retry=True,
                should_trigger_circuit_breaker=False,
                reason=f"Transient error pattern matched: {pattern.pattern}",
            )

    if isinstance(error, PROGRAMMING_ERRORS):
        return ErrorClassification(
            category=ErrorCategory.NON_RETRYABLE_FATAL,
            should_retry=False,
            should_trigger_circuit_breaker=False,
            reason=f"{type(error).__name__} - programming error, not retryable",
        )

    return ErrorClassification(
        category=ErrorCategory.RETRYABLE_IDEMPOTENT,
        should_retry=True,
        should_trigger_circuit_breaker=False,
        reason="Unknown error type, defaulting to retryable",
    )


def is_retryable(error: Any) -> bool:
    return classify_error(error).should_retry


def should_trip_breaker(error: Any) -> bool:
    return classify_error(error).should_trigger_circuit_breaker


def retry_delay(error: Any, base: float = 1.0) -> float:
    """Suggested delay in seconds, falling back to `base`."""
    return classify_error(error).retry_delay or base


def get_status_code(error: Any) -> int | None:
    """Pull an HTTP status out of the common exception shapes."""
    if error is None or isinstance(error, (str, bytes)):
        return None

    for attr in ("status", "status_code"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value

    response = getattr(error, "response", None)
    if response is not None:
        for attr in ("status_code", "status"):
            value = getattr(response, attr, None)
            if isinstance(value, int) and not isinstance(value, bool):
                return value

    code = getattr(error, "code", None)
    if isinstance(code, int) and not isinstance(code, bool):
        return code
    return None


def _describe(error: Any) -> str:
    """Text the patterns run against.

    Exceptions contribute their type name as well, so a bare
    ``TimeoutError()`` with an empty message still reads as a timeout.
    """
    if isinstance(error, BaseException):
        message = str(error)
        name = type(error).__name__
        return f"{name}: {message}" if message else name
    if isinstance(error, str):
        return error
    message = getattr(error, "message", None)
    if message is not None:
        return str(message)
    return str(error)
