"""
Failure classification.

Every raw exception that crosses a provider boundary is mapped to a
:class:`StructuredError` carrying a kind, a message and whether retrying
can help. Classification looks at, in order:

* the exception type (httpx / asyncio / builtin timeouts and connection errors)
* an HTTP status code (``status_code``, ``status`` or ``response.status_code``)
* message patterns, for clients that only surface a string
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx
from pydantic import ValidationError


class ErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT_SERVER = "transient_server"
    TIMEOUT = "timeout"
    CONNECTION_FAILURE = "connection_failure"
    VALIDATION = "validation"
    AUTH = "auth"
    NOT_FOUND = "not_found"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.TRANSIENT_SERVER,
        ErrorKind.TIMEOUT,
        ErrorKind.CONNECTION_FAILURE,
    }
)


@dataclass(frozen=True)
class StructuredError:
    kind: ErrorKind
    message: str
    retryable: bool
    status_code: Optional[int] = None


class EmptyResponseError(Exception):
    """Provider answered successfully but with no usable content."""


class CancelledByCaller(Exception):
    """Raised when a batch is stopped through its cancellation signal."""


# message pattern -> kind, checked in order when no status code is known
_MESSAGE_PATTERNS = [
    (("rate limit", "too many requests"), ErrorKind.RATE_LIMITED),
    (("timeout", "timed out"), ErrorKind.TIMEOUT),
    (("service unavailable", "server error", "overloaded", "bad gateway"), ErrorKind.TRANSIENT_SERVER),
    (("connection", "econnreset", "econnrefused"), ErrorKind.CONNECTION_FAILURE),
    (("unauthorized", "invalid api key", "forbidden"), ErrorKind.AUTH),
    (("not found",), ErrorKind.NOT_FOUND),
]


def _status_of(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        val = getattr(error, attr, None)
        if isinstance(val, int):
            return val
    response = getattr(error, "response", None)
    val = getattr(response, "status_code", None)
    return val if isinstance(val, int) else None


def _kind_for_status(status: int) -> Optional[ErrorKind]:
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status in (401, 403):
        return ErrorKind.AUTH
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (400, 422):
        return ErrorKind.VALIDATION
    if status == 408:
        return ErrorKind.TIMEOUT
    if 500 <= status <= 599:
        return ErrorKind.TRANSIENT_SERVER
    return None


def _kind_for_type(error: BaseException) -> Optional[ErrorKind]:
    if isinstance(error, CancelledByCaller):
        return ErrorKind.CANCELLED
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(error, (httpx.NetworkError, ConnectionError)):
        return ErrorKind.CONNECTION_FAILURE
    if isinstance(error, EmptyResponseError):
        return ErrorKind.UNKNOWN
    if isinstance(error, (ValidationError, ValueError)):
        return ErrorKind.VALIDATION
    return None


def error_message(error: BaseException, status: Optional[int] = None) -> str:
    # str() can be empty (e.g. httpx timeouts)
    text = str(error) or repr(error)
    if status is not None and str(status) not in text:
        return f"HTTP {status}: {text}"
    return text


def classify_error(error: Optional[BaseException]) -> StructuredError:
    """Map any raw failure to a :class:`StructuredError`."""
    if error is None:
        return StructuredError(ErrorKind.UNKNOWN, "Unknown error", False)

    status = _status_of(error)
    message = error_message(error, status)

    kind = _kind_for_type(error)
    if kind is None and status is not None:
        kind = _kind_for_status(status)
    if kind is None and status is None:
        lowered = message.lower()
        for patterns, candidate in _MESSAGE_PATTERNS:
            if any(p in lowered for p in patterns):
                kind = candidate
                break
    if kind is None:
        kind = ErrorKind.UNKNOWN

    return StructuredError(
        kind=kind,
        message=message,
        retryable=kind in RETRYABLE_KINDS,
        status_code=status,
    )


def cancelled_error(message: str = "Cancelled by caller") -> StructuredError:
    return StructuredError(ErrorKind.CANCELLED, message, False)
