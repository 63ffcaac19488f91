"""Error classification for sync API calls.

Every failed call, whether the server answered with an error status or the
request never completed, is reduced to a single :class:`SyncError` carrying
an :class:`ErrorReason`.  :func:`classify_error` is pure: the same inputs
always produce an equal result.
"""

from __future__ import annotations

import asyncio
import json
import socket
from dataclasses import dataclass, field
from enum import StrEnum

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."


class ErrorReason(StrEnum):
    UNKNOWN = "unknown"
    INVALID_RESPONSE = "invalid_response"
    NOT_FOUND = "not_found"
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_SYNC_TOKEN = "invalid_sync_token"
    INVALID_CONFIGURATION = "invalid_configuration"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class SyncError:
    """Normalized description of a failed sync API call."""

    message: str
    reason: ErrorReason = ErrorReason.UNKNOWN
    request_id: str | None = None
    error_code: int | None = None
    specific_code: int | None = None
    cause: BaseException | None = field(default=None, repr=False)


class ResponseDecodeError(Exception):
    """Raised when a successful response carries a body we cannot decode."""


class SyncCancelledError(asyncio.CancelledError):
    """Raised when a caller-supplied cancel event stops a sync operation."""


class _ErrorBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str = ""
    request_id: str | None = None
    error_code: int | None = None
    specific_code: int | None = None


_NETWORK_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.NetworkError,
    ConnectionError,
    socket.gaierror,
)
_TIMEOUT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    TimeoutError,
)

_STATUS_REASONS: dict[int, ErrorReason] = {
    401: ErrorReason.UNAUTHORIZED,
    403: ErrorReason.UNAUTHORIZED,
    404: ErrorReason.NOT_FOUND,
    408: ErrorReason.TIMEOUT,
    429: ErrorReason.RATE_LIMITED,
    500: ErrorReason.SERVER_ERROR,
    502: ErrorReason.SERVER_ERROR,
    503: ErrorReason.SERVER_ERROR,
    504: ErrorReason.SERVER_ERROR,
}


def _parse_error_body(text: str) -> _ErrorBody | None:
    """Parse a structured error body, or return None if it isn't one."""
    try:
        raw = json.loads(text)
    except ValueError:
        return None
    if not isinstance(raw, dict):
        return None
    # Field names are matched case-insensitively; the first spelling wins.
    normalized: dict[str, object] = {}
    for key, value in raw.items():
        normalized.setdefault(str(key).lower(), value)
    try:
        return _ErrorBody.model_validate(normalized)
    except ValidationError:
        return None


def classify_reason(status_code: int, exception: BaseException | None = None) -> ErrorReason:
    """Map a transport exception or HTTP status to an :class:`ErrorReason`."""
    if exception is not None:
        if isinstance(exception, _NETWORK_EXCEPTIONS):
            return ErrorReason.NETWORK_ERROR
        if isinstance(exception, _TIMEOUT_EXCEPTIONS):
            return ErrorReason.TIMEOUT
        if isinstance(exception, (ResponseDecodeError, httpx.DecodingError)):
            return ErrorReason.INVALID_RESPONSE

    if status_code in _STATUS_REASONS:
        return _STATUS_REASONS[status_code]
    if 400 <= status_code < 500:
        return ErrorReason.INVALID_RESPONSE
    if 500 <= status_code < 600:
        return ErrorReason.SERVER_ERROR
    return ErrorReason.UNKNOWN


def classify_error(
    status_code: int,
    body: bytes | str | None = None,
    exception: BaseException | None = None,
    *,
    reason_phrase: str | None = None,
) -> SyncError:
    """Build a :class:`SyncError` from a failed response or transport exception.

    Args:
        status_code: HTTP status of the response, ``0`` when none was received.
        body: Raw error body, if any.
        exception: Exception raised by the transport or by response decoding.
        reason_phrase: HTTP reason phrase of the response.
    """
    if isinstance(body, bytes):
        text = body.decode("utf-8", errors="replace")
    else:
        text = body or ""

    message = ""
    request_id: str | None = None
    error_code: int | None = status_code or None
    specific_code: int | None = None

    if text.strip():
        parsed = _parse_error_body(text)
        if parsed is None:
            message = text
        else:
            message = parsed.message
            request_id = parsed.request_id
            specific_code = parsed.specific_code
            if parsed.error_code is not None:
                error_code = parsed.error_code

    if not message:
        message = reason_phrase or (str(exception) if exception is not None else "") or UNKNOWN_ERROR_MESSAGE

    return SyncError(
        message=message,
        reason=classify_reason(status_code, exception),
        request_id=request_id,
        error_code=error_code,
        specific_code=specific_code,
        cause=exception,
    )
