"""Result envelopes returned by the sync client.

API failures are data, not exceptions: every call returns a
:class:`SyncResult` whose ``is_success`` flag must be checked before the
value is used.  Multi-page pulls return an :class:`AllDeltaResult`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from deltasync.sync.errors import ResponseDecodeError, SyncError, classify_error
from deltasync.sync.models import DeltaResponse, InitResponse
from deltasync.sync.retry import AttemptOutcome

CONTINUATION_HEADER = "X-Continuation"

T = TypeVar("T", bound=BaseModel)


@dataclass(frozen=True)
class SyncResult(Generic[T]):
    is_success: bool
    value: T
    error: SyncError | None = None
    status_code: int = 200
    sync_token: str | None = None
    request_url: str = ""
    has_more_changes: bool = False

    @classmethod
    def success(
        cls,
        value: T,
        *,
        request_url: str,
        status_code: int = 200,
        sync_token: str | None = None,
    ) -> SyncResult[T]:
        has_more = value.has_more_changes() if isinstance(value, DeltaResponse) else False
        return cls(
            is_success=True,
            value=value,
            status_code=status_code,
            sync_token=sync_token,
            request_url=request_url,
            has_more_changes=has_more,
        )

    @classmethod
    def failure(
        cls,
        empty: T,
        *,
        error: SyncError,
        request_url: str,
        status_code: int,
    ) -> SyncResult[T]:
        return cls(
            is_success=False,
            value=empty,
            error=error,
            status_code=status_code,
            request_url=request_url,
        )


@dataclass(frozen=True)
class AllDeltaResult:
    """Pages collected by one multi-page pull, in fetch order."""

    responses: tuple[DeltaResponse, ...]
    final_sync_token: str
    pages_fetched: int
    is_success: bool = True
    was_limited_by_max_pages: bool = False
    error: SyncError | None = None

    @property
    def total_changes(self) -> int:
        return sum(page.total_changes for page in self.responses)


def extract_sync_token(response: httpx.Response) -> str | None:
    """Return the first continuation header value, or None if absent/blank."""
    values = response.headers.get_list(CONTINUATION_HEADER)
    if not values or not values[0].strip():
        return None
    return values[0]


def decode_body(response: httpx.Response, model: type[T]) -> T | None:
    """Decode a successful response body into *model*.

    An empty body decodes to None, except for :class:`InitResponse` whose
    body is empty by contract.  Malformed bodies raise
    :class:`ResponseDecodeError`.
    """
    content = response.content
    if not content.strip() or content.strip() == b"null":
        return model() if model is InitResponse else None
    try:
        return model.model_validate_json(content)
    except ValidationError as exc:
        raise ResponseDecodeError(f"Could not decode {model.__name__}: {exc.error_count()} error(s)") from exc


def _request_url(response: httpx.Response, fallback: str) -> str:
    try:
        return str(response.request.url)
    except RuntimeError:
        return fallback


def to_sync_result(outcome: AttemptOutcome, model: type[T], *, request_url: str) -> SyncResult[T]:
    """Wrap the final outcome of an HTTP call into a :class:`SyncResult`."""
    response = outcome.response
    if response is None:
        error = classify_error(0, exception=outcome.exception)
        return SyncResult.failure(model(), error=error, request_url=request_url, status_code=0)

    url = _request_url(response, request_url)
    status = response.status_code

    if response.is_success:
        try:
            value = decode_body(response, model)
        except ResponseDecodeError as exc:
            error = classify_error(status, exception=exc)
            return SyncResult.failure(model(), error=error, request_url=url, status_code=status)
        if value is None:
            # A 2xx without a body is not trusted as success.
            error = classify_error(status, exception=ResponseDecodeError("The response body was empty."))
            return SyncResult.failure(model(), error=error, request_url=url, status_code=status)
        return SyncResult.success(
            value,
            request_url=url,
            status_code=status,
            sync_token=extract_sync_token(response),
        )

    error = classify_error(
        status,
        body=response.content,
        exception=outcome.exception,
        reason_phrase=response.reason_phrase or None,
    )
    return SyncResult.failure(model(), error=error, request_url=url, status_code=status)
