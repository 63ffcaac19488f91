"""Stateful wrapper that walks one sync session through its lifecycle.

::

    uninitialized -> initialized -> paging -> exhausted
                          \\            \\
                           +-> errored <-+

``errored`` is absorbing.  ``exhausted`` means the change stream was caught
up at the time of the pull; pulling again picks up changes made since.
"""

from __future__ import annotations

import asyncio
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from deltasync.sync.client import SyncClient, check_max_pages
from deltasync.sync.errors import ErrorReason, SyncError
from deltasync.sync.models import InitResponse
from deltasync.sync.results import SyncResult

if TYPE_CHECKING:
    from deltasync.config import SyncInitOptions
    from deltasync.sync.results import AllDeltaResult

log = structlog.get_logger(__name__)


class SessionState(StrEnum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    PAGING = "paging"
    EXHAUSTED = "exhausted"
    ERRORED = "errored"


_PULLABLE = frozenset({SessionState.INITIALIZED, SessionState.PAGING, SessionState.EXHAUSTED})


class SyncSession:
    """Owns the continuation token of one consumer of the change stream."""

    def __init__(self, client: SyncClient, *, sync_token: str | None = None) -> None:
        self._client = client
        self._token: str | None = None
        self._error: SyncError | None = None
        self._state = SessionState.UNINITIALIZED
        if sync_token is not None:
            if not sync_token.strip():
                msg = "sync_token must be a non-empty string"
                raise ValueError(msg)
            self._token = sync_token
            self._state = SessionState.INITIALIZED

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def sync_token(self) -> str | None:
        return self._token

    @property
    def error(self) -> SyncError | None:
        return self._error

    def _fail(self, error: SyncError) -> None:
        self._state = SessionState.ERRORED
        self._error = error
        log.warning("sync_session_errored", client=self._client.name, reason=error.reason.value)

    async def initialize(self, filters: SyncInitOptions | None = None) -> SyncResult[InitResponse]:
        """Initialize the session and capture its first token.

        A response without a continuation token leaves nothing to resume
        from, so it is reported as a failed result with reason
        ``invalid_sync_token``.
        """
        if self._state is not SessionState.UNINITIALIZED:
            msg = f"Cannot initialize a session in state '{self._state}'"
            raise RuntimeError(msg)

        result = await self._client.initialize_sync(filters)
        if not result.is_success:
            assert result.error is not None  # noqa: S101
            self._fail(result.error)
            return result

        if result.sync_token is None:
            error = SyncError(
                message="Sync initialization returned no continuation token.",
                reason=ErrorReason.INVALID_SYNC_TOKEN,
                error_code=result.status_code,
            )
            self._fail(error)
            return SyncResult.failure(
                InitResponse(),
                error=error,
                request_url=result.request_url,
                status_code=result.status_code,
            )

        self._token = result.sync_token
        self._state = SessionState.INITIALIZED
        return result

    async def pull(
        self,
        max_pages: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AllDeltaResult:
        """Fetch pages from the current token and advance the session."""
        if self._state not in _PULLABLE:
            msg = f"Cannot pull in state '{self._state}'"
            raise RuntimeError(msg)
        assert self._token is not None  # noqa: S101
        check_max_pages(max_pages)

        self._state = SessionState.PAGING
        result = await self._client.get_all_delta(self._token, max_pages, cancel_event=cancel_event)
        self._token = result.final_sync_token

        if not result.is_success:
            assert result.error is not None  # noqa: S101
            self._fail(result.error)
        elif not result.was_limited_by_max_pages:
            self._state = SessionState.EXHAUSTED
        return result
