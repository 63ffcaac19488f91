"""Async client for the incremental sync API using httpx.

Endpoints:
- POST /{environment_id}/sync/init (start a session, token in X-Continuation)
- GET /{environment_id}/sync (next delta page, token sent in X-Continuation)

Expected failures (auth, throttling, missing environment) are returned as
failed :class:`SyncResult` values.  Only contract violations such as a
blank token raise.
"""

from __future__ import annotations

import asyncio
from collections.abc import Generator

import httpx
import structlog

from deltasync.config import SyncInitOptions, SyncOptions
from deltasync.sync.errors import SyncCancelledError
from deltasync.sync.models import DeltaResponse, InitResponse
from deltasync.sync.results import CONTINUATION_HEADER, AllDeltaResult, SyncResult, to_sync_result
from deltasync.sync.retry import RetryPolicy

log = structlog.get_logger(__name__)


class ApiKeyAuth(httpx.Auth):
    """Attach the delivery API key as a bearer token."""

    def __init__(self, api_key: str) -> None:
        self._header = f"Bearer {api_key}"

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = self._header
        yield request


def _check_token(sync_token: str | None) -> str:
    if sync_token is None or not isinstance(sync_token, str) or not sync_token.strip():
        msg = "sync_token must be a non-empty string"
        raise ValueError(msg)
    return sync_token


def check_max_pages(max_pages: int | None) -> None:
    if max_pages is None:
        return
    if isinstance(max_pages, bool) or not isinstance(max_pages, int) or max_pages <= 0:
        msg = "max_pages must be greater than zero"
        raise ValueError(msg)


def retry_policy_for(options: SyncOptions) -> RetryPolicy:
    """Build the retry policy described by *options*."""
    retry = options.retry
    return RetryPolicy(
        max_retries=retry.max_retries,
        base_delay=retry.base_delay,
        max_delay=retry.max_delay,
        timeout=retry.timeout,
        jitter=retry.jitter,
        enabled=options.enable_resilience,
    )


class SyncClient:
    """Sync API client: init, single delta fetch, and multi-page pulls.

    Token state is never stored on the instance, so one client can serve
    concurrent pulls for different tokens.
    """

    def __init__(
        self,
        options: SyncOptions,
        *,
        retry_policy: RetryPolicy | None = None,
        name: str = "default",
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._options = options
        self._retry = retry_policy or retry_policy_for(options)
        self._name = name
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def options(self) -> SyncOptions:
        return self._options

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry

    async def __aenter__(self) -> SyncClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def open(self) -> None:
        if self._client is not None:
            return
        kw: dict = {
            "base_url": self._options.base_url,
            "headers": {"Accept": "application/json"},
            # Attempt timeouts are enforced by the retry policy.
            "timeout": None,
        }
        if self._options.requires_auth:
            kw["auth"] = ApiKeyAuth(self._options.api_key.get_secret_value())
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -- request helper --

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            msg = "SyncClient is not open. Use 'async with' or call open() first."
            raise RuntimeError(msg)
        return self._client

    def _path(self, suffix: str) -> str:
        return f"/{self._options.environment_id}/{suffix}"

    # -- public API --

    async def initialize_sync(
        self,
        filters: SyncInitOptions | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncResult[InitResponse]:
        """Start a sync session; the first token is in ``result.sync_token``."""
        http = self._http
        params = filters.to_query_params() if filters is not None else {}
        url = self._path("sync/init")

        outcome = await self._retry.execute(
            lambda: http.post(url, params=params),
            cancel_event=cancel_event,
        )
        result = to_sync_result(outcome, InitResponse, request_url=f"{self._options.base_url}{url}")
        self._log_result("sync_init", result, attempts=outcome.attempts)
        return result

    async def get_delta(
        self,
        sync_token: str,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> SyncResult[DeltaResponse]:
        """Fetch one page of changes since *sync_token*."""
        token = _check_token(sync_token)
        http = self._http
        url = self._path("sync")

        outcome = await self._retry.execute(
            lambda: http.get(url, headers={CONTINUATION_HEADER: token}),
            cancel_event=cancel_event,
        )
        result = to_sync_result(outcome, DeltaResponse, request_url=f"{self._options.base_url}{url}")
        self._log_result("sync_delta", result, attempts=outcome.attempts)
        return result

    async def get_all_delta(
        self,
        sync_token: str,
        max_pages: int | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AllDeltaResult:
        """Fetch delta pages until caught up, an error occurs, or *max_pages* is hit.

        Args:
            sync_token: Token to start from.
            max_pages: Optional positive cap on the number of pages fetched.
            cancel_event: When set, the pull stops before the next page and
                :class:`SyncCancelledError` is raised.

        Returns:
            :class:`AllDeltaResult` with the pages fetched in order.  On the
            first failed page it carries the pages fetched so far, the last
            good token and the error.
        """
        current_token = _check_token(sync_token)
        check_max_pages(max_pages)

        responses: list[DeltaResponse] = []
        pages_fetched = 0
        limited = False

        while True:
            if cancel_event is not None and cancel_event.is_set():
                log.info("sync_pull_cancelled", client=self._name, pages_fetched=pages_fetched)
                raise SyncCancelledError("sync pull cancelled")

            result = await self.get_delta(current_token, cancel_event=cancel_event)

            if not result.is_success:
                assert result.error is not None  # noqa: S101
                log.warning(
                    "sync_pull_failed",
                    client=self._name,
                    pages_fetched=pages_fetched,
                    reason=result.error.reason.value,
                )
                return AllDeltaResult(
                    responses=tuple(responses),
                    final_sync_token=current_token,
                    pages_fetched=pages_fetched,
                    is_success=False,
                    error=result.error,
                )

            responses.append(result.value)
            pages_fetched += 1
            current_token = result.sync_token or current_token

            if not result.has_more_changes:
                break

            if max_pages is not None and pages_fetched >= max_pages:
                limited = True
                break

        log.info(
            "sync_pull_complete",
            client=self._name,
            pages_fetched=pages_fetched,
            limited_by_max_pages=limited,
        )
        return AllDeltaResult(
            responses=tuple(responses),
            final_sync_token=current_token,
            pages_fetched=pages_fetched,
            was_limited_by_max_pages=limited,
        )

    def _log_result(self, event: str, result: SyncResult, *, attempts: int) -> None:
        if result.is_success:
            log.debug(
                event,
                client=self._name,
                status_code=result.status_code,
                has_more_changes=result.has_more_changes,
                attempts=attempts,
            )
            return
        assert result.error is not None  # noqa: S101
        log.warning(
            f"{event}_failed",
            client=self._name,
            status_code=result.status_code,
            reason=result.error.reason.value,
            error=result.error.message,
            attempts=attempts,
        )
