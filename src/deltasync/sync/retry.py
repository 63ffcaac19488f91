"""Bounded exponential-backoff retry around a single HTTP call.

The policy absorbs transient failures (throttling, gateway errors, timeouts,
dropped connections) and hands the last outcome back to the caller once it
stops retrying.  It never raises for HTTP or transport failures; only
cancellation escapes.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
import structlog

from deltasync.sync.errors import SyncCancelledError

log = structlog.get_logger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

_JITTER_SPREAD = 0.25

_R = TypeVar("_R")


@dataclass(frozen=True)
class AttemptOutcome:
    """Final result of a (possibly retried) HTTP call."""

    response: httpx.Response | None = None
    exception: BaseException | None = None
    attempts: int = 1

    @property
    def status_code(self) -> int:
        return self.response.status_code if self.response is not None else 0


@dataclass(frozen=True)
class RetryPolicy:
    """Retry strategy handed to a :class:`~deltasync.sync.client.SyncClient`.

    Args:
        max_retries: Retries allowed after the first attempt.
        base_delay: Delay in seconds before the first retry; doubles each time.
        max_delay: Upper bound on a single computed delay.
        timeout: Wall-clock ceiling in seconds for one attempt.
        jitter: Spread each delay randomly by +/-25%.
        enabled: When False every call gets exactly one attempt.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float = 30.0
    jitter: bool = True
    enabled: bool = True
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES
    rng: random.Random = field(default_factory=random.Random, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")
        if self.base_delay <= 0 or self.max_delay <= 0:
            raise ValueError("retry delays must be positive")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")

    @classmethod
    def disabled(cls, *, timeout: float = 30.0) -> RetryPolicy:
        return cls(enabled=False, timeout=timeout)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1 if self.enabled else 1

    def is_retryable(self, outcome: AttemptOutcome) -> bool:
        if outcome.exception is not None:
            return isinstance(outcome.exception, (TimeoutError, httpx.TransportError))
        return outcome.status_code in self.retryable_status_codes

    def compute_delay(self, retry_number: int) -> float:
        """Return the sleep before retry *retry_number* (0-based)."""
        delay = min(self.base_delay * 2**retry_number, self.max_delay)
        if self.jitter:
            delay *= self.rng.uniform(1 - _JITTER_SPREAD, 1 + _JITTER_SPREAD)
        return delay

    async def execute(
        self,
        send: Callable[[], Awaitable[httpx.Response]],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> AttemptOutcome:
        """Run *send* until it succeeds, fails permanently, or retries run out."""
        attempt = 0
        while True:
            attempt += 1
            if cancel_event is not None and cancel_event.is_set():
                raise SyncCancelledError("sync operation cancelled")

            try:
                response = await self._until_cancelled(asyncio.wait_for(send(), self.timeout), cancel_event)
                outcome = AttemptOutcome(response=response, attempts=attempt)
            except (TimeoutError, httpx.RequestError) as exc:
                # Includes undecodable content encodings, which are not retried.
                outcome = AttemptOutcome(exception=exc, attempts=attempt)

            if attempt >= self.max_attempts or not self.is_retryable(outcome):
                return outcome

            delay = self.compute_delay(attempt - 1)
            log.warning(
                "sync_request_retry",
                attempt=attempt,
                max_attempts=self.max_attempts,
                retry_in=round(delay, 3),
                status_code=outcome.status_code or None,
                error=str(outcome.exception) if outcome.exception is not None else None,
            )
            await self._until_cancelled(asyncio.sleep(delay), cancel_event)

    @staticmethod
    async def _until_cancelled(awaitable: Awaitable[_R], cancel_event: asyncio.Event | None) -> _R:
        """Await *awaitable*, abandoning it as soon as *cancel_event* is set."""
        if cancel_event is None:
            return await awaitable

        work = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, cancelled}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (work, cancelled) if not task.done()]
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if work in done:
            return work.result()
        raise SyncCancelledError("sync operation cancelled")
