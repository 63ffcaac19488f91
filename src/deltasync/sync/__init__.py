"""Sync protocol driver, retry policy, result envelopes and error classification."""

from deltasync.sync.client import SyncClient
from deltasync.sync.errors import ErrorReason, SyncCancelledError, SyncError, classify_error
from deltasync.sync.models import (
    MAX_ITEMS_PER_ENTITY_TYPE,
    ChangeRecord,
    ChangeType,
    DeltaResponse,
    EntityCategory,
    InitResponse,
)
from deltasync.sync.results import AllDeltaResult, SyncResult
from deltasync.sync.retry import RetryPolicy
from deltasync.sync.session import SessionState, SyncSession

__all__ = [
    "MAX_ITEMS_PER_ENTITY_TYPE",
    "AllDeltaResult",
    "ChangeRecord",
    "ChangeType",
    "DeltaResponse",
    "EntityCategory",
    "ErrorReason",
    "InitResponse",
    "RetryPolicy",
    "SessionState",
    "SyncCancelledError",
    "SyncClient",
    "SyncError",
    "SyncResult",
    "SyncSession",
    "classify_error",
]
