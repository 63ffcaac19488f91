"""Pydantic models for the checkpoint store."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel

PullStatus = Literal["running", "completed", "limited", "failed", "cancelled"]


class Checkpoint(BaseModel):
    """Last continuation token known to be good for a client."""

    client_name: str
    sync_token: str
    updated_at: datetime | None = None


class PullRun(BaseModel):
    """Record of a single multi-page pull."""

    id: int | None = None
    client_name: str
    started_at: datetime
    finished_at: datetime | None = None
    status: PullStatus
    pages_fetched: int = 0
    error_message: str | None = None
