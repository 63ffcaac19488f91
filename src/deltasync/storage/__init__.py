"""Checkpoint storage: async SQLite store for continuation tokens and pull runs."""

from deltasync.storage.database import Database
from deltasync.storage.models import Checkpoint, PullRun

__all__ = ["Checkpoint", "Database", "PullRun"]
