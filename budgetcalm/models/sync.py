"""
Sync and connection state models.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from budgetcalm.models.records import Collection


class ConnectionState(str, Enum):
    """Lifecycle of a Database handle."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class SyncDirection(str, Enum):
    PUSH = "push"  # local -> remote
    PULL = "pull"  # remote -> local


class SyncChange(BaseModel):
    """One replicated batch, as reported on a replication's change signal."""

    collection: Collection
    direction: SyncDirection
    documents: int = Field(..., ge=0, description="Documents written by this batch")
    ok: bool = True
    occurred_at: datetime = Field(default_factory=datetime.now)
