"""
Replication Services Package

Remote replica interface, the MongoDB endpoint and the live replication
loop that keeps local collections in sync with it.
"""

from budgetcalm.services.replication.interface import (
    InvalidSyncTokenError,
    RemoteStoreError,
    RemoteStoreInterface,
    RemoteUnavailableError,
)
from budgetcalm.services.replication.mongo import MongoRemoteStore
from budgetcalm.services.replication.replicator import Replication

__all__ = [
    # Interface
    "RemoteStoreInterface",
    # Exceptions
    "InvalidSyncTokenError",
    "RemoteStoreError",
    "RemoteUnavailableError",
    # Implementations
    "MongoRemoteStore",
    "Replication",
]
