"""Services package."""

from budgetcalm.services.preferences import (
    JsonFilePreferences,
    PreferencesInterface,
    SettingName,
)
from budgetcalm.services.replication import (
    InvalidSyncTokenError,
    MongoRemoteStore,
    RemoteStoreError,
    RemoteStoreInterface,
    RemoteUnavailableError,
    Replication,
)
from budgetcalm.services.signals import Signal, Subscription
from budgetcalm.services.storage import (
    DocumentStoreInterface,
    DuplicateError,
    NotFoundError,
    Query,
    RevisionConflictError,
    SQLiteDocumentStore,
    StorageError,
    StoreAlreadyOpenError,
    StoreUnavailableError,
    where,
)

__all__ = [
    # Preferences
    "JsonFilePreferences",
    "PreferencesInterface",
    "SettingName",
    # Replication
    "InvalidSyncTokenError",
    "MongoRemoteStore",
    "RemoteStoreError",
    "RemoteStoreInterface",
    "RemoteUnavailableError",
    "Replication",
    # Signals
    "Signal",
    "Subscription",
    # Storage
    "DocumentStoreInterface",
    "DuplicateError",
    "NotFoundError",
    "Query",
    "RevisionConflictError",
    "SQLiteDocumentStore",
    "StorageError",
    "StoreAlreadyOpenError",
    "StoreUnavailableError",
    "where",
]
