"""
Database Handle

DESIGN DECISION: The local store and its replications form one owned
resource. A Database is created, connected, passed by reference to every
ledger and transfer operation, and closed explicitly. Replication is
bound to it 1:1: it starts on connect and is torn down on close, never
independently.

Only one live handle may point at a given storage file. Opening a second
one raises StoreAlreadyOpenError; the first must be closed fully
(sync signals unsubscribed, then storage released) beforehand.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Callable, Optional

from budgetcalm.audit import configure_from_settings, get_logger
from budgetcalm.config import StorageSettings, SyncSettings, get_settings
from budgetcalm.models.records import Collection
from budgetcalm.models.sync import ConnectionState, SyncChange
from budgetcalm.services.preferences import PreferencesInterface, SettingName
from budgetcalm.services.replication import (
    MongoRemoteStore,
    RemoteStoreError,
    RemoteStoreInterface,
    Replication,
)
from budgetcalm.services.signals import Subscription
from budgetcalm.services.storage import (
    SQLiteDocumentStore,
    StorageError,
    StoreAlreadyOpenError,
    StoreUnavailableError,
)

logger = get_logger(__name__)

RemoteFactory = Callable[[str], RemoteStoreInterface]


class Database:
    """
    Connection handle over the local store and its live replications.

    State moves DISCONNECTED -> CONNECTING -> CONNECTED (or FAILED), and
    back to DISCONNECTED on close.
    """

    _open_paths: set[str] = set()

    def __init__(
        self,
        preferences: PreferencesInterface,
        storage_settings: Optional[StorageSettings] = None,
        sync_settings: Optional[SyncSettings] = None,
        remote_factory: Optional[RemoteFactory] = None,
    ):
        storage_settings = storage_settings or get_settings().storage
        self._sync_settings = sync_settings or get_settings().sync
        self._preferences = preferences
        self._remote_factory = remote_factory or MongoRemoteStore.from_token
        self._store = SQLiteDocumentStore(storage_settings.database_path)
        self._remote: Optional[RemoteStoreInterface] = None
        self._replications: list[Replication] = []
        self._subscriptions: list[Subscription] = []
        self.state = ConnectionState.DISCONNECTED

    @property
    def store(self) -> SQLiteDocumentStore:
        return self._store

    @property
    def remote(self) -> Optional[RemoteStoreInterface]:
        return self._remote

    @property
    def preferences(self) -> PreferencesInterface:
        return self._preferences

    @property
    def replications(self) -> tuple[Replication, ...]:
        return tuple(self._replications)

    @property
    def sync_enabled(self) -> bool:
        return self._remote is not None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def _path_key(self) -> str:
        return str(Path(self._store.path).resolve())

    def require_connected(self) -> None:
        if not self.is_connected:
            raise DatabaseNotConnectedError(
                f"Database is {self.state.value}, expected connected"
            )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> bool:
        """
        Open the local store and start replication if a sync token is set.

        Returns:
            True when connected. Storage failures are logged and leave the
            handle FAILED so the caller can retry.

        Raises:
            StoreAlreadyOpenError: If another live handle owns the storage
            Exception: Whatever an unexpected remote factory failure raised;
                the handle is left FAILED with the storage released
        """
        if self.is_connected:
            return True

        key = self._path_key()
        if key in Database._open_paths:
            raise StoreAlreadyOpenError(f"Storage already open: {key}")
        Database._open_paths.add(key)
        self.state = ConnectionState.CONNECTING

        try:
            self._store.open()
        except StorageError as e:
            logger.error("db_connect_failed", path=key, error=str(e))
            Database._open_paths.discard(key)
            self.state = ConnectionState.FAILED
            return False

        try:
            self._start_sync()
        except Exception:
            logger.exception("db_connect_failed", path=key)
            # Releases the store and its path so a later connect can succeed
            await self.close()
            self.state = ConnectionState.FAILED
            raise

        self.state = ConnectionState.CONNECTED
        logger.info("db_connected", path=key, sync_enabled=self.sync_enabled)
        return True

    def _start_sync(self) -> None:
        token = self._preferences.get_setting(SettingName.SYNC_TOKEN)
        if not token:
            return

        try:
            self._remote = self._remote_factory(token)
        except RemoteStoreError as e:
            # Local operation goes on without sync
            logger.error("sync_token_rejected", error=str(e))
            return

        for collection in Collection:
            replication = Replication(
                self._store, self._remote, collection, self._sync_settings
            )
            self._subscriptions.append(
                replication.alive.subscribe(self._preferences.update_sync_date)
            )
            self._subscriptions.append(
                replication.change.subscribe(self._record_change)
            )
            self._replications.append(replication)
            replication.start()

    def _record_change(self, change: SyncChange) -> None:
        self._preferences.update_sync_date(change.ok)

    async def close(self) -> None:
        """Unsubscribe all sync signals, stop replication, release storage."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()

        for replication in self._replications:
            await replication.stop()
        self._replications.clear()

        if self._remote is not None:
            await self._remote.close()
            self._remote = None

        if self._store.is_open:
            self._store.close()
            Database._open_paths.discard(self._path_key())
        self.state = ConnectionState.DISCONNECTED

    # -------------------------------------------------------------------------
    # Sync hooks
    # -------------------------------------------------------------------------

    def on_sync_change(self, callback: Callable[[SyncChange], None]) -> list[Subscription]:
        """
        Forward every replicated batch to `callback` (e.g. to reload a view).

        The subscriptions are owned by this handle and released on close.
        """
        subscriptions = [
            replication.change.subscribe(callback) for replication in self._replications
        ]
        self._subscriptions.extend(subscriptions)
        return subscriptions

    @asynccontextmanager
    async def sync_paused(self) -> AsyncIterator[None]:
        """Suspend live replication for the duration of a bulk operation."""
        running = [r for r in self._replications if r.is_running]
        for replication in running:
            await replication.stop()
        try:
            yield
        finally:
            for replication in running:
                replication.start()


async def connect(
    preferences: PreferencesInterface,
    storage_settings: Optional[StorageSettings] = None,
    sync_settings: Optional[SyncSettings] = None,
    remote_factory: Optional[RemoteFactory] = None,
) -> Optional[Database]:
    """Open a Database, or return None if the store is unavailable."""
    configure_from_settings()
    database = Database(preferences, storage_settings, sync_settings, remote_factory)
    if await database.connect():
        return database
    return None


class DatabaseNotConnectedError(StoreUnavailableError):
    """Operation issued against a handle that is not connected."""
    pass
