"""
Shared fixtures.

Test strategy:
1. Unit tests run against a real sqlite store in a temporary directory
2. The remote replica is an in-memory RemoteStoreInterface (no network)
3. Async code is driven with asyncio.run
"""

import asyncio
from typing import Any, Union

import pytest

from budgetcalm.config import StorageSettings, SyncSettings
from budgetcalm.database import Database
from budgetcalm.ledger import Ledger
from budgetcalm.models.records import Collection
from budgetcalm.services.preferences import PreferencesInterface, SettingName
from budgetcalm.services.replication import RemoteStoreInterface, RemoteUnavailableError
from budgetcalm.services.storage import ChangeBatch, SQLiteDocumentStore


class MemoryPreferences(PreferencesInterface):
    def __init__(self):
        self.values: dict[str, str] = {}

    def get_setting(self, name: Union[SettingName, str]) -> str:
        key = name.value if isinstance(name, SettingName) else name
        return self.values.get(key, "")

    def set_setting(self, name: Union[SettingName, str], value: str) -> None:
        key = name.value if isinstance(name, SettingName) else name
        self.values[key] = value


class MemoryRemoteStore(RemoteStoreInterface):
    """In-memory remote replica; flip `available` to simulate outages."""

    def __init__(self, remote_id: str = "memory"):
        self._remote_id = remote_id
        self.documents: dict[Collection, dict[str, dict[str, Any]]] = {
            collection: {} for collection in Collection
        }
        self.sequences = {collection: 0 for collection in Collection}
        self.available = True
        self.erase_count = 0
        self.closed = False

    @property
    def remote_id(self) -> str:
        return self._remote_id

    def _check(self) -> None:
        if not self.available:
            raise RemoteUnavailableError("remote offline")

    async def changes_since(self, collection, since, limit):
        self._check()
        changed = sorted(
            (doc for doc in self.documents[collection].values() if doc["_seq"] > since),
            key=lambda doc: doc["_seq"],
        )[:limit]
        last_seq = changed[-1]["_seq"] if changed else since
        return ChangeBatch(
            [{k: v for k, v in doc.items() if k != "_seq"} for doc in changed],
            last_seq,
        )

    async def fetch_revisions(self, collection, record_ids):
        self._check()
        stored = self.documents[collection]
        return {rid: stored[rid]["_rev"] for rid in record_ids if rid in stored}

    async def put(self, collection, documents, expected):
        self._check()
        stored = self.documents[collection]
        conflicts = []
        for document in documents:
            current = stored.get(document["id"], {}).get("_rev")
            if current != expected.get(document["id"]):
                conflicts.append(document["id"])
                continue
            self.sequences[collection] += 1
            stored[document["id"]] = {**document, "_seq": self.sequences[collection]}
        return conflicts

    async def erase(self):
        self._check()
        for collection in Collection:
            self.documents[collection].clear()
        self.erase_count += 1

    async def close(self):
        self.closed = True

    def live_documents(self, collection: Collection) -> list[dict[str, Any]]:
        return [doc for doc in self.documents[collection].values() if not doc.get("_deleted")]


async def wait_until(predicate, timeout: float = 3.0) -> None:
    """Poll `predicate` while background replication tasks run."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def preferences():
    return MemoryPreferences()


@pytest.fixture
def remote():
    return MemoryRemoteStore()


@pytest.fixture
def storage_settings(tmp_path):
    return StorageSettings(data_dir=tmp_path / "data")


@pytest.fixture
def sync_settings():
    return SyncSettings(
        poll_interval_seconds=0.05,
        retry_min_seconds=0.01,
        retry_max_seconds=0.05,
        batch_size=2,
    )


@pytest.fixture
def store(tmp_path):
    store = SQLiteDocumentStore(tmp_path / "store.sqlite3")
    store.open()
    yield store
    store.close()


@pytest.fixture
def make_store(tmp_path):
    """Factory for extra stores (one per simulated device)."""
    opened = []

    def _make(name: str) -> SQLiteDocumentStore:
        store = SQLiteDocumentStore(tmp_path / f"{name}.sqlite3")
        store.open()
        opened.append(store)
        return store

    yield _make
    for store in opened:
        store.close()


@pytest.fixture
def database(preferences, storage_settings, sync_settings):
    database = Database(preferences, storage_settings, sync_settings)
    assert asyncio.run(database.connect())
    yield database
    asyncio.run(database.close())


@pytest.fixture
def ledger(database):
    return Ledger(database)
