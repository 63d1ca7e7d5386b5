"""
Tests for the database handle lifecycle and its sync wiring.
"""

import asyncio

import pytest

from budgetcalm.config import StorageSettings
from budgetcalm.database import Database, DatabaseNotConnectedError, connect
from budgetcalm.ledger import Ledger
from budgetcalm.models import Budget, Collection, ConnectionState
from budgetcalm.services.preferences import SettingName
from budgetcalm.services.replication import InvalidSyncTokenError
from budgetcalm.services.storage import StoreAlreadyOpenError

from conftest import wait_until


class TestLifecycle:
    """Connect, close and exclusive ownership of the store file."""

    def test_connect_and_close(self, preferences, storage_settings, sync_settings):
        database = Database(preferences, storage_settings, sync_settings)
        assert database.state == ConnectionState.DISCONNECTED

        assert asyncio.run(database.connect()) is True
        assert database.is_connected
        assert database.sync_enabled is False
        assert storage_settings.database_path.exists()

        asyncio.run(database.close())
        assert database.state == ConnectionState.DISCONNECTED
        assert database.store.is_open is False

    def test_connect_twice_is_a_no_op(self, database):
        assert asyncio.run(database.connect()) is True

    def test_second_handle_is_rejected(self, database, preferences, storage_settings):
        """Only one live handle may own a store file."""
        other = Database(preferences, storage_settings)
        with pytest.raises(StoreAlreadyOpenError):
            asyncio.run(other.connect())
        assert database.is_connected

    def test_reopen_after_close(self, preferences, storage_settings, sync_settings):
        first = Database(preferences, storage_settings, sync_settings)
        asyncio.run(first.connect())
        asyncio.run(Ledger(first).save_budget(Budget(name="Food", month="2024-05", value=5)))
        asyncio.run(first.close())

        second = Database(preferences, storage_settings, sync_settings)
        assert asyncio.run(second.connect())
        budgets = asyncio.run(Ledger(second).fetch_budgets("2024-05"))
        assert [b.name for b in budgets] == ["Food"]
        asyncio.run(second.close())

    def test_unopenable_storage_fails(self, tmp_path, preferences, sync_settings):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        settings = StorageSettings(data_dir=blocker)

        database = Database(preferences, settings, sync_settings)
        assert asyncio.run(database.connect()) is False
        assert database.state == ConnectionState.FAILED
        with pytest.raises(DatabaseNotConnectedError):
            database.require_connected()

        assert asyncio.run(connect(preferences, settings, sync_settings)) is None

    def test_module_connect(self, preferences, storage_settings, sync_settings):
        database = asyncio.run(connect(preferences, storage_settings, sync_settings))
        assert database is not None and database.is_connected
        asyncio.run(database.close())


class TestSyncWiring:
    """Replication started and stopped by the handle."""

    def test_no_token_means_local_only(self, database):
        assert database.replications == ()
        assert database.remote is None

    def test_token_starts_replication(self, preferences, storage_settings, sync_settings, remote):
        preferences.set_setting(SettingName.SYNC_TOKEN, "memory://budgets")
        tokens = []

        def factory(token):
            tokens.append(token)
            return remote

        async def scenario():
            database = Database(preferences, storage_settings, sync_settings, factory)
            assert await database.connect()
            assert database.sync_enabled
            assert [r.collection for r in database.replications] == list(Collection)

            await Ledger(database).save_budget(Budget(name="Food", month="2024-05", value=5))
            await wait_until(lambda: len(remote.live_documents(Collection.BUDGETS)) == 1)
            await wait_until(lambda: preferences.get_setting(SettingName.LAST_SYNC_DATE) != "")
            await database.close()
            return database

        database = asyncio.run(scenario())
        assert tokens == ["memory://budgets"]
        assert remote.closed is True
        assert database.replications == ()

    def test_invalid_token_connects_without_sync(
        self, preferences, storage_settings, sync_settings
    ):
        preferences.set_setting(SettingName.SYNC_TOKEN, "garbage")

        def factory(token):
            raise InvalidSyncTokenError("bad token")

        async def scenario():
            database = Database(preferences, storage_settings, sync_settings, factory)
            connected = await database.connect()
            enabled = database.sync_enabled
            await database.close()
            return connected, enabled

        assert asyncio.run(scenario()) == (True, False)
        assert preferences.get_setting(SettingName.LAST_SYNC_DATE) == ""

    def test_unparseable_connection_string_connects_without_sync(
        self, preferences, storage_settings, sync_settings
    ):
        """The default Mongo factory rejects a bad port as an invalid token."""
        preferences.set_setting(SettingName.SYNC_TOKEN, "mongodb://localhost:99999/db")

        async def scenario():
            database = Database(preferences, storage_settings, sync_settings)
            connected = await database.connect()
            enabled = database.sync_enabled
            await database.close()
            return connected, enabled

        assert asyncio.run(scenario()) == (True, False)

    def test_factory_crash_releases_storage(
        self, preferences, storage_settings, sync_settings, remote
    ):
        preferences.set_setting(SettingName.SYNC_TOKEN, "memory://budgets")

        def factory(token):
            raise RuntimeError("driver exploded")

        broken = Database(preferences, storage_settings, sync_settings, factory)
        with pytest.raises(RuntimeError):
            asyncio.run(broken.connect())
        assert broken.state == ConnectionState.FAILED
        assert broken.store.is_open is False

        healthy = Database(preferences, storage_settings, sync_settings, lambda token: remote)

        async def scenario():
            connected = await healthy.connect()
            await healthy.close()
            return connected

        assert asyncio.run(scenario()) is True

    def test_close_releases_subscriptions(
        self, preferences, storage_settings, sync_settings, remote
    ):
        preferences.set_setting(SettingName.SYNC_TOKEN, "memory://budgets")
        changes = []

        async def scenario():
            database = Database(
                preferences, storage_settings, sync_settings, lambda token: remote
            )
            await database.connect()
            subscriptions = database.on_sync_change(changes.append)
            replications = database.replications
            await database.close()
            return subscriptions, replications, database

        subscriptions, replications, database = asyncio.run(scenario())
        assert all(not s.active for s in subscriptions)
        for replication in replications:
            assert replication.alive.subscriber_count == 0
            assert replication.change.subscriber_count == 0
            assert replication.is_running is False
        assert database.store.changed.subscriber_count == 0

    def test_sync_change_callback(self, preferences, storage_settings, sync_settings, remote):
        preferences.set_setting(SettingName.SYNC_TOKEN, "memory://budgets")
        remote.documents[Collection.BUDGETS]["b1"] = {
            "id": "b1", "name": "Rent", "month": "2024-05", "value": 700,
            "_rev": "1-abc", "_deleted": False, "_seq": 1,
        }
        remote.sequences[Collection.BUDGETS] = 1
        changes = []

        async def scenario():
            database = Database(
                preferences, storage_settings, sync_settings, lambda token: remote
            )
            # Subscribers attach right after connect, before the first round runs
            await database.connect()
            database.on_sync_change(changes.append)
            await wait_until(lambda: len(changes) == 1)
            budgets = await Ledger(database).fetch_budgets("2024-05")
            await database.close()
            return budgets

        budgets = asyncio.run(scenario())
        assert [b.name for b in budgets] == ["Rent"]
        assert changes[0].collection == Collection.BUDGETS

    def test_sync_paused_stops_and_restarts(
        self, preferences, storage_settings, sync_settings, remote
    ):
        preferences.set_setting(SettingName.SYNC_TOKEN, "memory://budgets")

        async def scenario():
            database = Database(
                preferences, storage_settings, sync_settings, lambda token: remote
            )
            await database.connect()
            async with database.sync_paused():
                paused = [r.is_running for r in database.replications]
            resumed = [r.is_running for r in database.replications]
            await database.close()
            return paused, resumed

        paused, resumed = asyncio.run(scenario())
        assert paused == [False, False]
        assert resumed == [True, True]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
