"""
Tests for the preferences collaborator.
"""

import json
from datetime import datetime

import pytest

from budgetcalm.services.preferences import JsonFilePreferences, SettingName

from conftest import MemoryPreferences


@pytest.fixture
def prefs(tmp_path):
    return JsonFilePreferences(tmp_path / "prefs" / "settings.json")


class TestJsonFilePreferences:
    """Preferences persisted as JSON."""

    def test_unset_reads_empty(self, prefs):
        assert prefs.get_setting(SettingName.CURRENCY) == ""

    def test_set_and_get(self, prefs):
        prefs.set_setting(SettingName.CURRENCY, "EUR")
        assert prefs.get_setting(SettingName.CURRENCY) == "EUR"
        assert prefs.get_setting("currency") == "EUR"

    def test_file_uses_prefixed_keys(self, prefs):
        prefs.set_setting(SettingName.SYNC_TOKEN, "mongodb://host/db")
        stored = json.loads(prefs.path.read_text(encoding="utf-8"))
        assert stored == {"setting_syncToken": "mongodb://host/db"}

    def test_values_survive_a_new_instance(self, prefs):
        prefs.set_setting(SettingName.CURRENCY, "USD")
        assert JsonFilePreferences(prefs.path).get_setting(SettingName.CURRENCY) == "USD"

    def test_corrupt_file_reads_empty(self, prefs):
        prefs.path.parent.mkdir(parents=True)
        prefs.path.write_text("{not json", encoding="utf-8")
        assert prefs.get_setting(SettingName.CURRENCY) == ""

        prefs.set_setting(SettingName.CURRENCY, "GBP")
        assert prefs.get_setting(SettingName.CURRENCY) == "GBP"


class TestUpdateSyncDate:
    """Last sync timestamp bookkeeping."""

    def test_alive_records_timestamp(self):
        prefs = MemoryPreferences()
        prefs.update_sync_date(True)
        stamp = prefs.get_setting(SettingName.LAST_SYNC_DATE)
        assert datetime.strptime(stamp, "%Y-%m-%d %H:%M:%S")

    def test_dead_sync_keeps_previous_value(self):
        prefs = MemoryPreferences()
        prefs.set_setting(SettingName.LAST_SYNC_DATE, "2024-01-01 10:00:00")
        prefs.update_sync_date(False)
        assert prefs.get_setting(SettingName.LAST_SYNC_DATE) == "2024-01-01 10:00:00"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
