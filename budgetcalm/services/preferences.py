"""
User preferences (the settings collaborator).

A flat string key/value store. Unset names read as "". Values are kept
under "setting_<name>" keys so the file stays compatible with stores
written by earlier versions of the app.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Union

from budgetcalm.audit import get_logger

logger = get_logger(__name__)

SYNC_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SettingName(str, Enum):
    CURRENCY = "currency"
    LAST_SYNC_DATE = "lastSyncDate"
    SYNC_TOKEN = "syncToken"


def _key(name: Union[SettingName, str]) -> str:
    value = name.value if isinstance(name, SettingName) else name
    return f"setting_{value}"


class PreferencesInterface(ABC):
    """Key/value contract the data layer needs from its host."""

    @abstractmethod
    def get_setting(self, name: Union[SettingName, str]) -> str:
        pass

    @abstractmethod
    def set_setting(self, name: Union[SettingName, str], value: str) -> None:
        pass

    def update_sync_date(self, alive: bool = True) -> None:
        """
        Record the current time as the last successful sync.

        A dead or failed sync leaves the previous value untouched.
        """
        if alive:
            self.set_setting(
                SettingName.LAST_SYNC_DATE, datetime.now().strftime(SYNC_DATE_FORMAT)
            )


class JsonFilePreferences(PreferencesInterface):
    """Preferences persisted to a JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("preferences_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            return {}
        return data

    def get_setting(self, name: Union[SettingName, str]) -> str:
        value = self._load().get(_key(name))
        return value if isinstance(value, str) else ""

    def set_setting(self, name: Union[SettingName, str], value: str) -> None:
        data = self._load()
        data[_key(name)] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
        tmp_path.replace(self.path)
