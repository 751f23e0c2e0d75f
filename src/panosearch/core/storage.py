"""
Key/value storage backends and the persisted config snapshot.

Backends store strings under string keys, like browser local storage.  A
backend may enforce a character quota; writes that would exceed it raise
:class:`~panosearch.exceptions.StorageQuotaExceeded`.  I/O problems surface
as :class:`~panosearch.exceptions.StorageUnavailableError`.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from panosearch.core.config import CONFIG_SCHEMA_VERSION, SearchConfig, build_config
from panosearch.exceptions import StorageQuotaExceeded, StorageUnavailableError

logger = logging.getLogger(__name__)

CONFIG_KEY = "panosearch.config"
HISTORY_KEY = "panosearch.history"
PROBE_KEY = "__storage_test__"


class Storage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def _usage(data: Dict[str, str]) -> int:
    return sum(len(k) + len(v) for k, v in data.items())


def is_available(storage: Optional[Storage]) -> bool:
    """Probe *storage* by writing and removing a throwaway key."""
    if storage is None:
        return False
    try:
        storage.set_item(PROBE_KEY, PROBE_KEY)
        storage.remove_item(PROBE_KEY)
        return True
    except Exception as e:
        logger.debug(f"Storage unavailable: {e}")
        return False


class MemoryStorage:
    """In-process storage, optionally limited to *quota* characters."""

    def __init__(self, quota: Optional[int] = None):
        self.quota = quota
        self._data: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        updated = dict(self._data)
        updated[key] = str(value)
        if self.quota is not None and _usage(updated) > self.quota:
            raise StorageQuotaExceeded(f"Writing {key!r} would exceed the {self.quota} character quota")
        self._data = updated

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class FileStorage:
    """
    All keys in one JSON object on disk.

    Every call re-reads the file so several processes (CLI invocations)
    see each other's writes.  Writes go through a temp file and
    ``os.replace``.
    """

    def __init__(self, path, quota: Optional[int] = None):
        self.path = Path(path).expanduser()
        self.quota = quota

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Storage file {self.path} is corrupt, starting empty: {e}")
            return {}
        except OSError as e:
            raise StorageUnavailableError(f"Cannot read {self.path}: {e}") from e
        if not isinstance(raw, dict):
            logger.warning(f"Storage file {self.path} does not hold an object, starting empty")
            return {}
        return {str(k): v if isinstance(v, str) else json.dumps(v) for k, v in raw.items()}

    def _dump(self, data: Dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".panosearch-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageUnavailableError(f"Cannot write {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = str(value)
        if self.quota is not None and _usage(data) > self.quota:
            raise StorageQuotaExceeded(f"Writing {key!r} would exceed the {self.quota} character quota")
        self._dump(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


# =============================================================================
# Config snapshot
# =============================================================================

class ConfigSnapshotStore:
    """
    Persists one versioned config snapshot::

        {"version": "2.0.1", "timestamp": 1700000000000, "settings": {...}}

    A snapshot written by a different schema version is discarded.
    """

    def __init__(self, storage: Optional[Storage], key: str = CONFIG_KEY,
                 version: str = CONFIG_SCHEMA_VERSION):
        self.storage = storage
        self.key = key
        self.version = version

    def save(self, config: SearchConfig) -> bool:
        if not is_available(self.storage):
            return False
        payload = {
            "version": self.version,
            "timestamp": int(time.time() * 1000),
            "settings": config.to_dict(),
        }
        try:
            self.storage.set_item(self.key, json.dumps(payload))
            return True
        except Exception as e:
            logger.warning(f"Failed to save config snapshot: {e}")
            return False

    def load_settings(self) -> Optional[Dict[str, Any]]:
        """The stored settings mapping, or None when absent, stale or unreadable."""
        if not is_available(self.storage):
            return None
        try:
            stored = self.storage.get_item(self.key)
        except Exception as e:
            logger.warning(f"Failed to read config snapshot: {e}")
            return None
        if not stored:
            return None
        try:
            payload = json.loads(stored)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Config snapshot is not valid JSON, clearing")
            self.clear()
            return None
        if not isinstance(payload, dict) or payload.get("version") != self.version:
            found = payload.get("version") if isinstance(payload, dict) else None
            logger.info(f"Config snapshot version {found!r} != {self.version!r}, clearing")
            self.clear()
            return None
        settings = payload.get("settings")
        return settings if isinstance(settings, dict) else None

    def load(self) -> Optional[SearchConfig]:
        settings = self.load_settings()
        return build_config(settings) if settings is not None else None

    def clear(self) -> bool:
        if not is_available(self.storage):
            return False
        try:
            self.storage.remove_item(self.key)
            return True
        except Exception as e:
            logger.warning(f"Failed to clear config snapshot: {e}")
            return False
