"""
ForgeSR - Key/Value Persistence
================================
String key/value stores with the semantics of browser local storage.

JsonFileStore keeps every key in a single JSON document and rewrites it
atomically on each mutation. MemoryStore is the in-process equivalent.
"""

import json
import os
import tempfile
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Protocol

from loguru import logger


HISTORY_KEY = "forge.history.items"
LAST_CLEANUP_KEY = "forge.history.last_cleanup"
USAGE_KEY = "forge.usage.counts"


class KeyValueStore(Protocol):
    """Persistent string storage."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStore:
    """Non-persistent store (tests, ephemeral sessions)."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class JsonFileStore:
    """
    Store backed by one JSON file.

    A corrupt or unreadable file is logged and treated as empty; it is
    replaced on the next write.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock = Lock()
        self._data: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"[Storage] Ignoring unreadable store {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"[Storage] Ignoring store {self.path}: top level is not an object")
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[str]:
        with self.lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self.lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self.lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def keys(self):
        with self.lock:
            return list(self._data)
