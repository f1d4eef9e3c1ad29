"""
Local Key/Value Stores

JsonFileStore keeps one JSON file per key in a data directory. It is
the default backend and plays the part of browser local storage.

MemoryStore keeps everything in a dict; tests and throwaway sessions
use it.

DESIGN DECISION: A value that cannot be decoded is logged and treated
as missing. Losing one corrupt key is better than refusing to open the
whole ledger.
"""

import json
import os
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote, unquote

import structlog

from cashbook.services.storage.interface import (
    TIMESTAMP_PREFIX,
    KeyValueStore,
    StorageError,
    timestamp_key,
)


def now_ms() -> int:
    return int(time.time() * 1000)


class JsonFileStore(KeyValueStore):
    """One `<key>.json` file per key."""

    SUFFIX = ".json"

    def __init__(self, data_dir: Path):
        self._dir = Path(data_dir)
        self._logger = structlog.get_logger(__name__)

    @property
    def data_dir(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / f"{quote(key, safe='-_.')}{self.SUFFIX}"

    def _read(self, key: str, default: Any) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            self._logger.warning("store_read_failed", key=key, error=str(e))
            return default

    def _write(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as f:
                json.dump(value, f, ensure_ascii=False)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save {key}: {e}")

    async def load(self, key: str, default: Any = None) -> Any:
        return self._read(key, default)

    async def save(self, key: str, value: Any, timestamp_ms: Optional[int] = None) -> bool:
        self._write(key, value)
        if not key.startswith(TIMESTAMP_PREFIX):
            self._write(timestamp_key(key), timestamp_ms if timestamp_ms is not None else now_ms())
        return True

    async def delete(self, key: str) -> bool:
        deleted = False
        for name in (key, timestamp_key(key)):
            path = self._path(name)
            if path.exists():
                try:
                    path.unlink()
                except OSError as e:
                    raise StorageError(f"Failed to delete {name}: {e}")
                deleted = deleted or name == key
        return deleted

    async def keys(self) -> list[str]:
        if not self._dir.exists():
            return []
        names = []
        for path in self._dir.glob(f"*{self.SUFFIX}"):
            key = unquote(path.name[: -len(self.SUFFIX)])
            if not key.startswith(TIMESTAMP_PREFIX):
                names.append(key)
        return sorted(names)


class MemoryStore(KeyValueStore):
    """Dict-backed store. Values are round-tripped through JSON like the file store."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, str] = {}
        for key, value in (initial or {}).items():
            self._data[key] = json.dumps(value, ensure_ascii=False)

    async def load(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    async def save(self, key: str, value: Any, timestamp_ms: Optional[int] = None) -> bool:
        try:
            self._data[key] = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to save {key}: {e}")
        if not key.startswith(TIMESTAMP_PREFIX):
            stamp = timestamp_ms if timestamp_ms is not None else now_ms()
            self._data[timestamp_key(key)] = json.dumps(stamp)
        return True

    async def delete(self, key: str) -> bool:
        self._data.pop(timestamp_key(key), None)
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return sorted(k for k in self._data if not k.startswith(TIMESTAMP_PREFIX))
