# src/storage/kv_store.py

"""Async key/value storage areas (memory and JSON file)."""

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger("affilifind.storage")


class StorageError(Exception):
    """A storage area could not be read or written."""


class KeyValueStore:
    """Interface shared by all storage areas.

    ``ephemeral`` is True when the area is guaranteed to be wiped at
    the start of every browsing session.
    """

    ephemeral: bool = False

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def get_many(self, defaults: dict[str, Any]) -> dict[str, Any]:
        """Read several keys, using ``defaults`` for the missing ones."""
        result: dict[str, Any] = {}
        for key, default in defaults.items():
            value = await self.get(key)
            result[key] = default if value is None else value
        return result

    async def set(self, key: str, value: Any) -> None:
        raise NotImplementedError

    async def set_many(self, values: dict[str, Any]) -> None:
        for key, value in values.items():
            await self.set(key, value)

    async def remove(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed area; lives exactly as long as the process."""

    def __init__(self, ephemeral: bool = True) -> None:
        self.ephemeral = ephemeral
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileKeyValueStore(KeyValueStore):
    """Area persisted as a single JSON document on disk.

    Each write rewrites the whole document through a temp file and an
    atomic rename.  File IO runs in a worker thread.
    """

    def __init__(self, path: Path, ephemeral: bool = False) -> None:
        self.path = path
        self.ephemeral = ephemeral
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise StorageError(f"Cannot read {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError(f"Unexpected content in {self.path}")
        return data

    def _dump(self, data: dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            tmp.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            raise StorageError(f"Cannot write {self.path}: {exc}") from exc

    def _get_sync(self, key: str) -> Any | None:
        with self._lock:
            return self._load().get(key)

    def _update_sync(self, updates: dict[str, Any], removals: list[str]) -> None:
        with self._lock:
            data = self._load()
            data.update(updates)
            for key in removals:
                data.pop(key, None)
            self._dump(data)

    def _clear_sync(self) -> None:
        with self._lock:
            self._dump({})

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._update_sync, {key: value}, [])

    async def set_many(self, values: dict[str, Any]) -> None:
        await asyncio.to_thread(self._update_sync, dict(values), [])

    async def remove(self, key: str) -> None:
        await asyncio.to_thread(self._update_sync, {}, [key])

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)
        logger.debug("Cleared storage area %s", self.path)
