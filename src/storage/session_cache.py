# src/storage/session_cache.py

"""Prefixed, failure-tolerant access to the session storage area."""

import logging
from typing import Any

from src.config.settings import Settings
from src.storage.kv_store import KeyValueStore, StorageError

logger = logging.getLogger("affilifind.session_cache")

DEAL_PREFIX = "deal:"
TAB_PREFIX = "tab:"


class SessionCache:
    """Wraps a storage area used to survive a background restart.

    Read and write failures are logged and behave like a miss.  Deal
    entries are only kept when the area is ephemeral, so a durable
    fallback area never grows across sessions.
    """

    def __init__(
        self,
        store: KeyValueStore | None,
        prefix: str = Settings.STORAGE_PREFIX,
    ) -> None:
        self._store = store
        self._prefix = prefix

    @property
    def ephemeral(self) -> bool:
        return self._store is not None and self._store.ephemeral

    def _allowed(self, key: str) -> bool:
        if self._store is None:
            return False
        return self.ephemeral or not key.startswith(DEAL_PREFIX)

    async def get(self, key: str) -> Any | None:
        if not self._allowed(key):
            return None
        try:
            return await self._store.get(self._prefix + key)  # type: ignore[union-attr]
        except StorageError as exc:
            logger.warning("Session read failed for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any) -> None:
        if not self._allowed(key):
            return
        try:
            await self._store.set(self._prefix + key, value)  # type: ignore[union-attr]
        except StorageError as exc:
            logger.warning("Session write failed for %s: %s", key, exc)

    async def remove(self, key: str) -> None:
        if self._store is None:
            return
        try:
            await self._store.remove(self._prefix + key)
        except StorageError as exc:
            logger.warning("Session remove failed for %s: %s", key, exc)
