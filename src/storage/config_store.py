# src/storage/config_store.py

"""Persisted user configuration: API base, API key, auto-inject."""

import logging
from dataclasses import dataclass
from typing import Any

from src.config.settings import Settings
from src.storage.kv_store import KeyValueStore

logger = logging.getLogger("affilifind.config")

CONFIG_KEYS: tuple[str, ...] = ("apiBase", "apiKey", "autoInject")


@dataclass
class UserConfig:
    """Runtime configuration as exposed to the popup."""

    api_base: str
    api_key: str
    auto_inject: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiBase": self.api_base,
            "apiKey": self.api_key,
            "autoInject": self.auto_inject,
        }


def _defaults() -> dict[str, Any]:
    return {
        "apiBase": Settings.DEFAULT_API_BASE,
        "apiKey": Settings.DEFAULT_API_KEY,
        "autoInject": Settings.DEFAULT_AUTO_INJECT,
    }


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class ConfigStore:
    """Reads and partially updates the user configuration."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def get(self) -> UserConfig:
        """Current configuration, defaulted where unset."""
        values = await self._store.get_many(_defaults())
        return UserConfig(
            api_base=str(values["apiBase"]),
            api_key=str(values["apiKey"] or ""),
            auto_inject=_coerce_bool(values["autoInject"]),
        )

    async def set(self, updates: dict[str, Any]) -> UserConfig:
        """Merge a partial update; unknown keys are ignored."""
        known = {k: v for k, v in updates.items() if k in CONFIG_KEYS}
        ignored = sorted(set(updates) - set(known))
        if ignored:
            logger.warning("Ignoring unknown config keys: %s", ignored)
        if "autoInject" in known:
            known["autoInject"] = _coerce_bool(known["autoInject"])
        if known:
            await self._store.set_many(known)
            logger.info("Config updated: %s", sorted(known))
        return await self.get()

    async def ensure_defaults(self) -> UserConfig:
        """Write defaults for first install; existing values win."""
        current = await self.get()
        await self._store.set_many(current.to_dict())
        return current
