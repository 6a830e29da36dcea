"""
SettingsStore — JSON settings blobs on top of a key-value backend.

Key derivation:
    guild-scoped   <guild_id><suffix>          e.g. "1234-settings"
    user-scoped    <guild_id>__<user_id>       e.g. "1234__5678"

Non-overwrite writes shallow-merge onto the stored object (read, merge,
write; last writer wins). Overwriting with `None` deletes the key.
Malformed stored JSON reads as absent data and is logged, never raised.

Guild settings are cached in-process per guild. The cache holds the
pending load (or save) itself, so concurrent readers during a save see
either the previous value or the new one.
"""

import asyncio
import copy
import json
import logging
from typing import Any, Dict, Optional

from models.settings import apply_defaults

logger = logging.getLogger("SettingsStore")

GUILD_SETTINGS_SUFFIX = "-settings"


def data_key(guild_id: Any, user_id: Any = None, suffix: Optional[str] = None) -> Optional[str]:
    """Derive a storage key. Returns None when there is no guild scope."""
    if guild_id is None:
        return None
    if suffix:
        return f"{guild_id}{suffix}"
    if user_id is not None:
        return f"{guild_id}__{user_id}"
    return str(guild_id)


class SettingsStore:
    """Settings Store Adapter: get/set/delete JSON under derived keys."""

    def __init__(self, backend):
        self.backend = backend
        self._guild_cache: Dict[str, asyncio.Future] = {}

    # ------------------------------------------------------------------
    # Raw JSON blobs
    # ------------------------------------------------------------------

    async def get(self, key: Optional[str]) -> Optional[Any]:
        """Load and decode the value under `key`, or None."""
        if not key:
            return None
        raw = await self.backend.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed JSON under '{key}': {e}")
            return None

    async def set(self, key: Optional[str], value: Any, overwrite: bool = False) -> Any:
        """Store `value` under `key` and return what was stored.

        overwrite=False shallow-merges a dict onto the stored dict.
        overwrite=True with value=None deletes the key.
        """
        if not key:
            return None

        if overwrite:
            if value is None:
                await self.backend.delete(key)
                return None
            await self.backend.set(key, json.dumps(value))
            return value

        previous = await self.get(key)
        if isinstance(previous, dict) and isinstance(value, dict):
            merged = {**previous, **value}
        elif value is None:
            merged = previous if previous is not None else {}
        else:
            merged = value
        await self.backend.set(key, json.dumps(merged))
        return merged

    async def delete(self, key: Optional[str]) -> None:
        if key:
            await self.backend.delete(key)

    # ------------------------------------------------------------------
    # Per-user settings
    # ------------------------------------------------------------------

    async def get_user_settings(self, guild_id: Any, user_id: Any) -> Dict[str, Any]:
        data = await self.get(data_key(guild_id, user_id))
        return data if isinstance(data, dict) else {}

    async def save_user_settings(
        self, guild_id: Any, user_id: Any, settings: Optional[Dict[str, Any]], overwrite: bool = True
    ) -> Any:
        return await self.set(data_key(guild_id, user_id), settings, overwrite)

    # ------------------------------------------------------------------
    # Per-guild settings (cached)
    # ------------------------------------------------------------------

    async def _load_guild_settings(self, key: str) -> Dict[str, Any]:
        stored = await self.get(key)
        return apply_defaults(stored if isinstance(stored, dict) else None)

    async def _save_guild_settings(self, key: str, settings: Dict[str, Any], overwrite: bool) -> Dict[str, Any]:
        saved = await self.set(key, settings, overwrite)
        return apply_defaults(saved if isinstance(saved, dict) else None)

    async def _await_cached(self, key: str, future: asyncio.Future) -> Dict[str, Any]:
        # Shielded: a cancelled reader must not cancel the load other readers share.
        try:
            result = await asyncio.shield(future)
        except BaseException:
            if future.done() and (future.cancelled() or future.exception() is not None):
                if self._guild_cache.get(key) is future:
                    del self._guild_cache[key]
            raise
        return copy.deepcopy(result)

    async def get_guild_settings(self, guild_id: Any) -> Dict[str, Any]:
        """Guild settings with defaults applied. Loaded lazily, then cached."""
        key = data_key(guild_id, suffix=GUILD_SETTINGS_SUFFIX)
        if key is None:
            return apply_defaults(None)

        future = self._guild_cache.get(key)
        if future is None:
            future = asyncio.ensure_future(self._load_guild_settings(key))
            self._guild_cache[key] = future
        return await self._await_cached(key, future)

    async def save_guild_settings(
        self, guild_id: Any, settings: Dict[str, Any], overwrite: bool = False
    ) -> Dict[str, Any]:
        """Persist guild settings, replacing the cache entry with the pending save."""
        key = data_key(guild_id, suffix=GUILD_SETTINGS_SUFFIX)
        if key is None:
            return apply_defaults(settings)

        future = asyncio.ensure_future(self._save_guild_settings(key, settings, overwrite))
        self._guild_cache[key] = future
        return await self._await_cached(key, future)

    def invalidate_guild_settings(self, guild_id: Any) -> bool:
        """Drop the cached settings for a guild. Returns True if anything was cached."""
        key = data_key(guild_id, suffix=GUILD_SETTINGS_SUFFIX)
        return self._guild_cache.pop(key, None) is not None
