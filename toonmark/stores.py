"""
Toonmark — Stores

Progress, favorites and settings persisted as JSON blobs in a KeyValueStore.

Each store owns exactly one key. Every mutation is a read-modify-write against
the latest persisted blob (never a cached copy), which is what keeps the
progress "only ever goes up" rule intact under rapid navigation events.

Failure policy:
  - a failed read returns the empty/default value
  - a blob that is not valid JSON is treated as empty (and overwritten on the next write)
  - a failed mutation is logged, reported to on_error, and leaves storage untouched
Nothing here raises past the store boundary.
"""

import json
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from toonmark.errors import PersistenceError
from toonmark.storage import KeyValueStore

logger = logging.getLogger(__name__)

PROGRESS_KEY = "toonmark_progress"
FAVORITES_KEY = "toonmark_favorites"
SETTINGS_KEY = "toonmark_settings"
ALL_KEYS = (PROGRESS_KEY, FAVORITES_KEY, SETTINGS_KEY)

ErrorCallback = Callable[[str, Exception], None]


def now_iso() -> str:
    """UTC timestamp in the '2024-01-31T12:00:00.000Z' form."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProgressRecord:
    item_id: str
    last_episode: int
    last_read_at: str

    def to_dict(self) -> dict:
        return {"itemId": self.item_id, "lastEpisode": self.last_episode, "lastReadAt": self.last_read_at}

    @classmethod
    def from_dict(cls, raw: Any) -> "ProgressRecord | None":
        if not isinstance(raw, dict):
            return None
        episode = raw.get("lastEpisode")
        if isinstance(episode, bool) or not isinstance(episode, int) or episode < 1:
            return None
        item_id = raw.get("itemId")
        if not isinstance(item_id, str) or not item_id:
            return None
        return cls(item_id, episode, str(raw.get("lastReadAt", "")))


@dataclass(frozen=True)
class FavoriteRecord:
    item_id: str
    added_at: str

    def to_dict(self) -> dict:
        return {"itemId": self.item_id, "addedAt": self.added_at}

    @classmethod
    def from_dict(cls, raw: Any) -> "FavoriteRecord | None":
        if not isinstance(raw, dict):
            return None
        item_id = raw.get("itemId")
        if not isinstance(item_id, str) or not item_id:
            return None
        return cls(item_id, str(raw.get("addedAt", "")))


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True)
class SettingsRecord:
    theme: Theme = Theme.LIGHT
    notifications: bool = True

    def to_dict(self) -> dict:
        data = asdict(self)
        data["theme"] = self.theme.value
        return data

    @classmethod
    def from_dict(cls, raw: Any) -> "SettingsRecord":
        """Merge stored fields over the defaults. Invalid fields keep their default."""
        settings = cls()
        if not isinstance(raw, dict):
            return settings
        if raw.get("theme") in {t.value for t in Theme}:
            settings = replace(settings, theme=Theme(raw["theme"]))
        if isinstance(raw.get("notifications"), bool):
            settings = replace(settings, notifications=raw["notifications"])
        return settings


# ---------------------------------------------------------------------------
# Shared JSON-blob plumbing
# ---------------------------------------------------------------------------

class JsonBlobStore:
    """
    Read/write one JSON value under a single key.
    Subclass must set _key and _empty (a callable producing the empty value).
    """

    _key: str = ""
    _empty: Callable[[], Any] = dict

    def __init__(self, kv: KeyValueStore, clock: Callable[[], str] = now_iso,
                 on_error: ErrorCallback | None = None):
        self._kv = kv
        self._clock = clock
        self._on_error = on_error

    @property
    def key(self) -> str:
        return self._key

    async def _load(self) -> Any:
        """Latest persisted value. Raises PersistenceError on I/O failure."""
        blob = await self._kv.get_item(self._key)
        if not blob:
            return self._empty()
        try:
            value = json.loads(blob)
        except ValueError as e:
            logger.error("Discarding corrupt %s blob: %s", self._key, e)
            return self._empty()
        if not isinstance(value, type(self._empty())):
            logger.error("Discarding %s blob of unexpected type %s", self._key, type(value).__name__)
            return self._empty()
        return value

    async def _read(self, what: str) -> Any:
        """Like _load() but degrades to the empty value."""
        try:
            return await self._load()
        except PersistenceError as e:
            logger.error("Error reading %s: %s", what, e)
            return self._empty()

    async def _save(self, value: Any):
        await self._kv.set_item(self._key, json.dumps(value, ensure_ascii=False))

    def _failed(self, what: str, error: PersistenceError):
        logger.error("Error %s: %s", what, error)
        if self._on_error is not None:
            self._on_error(what, error)

    async def _remove(self, what: str) -> bool:
        try:
            await self._kv.remove_item(self._key)
            return True
        except PersistenceError as e:
            self._failed(what, e)
            return False


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

class ProgressStore(JsonBlobStore):
    """item id -> ProgressRecord, with a monotonic lastEpisode."""

    _key = PROGRESS_KEY
    _empty = dict

    @staticmethod
    def _decode(raw: dict) -> dict[str, ProgressRecord]:
        out = {}
        for item_id, entry in raw.items():
            record = ProgressRecord.from_dict(entry)
            if record is None or record.item_id != item_id:
                logger.warning("Skipping malformed progress entry for %r", item_id)
                continue
            out[item_id] = record
        return out

    async def get_all(self) -> dict[str, ProgressRecord]:
        return self._decode(await self._read("progress"))

    async def get(self, item_id: str) -> ProgressRecord | None:
        return (await self.get_all()).get(item_id)

    async def update(self, item_id: str, episode: int) -> bool:
        """
        Record episode for item_id if it is higher than what is stored.
        Returns True when a new record was written.
        """
        if episode < 1:
            return False
        try:
            raw = await self._load()
            current = ProgressRecord.from_dict(raw.get(item_id))
            if current is not None and episode <= current.last_episode:
                return False
            raw[item_id] = ProgressRecord(item_id, episode, self._clock()).to_dict()
            await self._save(raw)
        except PersistenceError as e:
            self._failed(f"updating progress for {item_id}", e)
            return False
        logger.debug("Progress for %s -> episode %d", item_id, episode)
        return True

    async def clear(self, item_id: str):
        try:
            raw = await self._load()
            if item_id not in raw:
                return
            del raw[item_id]
            await self._save(raw)
        except PersistenceError as e:
            self._failed(f"clearing progress for {item_id}", e)

    async def clear_all(self):
        await self._remove("clearing all progress")


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------

class FavoritesStore(JsonBlobStore):
    """Ordered set of favorited item ids, oldest first."""

    _key = FAVORITES_KEY
    _empty = list

    @staticmethod
    def _decode(raw: list) -> list[FavoriteRecord]:
        out = []
        seen = set()
        for entry in raw:
            record = FavoriteRecord.from_dict(entry)
            if record is None or record.item_id in seen:
                logger.warning("Skipping malformed or duplicate favorite %r", entry)
                continue
            seen.add(record.item_id)
            out.append(record)
        return out

    async def get_all(self) -> list[FavoriteRecord]:
        return self._decode(await self._read("favorites"))

    async def has(self, item_id: str) -> bool:
        return any(f.item_id == item_id for f in await self.get_all())

    async def add(self, item_id: str):
        try:
            favorites = self._decode(await self._load())
            if any(f.item_id == item_id for f in favorites):
                return
            favorites.append(FavoriteRecord(item_id, self._clock()))
            await self._save([f.to_dict() for f in favorites])
        except PersistenceError as e:
            self._failed(f"adding favorite {item_id}", e)

    async def remove(self, item_id: str):
        try:
            favorites = self._decode(await self._load())
            kept = [f for f in favorites if f.item_id != item_id]
            if len(kept) == len(favorites):
                return
            await self._save([f.to_dict() for f in kept])
        except PersistenceError as e:
            self._failed(f"removing favorite {item_id}", e)

    async def toggle(self, item_id: str) -> bool:
        """Flip membership and return the new state."""
        if await self.has(item_id):
            await self.remove(item_id)
            return False
        await self.add(item_id)
        return True

    async def clear_all(self):
        await self._remove("clearing favorites")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class SettingsStore(JsonBlobStore):
    """Single settings record; defaults are merged on every read, never written back."""

    _key = SETTINGS_KEY
    _empty = dict

    def __init__(self, kv: KeyValueStore, clock: Callable[[], str] = now_iso,
                 on_error: ErrorCallback | None = None):
        super().__init__(kv, clock=clock, on_error=on_error)
        self._last = SettingsRecord()

    async def get(self) -> SettingsRecord:
        try:
            self._last = SettingsRecord.from_dict(await self._load())
        except PersistenceError as e:
            logger.error("Error reading settings: %s", e)
        return self._last

    async def update(self, theme: Theme | str | None = None,
                     notifications: bool | None = None) -> SettingsRecord:
        """Merge the given fields into the stored settings and return the result."""
        changes = {}
        if theme is not None:
            changes["theme"] = Theme(theme)
        if notifications is not None:
            changes["notifications"] = bool(notifications)

        try:
            self._last = SettingsRecord.from_dict(await self._load())
            merged = replace(self._last, **changes)
            await self._save(merged.to_dict())
        except PersistenceError as e:
            self._failed("updating settings", e)
            return replace(self._last, **changes)
        self._last = merged
        return merged

    async def clear(self):
        if await self._remove("clearing settings"):
            self._last = SettingsRecord()


async def clear_all_data(kv: KeyValueStore, on_error: ErrorCallback | None = None) -> bool:
    """Remove progress, favorites and settings in one call."""
    try:
        await kv.multi_remove(ALL_KEYS)
    except PersistenceError as e:
        logger.error("Error clearing all data: %s", e)
        if on_error is not None:
            on_error("clearing all data", e)
        return False
    logger.info("All data cleared")
    return True
