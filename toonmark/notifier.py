"""
Toonmark — State Notifier

Session-wide read-through cache in front of ProgressStore and FavoritesStore.
One instance is built at startup (app.py) and handed to every page that shows
progress or favorites, so they all render from the same snapshot.

Snapshot rules:
  - refresh() reloads both stores and replaces the snapshot
  - update_progress()/toggle_favorite() replace the snapshot *before* the
    store write is awaited, so readers see their own writes immediately
  - a failed write is not rolled back; persistenceFailed is emitted instead
  - snapshots are immutable (MappingProxyType / tuple / frozenset) and are only
    ever swapped wholesale
"""

import logging
from types import MappingProxyType
from typing import Callable, Mapping

from PySide6.QtCore import QObject, Signal

from toonmark.errors import InvalidStateError
from toonmark.storage import KeyValueStore
from toonmark.stores import (
    FavoriteRecord,
    FavoritesStore,
    ProgressRecord,
    ProgressStore,
    clear_all_data,
    now_iso,
)

logger = logging.getLogger(__name__)


class StateNotifier(QObject):
    # Push events: payload is the new immutable snapshot
    progressChanged = Signal(object)    # Mapping[str, ProgressRecord]
    favoritesChanged = Signal(object)   # tuple[FavoriteRecord, ...]
    persistenceFailed = Signal(str)

    def __init__(self, kv: KeyValueStore, clock: Callable[[], str] = now_iso, parent=None):
        super().__init__(parent)
        self._kv = kv
        self._clock = clock
        self._progress_store = ProgressStore(kv, clock=clock, on_error=self._report)
        self._favorites_store = FavoritesStore(kv, clock=clock, on_error=self._report)
        self._progress: Mapping[str, ProgressRecord] | None = None
        self._favorites: tuple[FavoriteRecord, ...] | None = None
        self._favorite_ids: frozenset[str] = frozenset()
        self._loading = False

    def _report(self, what: str, error: Exception):
        self.persistenceFailed.emit(f"{what}: {error}")

    # --- Snapshot plumbing ---

    def _set_progress(self, data: dict[str, ProgressRecord]):
        self._progress = MappingProxyType(dict(data))
        self.progressChanged.emit(self._progress)

    def _set_favorites(self, favorites):
        self._favorites = tuple(favorites)
        self._favorite_ids = frozenset(f.item_id for f in self._favorites)
        self.favoritesChanged.emit(self._favorites)

    def _require_loaded(self):
        if self._progress is None or self._favorites is None:
            raise InvalidStateError(
                "StateNotifier.refresh() must complete before shared state is used"
            )

    # --- Accessors ---

    @property
    def loaded(self) -> bool:
        return self._progress is not None and self._favorites is not None

    @property
    def loading(self) -> bool:
        return self._loading

    @property
    def progress_store(self) -> ProgressStore:
        return self._progress_store

    @property
    def favorites_store(self) -> FavoritesStore:
        return self._favorites_store

    @property
    def progress(self) -> Mapping[str, ProgressRecord]:
        self._require_loaded()
        return self._progress

    @property
    def favorites(self) -> tuple[FavoriteRecord, ...]:
        self._require_loaded()
        return self._favorites

    @property
    def favorite_ids(self) -> frozenset[str]:
        self._require_loaded()
        return self._favorite_ids

    def progress_for(self, item_id: str) -> ProgressRecord | None:
        return self.progress.get(item_id)

    def is_favorite(self, item_id: str) -> bool:
        return item_id in self.favorite_ids

    def recent(self) -> list[ProgressRecord]:
        """Progress records, most recently read first."""
        return sorted(self.progress.values(),
                      key=lambda r: (r.last_read_at, r.item_id), reverse=True)

    # --- Loading ---

    async def refresh(self):
        """Reload both stores and broadcast the new snapshots."""
        self._loading = True
        try:
            progress = await self._progress_store.get_all()
            favorites = await self._favorites_store.get_all()
        finally:
            self._loading = False
        self._set_progress(progress)
        self._set_favorites(favorites)
        logger.info("State loaded: %d progress records, %d favorites", len(progress), len(favorites))

    # --- Mutations ---

    async def update_progress(self, item_id: str, episode: int) -> bool:
        """
        Show episode for item_id immediately (if it is higher than the cached one),
        then persist through the monotonic store update.
        Returns True when the store wrote a new record.
        """
        self._require_loaded()
        if episode < 1:
            return False

        prev = self._progress.get(item_id)
        if prev is None or episode > prev.last_episode:
            nxt = dict(self._progress)
            nxt[item_id] = ProgressRecord(item_id, episode, self._clock())
            self._set_progress(nxt)

        return await self._progress_store.update(item_id, episode)

    async def toggle_favorite(self, item_id: str) -> bool:
        """Flip membership in the snapshot, persist, and return the new state."""
        self._require_loaded()
        now_on = item_id not in self._favorite_ids

        if now_on:
            self._set_favorites(self._favorites + (FavoriteRecord(item_id, self._clock()),))
            await self._favorites_store.add(item_id)
        else:
            self._set_favorites(f for f in self._favorites if f.item_id != item_id)
            await self._favorites_store.remove(item_id)
        return now_on

    async def reset(self) -> bool:
        """Wipe progress, favorites and settings from storage and the snapshot."""
        ok = await clear_all_data(self._kv, on_error=self._report)
        self._set_progress({})
        self._set_favorites(())
        return ok
