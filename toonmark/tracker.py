"""
Toonmark — Navigation Tracker

Turns the embedded browser's navigation events for one catalog item into
progress updates: scope check -> extract -> StateNotifier.update_progress().

Events may arrive at any rate and may repeat the same URL; the monotonic
progress rule makes duplicates harmless.
"""

import logging

from toonmark.catalog import CatalogItem
from toonmark.episodes import build_episode_url, extract_episode, in_scope
from toonmark.notifier import StateNotifier

logger = logging.getLogger(__name__)


class NavigationTracker:
    """Per-reader-session state for one CatalogItem."""

    def __init__(self, item: CatalogItem, notifier: StateNotifier):
        self._item = item
        self._notifier = notifier
        self.current_url = item.url
        self.can_go_back = False
        self.detected_episode: int | None = None

    @property
    def item(self) -> CatalogItem:
        return self._item

    async def handle_navigation(self, url: str, can_go_back: bool = False) -> int | None:
        """Process one navigation event. Returns the detected episode, if any."""
        self.current_url = url
        self.can_go_back = bool(can_go_back)

        if not in_scope(url, self._item):
            logger.debug("Ignoring out-of-scope navigation for %s: %s", self._item.id, url)
            return None

        episode = extract_episode(url, self._item)
        if episode is None:
            return None

        self.detected_episode = episode
        logger.info("Detected episode %d for %s", episode, self._item.title)
        await self._notifier.update_progress(self._item.id, episode)
        return episode

    def saved_episode(self) -> int | None:
        record = self._notifier.progress_for(self._item.id)
        return record.last_episode if record else None

    def resume_url(self) -> str:
        """URL of the last stored episode, or the item's base URL."""
        episode = self.saved_episode()
        if episode is None:
            return self._item.url
        return build_episode_url(self._item, episode)
