"""
Toonmark — Reader Page

QWebEngineView hosting a webtoon's site, with a small native header:

  [←/✕]  Title                 [↻]
         Reading episode N
  Last read: episode M
  ┌──────────────────────────────┐
  │        QWebEngineView        │
  └──────────────────────────────┘

Every urlChanged from the view is forwarded to a NavigationTracker, which
decides whether it is an episode page of the open item and records progress.
The back button walks the page history and turns into a close button once
there is nothing left to go back to.
"""

import asyncio
import logging
from typing import Coroutine

from PySide6.QtCore import QUrl, Signal
from PySide6.QtWebEngineCore import QWebEnginePage, QWebEngineProfile, QWebEngineSettings
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import (
    QHBoxLayout, QLabel, QProgressBar, QToolButton, QVBoxLayout, QWidget,
)

from toonmark.catalog import CatalogItem
from toonmark.notifier import StateNotifier
from toonmark.tracker import NavigationTracker

logger = logging.getLogger(__name__)

_pending: set[asyncio.Task] = set()


def _log_task_result(task: asyncio.Task):
    _pending.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task failed: %s", exc, exc_info=exc)


def spawn(coro: Coroutine) -> asyncio.Task:
    """Schedule a coroutine from a Qt slot on the running QtAsyncio loop."""
    task = asyncio.ensure_future(coro)
    _pending.add(task)
    task.add_done_callback(_log_task_result)
    return task


# ---------------------------------------------------------------------------
# Custom page
# ---------------------------------------------------------------------------

class ReaderWebPage(QWebEnginePage):
    """Routes page console warnings to the log instead of stdout."""

    def javaScriptConsoleMessage(self, level, message, line, source):
        if level != QWebEnginePage.JavaScriptConsoleMessageLevel.InfoMessageLevel:
            logger.debug("[page] %s (%s:%s)", message, source, line)


# ---------------------------------------------------------------------------
# ReaderPage widget
# ---------------------------------------------------------------------------

class ReaderPage(QWidget):
    """Embedded browser for one catalog item at a time."""

    # Emitted when the user closes the reader (back with no history left)
    closeRequested = Signal()

    def __init__(self, notifier: StateNotifier, profile: QWebEngineProfile | None = None,
                 parent=None):
        super().__init__(parent)
        self._notifier = notifier
        self._profile = profile or QWebEngineProfile.defaultProfile()
        self._tracker: NavigationTracker | None = None

        self._setup_ui()
        self._notifier.progressChanged.connect(self._on_progress_changed)

    @property
    def page(self) -> QWebEnginePage:
        return self._page

    @property
    def tracker(self) -> NavigationTracker | None:
        return self._tracker

    def _setup_ui(self):
        root = QVBoxLayout(self)
        root.setContentsMargins(0, 0, 0, 0)
        root.setSpacing(0)

        # --- Header ---
        header = QWidget()
        header.setObjectName("readerHeader")
        hl = QHBoxLayout(header)
        hl.setContentsMargins(8, 4, 8, 4)

        self._back_btn = QToolButton()
        self._back_btn.setText("✕")
        self._back_btn.clicked.connect(self._on_back_clicked)
        hl.addWidget(self._back_btn)

        titles = QVBoxLayout()
        titles.setSpacing(0)
        self._title_label = QLabel()
        self._title_label.setObjectName("readerTitle")
        self._episode_label = QLabel()
        self._episode_label.setObjectName("readerEpisode")
        self._episode_label.hide()
        titles.addWidget(self._title_label)
        titles.addWidget(self._episode_label)
        hl.addLayout(titles, 1)

        self._reload_btn = QToolButton()
        self._reload_btn.setText("↻")
        self._reload_btn.clicked.connect(self.reload)
        hl.addWidget(self._reload_btn)
        root.addWidget(header)

        # --- Saved progress strip ---
        self._saved_label = QLabel()
        self._saved_label.setObjectName("readerSaved")
        self._saved_label.setContentsMargins(12, 2, 12, 2)
        self._saved_label.hide()
        root.addWidget(self._saved_label)

        # --- Loading bar ---
        self._loading_bar = QProgressBar()
        self._loading_bar.setRange(0, 0)
        self._loading_bar.setMaximumHeight(3)
        self._loading_bar.setTextVisible(False)
        self._loading_bar.hide()
        root.addWidget(self._loading_bar)

        # --- Web view ---
        self._page = ReaderWebPage(self._profile, self)
        self._view = QWebEngineView()
        self._view.setPage(self._page)

        settings = self._view.settings()
        settings.setAttribute(QWebEngineSettings.WebAttribute.JavascriptEnabled, True)
        settings.setAttribute(QWebEngineSettings.WebAttribute.LocalStorageEnabled, True)
        settings.setAttribute(QWebEngineSettings.WebAttribute.PlaybackRequiresUserGesture, False)

        self._view.urlChanged.connect(self._on_url_changed)
        self._view.loadStarted.connect(self._loading_bar.show)
        self._view.loadFinished.connect(lambda _ok: self._loading_bar.hide())
        root.addWidget(self._view, 1)

    # --- Session ---

    def open_item(self, item: CatalogItem, resume: bool = True):
        """Start reading item, at its saved episode when resume is set."""
        self._tracker = NavigationTracker(item, self._notifier)
        self._title_label.setText(item.title)
        self._refresh_header()
        url = self._tracker.resume_url() if resume else item.url
        logger.info("Opening %s at %s", item.title, url)
        self.load_url(url)

    # --- Browser controls ---

    def go_back(self):
        if self._view.history().canGoBack():
            self._view.back()

    def reload(self):
        self._view.reload()

    def load_url(self, url: str):
        self._view.load(QUrl(url))

    # --- Navigation events ---

    def _on_url_changed(self, qurl: QUrl):
        if self._tracker is None:
            return
        can_back = self._view.history().canGoBack()
        spawn(self._track(qurl.toString(), can_back))

    async def _track(self, url: str, can_back: bool):
        tracker = self._tracker
        if tracker is None:
            return
        await tracker.handle_navigation(url, can_back)
        if tracker is self._tracker:
            self._refresh_header()

    def _on_back_clicked(self):
        if self._tracker is not None and self._tracker.can_go_back:
            self.go_back()
        else:
            self.closeRequested.emit()

    def _on_progress_changed(self, _snapshot):
        if self._tracker is not None:
            self._refresh_header()

    def _refresh_header(self):
        tracker = self._tracker
        if tracker is None:
            return
        self._back_btn.setText("←" if tracker.can_go_back else "✕")

        if tracker.detected_episode is not None:
            self._episode_label.setText(f"Reading episode {tracker.detected_episode}")
            self._episode_label.show()
        else:
            self._episode_label.hide()

        saved = tracker.saved_episode()
        if saved is not None:
            self._saved_label.setText(f"Last read: episode {saved}")
            self._saved_label.show()
        else:
            self._saved_label.hide()

    def set_dev_tools_page(self, page: QWebEnginePage | None):
        self._page.setDevToolsPage(page)
