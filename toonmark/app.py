"""
Toonmark — App Shell

Creates the QMainWindow with a QStackedWidget hosting:
  - Index 0: QTabWidget (Library / Recent / Favorites / Settings)
  - Index 1: ReaderPage (embedded browser for one webtoon)

Handles:
  - CLI/env configuration (data dir, catalog file, log level, DevTools)
  - Logging setup (console + toonmark.log in the data dir)
  - Composition: one FileKeyValueStore, one StateNotifier, one SettingsStore,
    passed explicitly to every page that needs them
  - Running the Qt event loop under QtAsyncio so store coroutines can be awaited
"""

import argparse
import logging
import os
import sys
from pathlib import Path

from PySide6 import QtAsyncio
from PySide6.QtCore import QStandardPaths, Qt, Signal
from PySide6.QtGui import QKeySequence, QShortcut
from PySide6.QtWebEngineCore import QWebEngineProfile
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import (
    QApplication, QCheckBox, QComboBox, QFormLayout, QHBoxLayout, QLabel,
    QLineEdit, QListWidget, QListWidgetItem, QMainWindow, QMessageBox,
    QPushButton, QStackedWidget, QTabWidget, QVBoxLayout, QWidget,
)

from toonmark import __version__
from toonmark.catalog import PLATFORM_CONFIG, Catalog, Platform, default_catalog, load_catalog
from toonmark.notifier import StateNotifier
from toonmark.reader_widget import ReaderPage, spawn
from toonmark.storage import FileKeyValueStore
from toonmark.stores import SettingsRecord, SettingsStore, Theme

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

APP_NAME = "Toonmark"
LOG_FILE = "toonmark.log"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STATUS_TIMEOUT_MS = 5000

LIST_LIBRARY = "library"
LIST_RECENT = "recent"
LIST_FAVORITES = "favorites"

EMPTY_TEXT = {
    LIST_LIBRARY: "No titles match.",
    LIST_RECENT: "Nothing read yet. Titles you read show up here.",
    LIST_FAVORITES: "No favorites yet.",
}

THEME_STYLES = {
    Theme.LIGHT: """
        QWidget { background-color: #FFFFFF; color: #1E293B; }
        QLineEdit, QComboBox, QListWidget { background-color: #F8FAFC; border: 1px solid #E2E8F0; border-radius: 8px; padding: 4px; }
        #readerHeader, #readerSaved { background-color: #F8FAFC; }
        #readerEpisode { color: #6366F1; }
        #readerSaved { color: #64748B; }
    """,
    Theme.DARK: """
        QWidget { background-color: #101216; color: #E2E8F0; }
        QLineEdit, QComboBox, QListWidget { background-color: #1E2228; border: 1px solid #2E333B; border-radius: 8px; padding: 4px; }
        #readerHeader, #readerSaved { background-color: #1E2228; }
        #readerEpisode { color: #8B5CF6; }
        #readerSaved { color: #94A3B8; }
    """,
}


# ---------------------------------------------------------------------------
# Item list (shared by Library, Recent and Favorites)
# ---------------------------------------------------------------------------

class ItemListPage(QWidget):
    """
    List of catalog items with progress and favorite markers.
    mode picks the rows: the whole catalog with a search/filter row (library),
    items with progress, most recently read first (recent), or favorites.
    """

    openRequested = Signal(str)   # item id

    def __init__(self, catalog: Catalog, notifier: StateNotifier,
                 mode: str = LIST_LIBRARY, parent=None):
        super().__init__(parent)
        self._catalog = catalog
        self._notifier = notifier
        self._mode = mode
        self._setup_ui()

        notifier.progressChanged.connect(self.rebuild)
        notifier.favoritesChanged.connect(self.rebuild)

    def _setup_ui(self):
        root = QVBoxLayout(self)

        self._search = QLineEdit()
        self._search.setPlaceholderText("Search titles")
        self._search.setClearButtonEnabled(True)
        self._platform = QComboBox()
        self._platform.addItem("All", None)
        for platform in Platform:
            self._platform.addItem(PLATFORM_CONFIG[platform]["name"], platform.value)

        if self._mode == LIST_LIBRARY:
            row = QHBoxLayout()
            row.addWidget(self._search, 1)
            row.addWidget(self._platform)
            root.addLayout(row)
            self._search.textChanged.connect(self.rebuild)
            self._platform.currentIndexChanged.connect(self.rebuild)

        self._list = QListWidget()
        self._list.itemActivated.connect(self._on_activated)
        root.addWidget(self._list, 1)

        self._empty_label = QLabel(EMPTY_TEXT[self._mode])
        self._empty_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self._empty_label.hide()
        root.addWidget(self._empty_label)

        buttons = QHBoxLayout()
        self._open_btn = QPushButton("Read")
        self._open_btn.clicked.connect(self._open_selected)
        self._fav_btn = QPushButton("★ Favorite")
        self._fav_btn.clicked.connect(self._toggle_selected)
        buttons.addStretch(1)
        buttons.addWidget(self._fav_btn)
        buttons.addWidget(self._open_btn)
        root.addLayout(buttons)

    def _visible_items(self):
        if self._mode == LIST_FAVORITES:
            ids = [f.item_id for f in self._notifier.favorites]
            return [self._catalog.get(i) for i in ids if i in self._catalog]
        if self._mode == LIST_RECENT:
            ids = [r.item_id for r in self._notifier.recent()]
            return [self._catalog.get(i) for i in ids if i in self._catalog]
        return self._catalog.search(self._search.text(), self._platform.currentData())

    def rebuild(self, *_args):
        if not self._notifier.loaded:
            return
        selected = self._selected_id()
        self._list.clear()
        items = self._visible_items()
        for item in items:
            record = self._notifier.progress_for(item.id)
            star = "★ " if self._notifier.is_favorite(item.id) else ""
            progress = f"  ·  Ep {record.last_episode}" if record else ""
            platform = PLATFORM_CONFIG[item.platform]
            row = QListWidgetItem(f"{star}{item.title}  [{platform['name']}]{progress}")
            row.setData(Qt.ItemDataRole.UserRole, item.id)
            row.setToolTip(item.url)
            self._list.addItem(row)
            if item.id == selected:
                self._list.setCurrentItem(row)
        self._empty_label.setVisible(not items)

    def _selected_id(self) -> str | None:
        row = self._list.currentItem()
        return row.data(Qt.ItemDataRole.UserRole) if row else None

    def _on_activated(self, row: QListWidgetItem):
        self.openRequested.emit(row.data(Qt.ItemDataRole.UserRole))

    def _open_selected(self):
        item_id = self._selected_id()
        if item_id:
            self.openRequested.emit(item_id)

    def _toggle_selected(self):
        item_id = self._selected_id()
        if item_id:
            spawn(self._notifier.toggle_favorite(item_id))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class SettingsPage(QWidget):
    themeChanged = Signal(object)   # Theme

    def __init__(self, settings_store: SettingsStore, notifier: StateNotifier, parent=None):
        super().__init__(parent)
        self._store = settings_store
        self._notifier = notifier
        self._applying = False
        self._setup_ui()

    def _setup_ui(self):
        form = QFormLayout(self)

        self._theme = QComboBox()
        self._theme.addItem("Light", Theme.LIGHT.value)
        self._theme.addItem("Dark", Theme.DARK.value)
        self._theme.currentIndexChanged.connect(self._on_theme_changed)
        form.addRow("Theme", self._theme)

        self._notifications = QCheckBox("Notify me about new episodes")
        self._notifications.toggled.connect(self._on_notifications_toggled)
        form.addRow("Notifications", self._notifications)

        reset = QPushButton("Reset all data")
        reset.clicked.connect(self._confirm_reset)
        form.addRow("Data", reset)

        form.addRow("Version", QLabel(__version__))

    def apply(self, settings: SettingsRecord):
        """Show settings without writing them back."""
        self._applying = True
        try:
            self._theme.setCurrentIndex(self._theme.findData(settings.theme.value))
            self._notifications.setChecked(settings.notifications)
        finally:
            self._applying = False

    def _on_theme_changed(self, _index):
        if self._applying:
            return
        theme = self._theme.currentData()
        self.themeChanged.emit(theme)
        spawn(self._store.update(theme=theme))

    def _on_notifications_toggled(self, on: bool):
        if self._applying:
            return
        spawn(self._store.update(notifications=on))

    def _confirm_reset(self):
        answer = QMessageBox.question(
            self, "Reset all data",
            "Delete all reading progress, favorites and settings? This cannot be undone.",
        )
        if answer == QMessageBox.StandardButton.Yes:
            spawn(self._reset())

    async def _reset(self):
        ok = await self._notifier.reset()
        defaults = SettingsRecord()
        self.apply(defaults)
        self.themeChanged.emit(defaults.theme)
        window = self.window()
        if ok and isinstance(window, QMainWindow):
            window.statusBar().showMessage("All data has been reset.", STATUS_TIMEOUT_MS)


# ---------------------------------------------------------------------------
# Main Window
# ---------------------------------------------------------------------------

class ToonmarkWindow(QMainWindow):
    """
    QStackedWidget with two layers:
      index 0 = QTabWidget  (library, recent, favorites, settings)
      index 1 = ReaderPage  (embedded browser)
    """

    def __init__(self, catalog: Catalog, kv: FileKeyValueStore, dev_tools: bool = False):
        super().__init__()
        self.setWindowTitle(APP_NAME)
        self.setMinimumSize(480, 640)
        self.resize(900, 960)

        self._catalog = catalog
        self._notifier = StateNotifier(kv, parent=self)
        self._settings_store = SettingsStore(
            kv, on_error=lambda what, e: self._notifier.persistenceFailed.emit(f"{what}: {e}")
        )
        self._notifier.persistenceFailed.connect(self._show_error)

        # Persistent web profile so site logins survive restarts
        self._profile = QWebEngineProfile("toonmark", self)
        self._profile.setPersistentStoragePath(os.path.join(kv.data_dir, "WebEngine"))

        # --- Stacked widget ---
        self._stack = QStackedWidget()
        self.setCentralWidget(self._stack)

        self._tabs = QTabWidget()
        self._library = ItemListPage(catalog, self._notifier)
        self._recent = ItemListPage(catalog, self._notifier, mode=LIST_RECENT)
        self._favorites = ItemListPage(catalog, self._notifier, mode=LIST_FAVORITES)
        self._settings = SettingsPage(self._settings_store, self._notifier)
        self._tabs.addTab(self._library, "Library")
        self._tabs.addTab(self._recent, "Recent")
        self._tabs.addTab(self._favorites, "Favorites")
        self._tabs.addTab(self._settings, "Settings")
        self._stack.addWidget(self._tabs)          # index 0

        self._reader = ReaderPage(self._notifier, self._profile)
        self._stack.addWidget(self._reader)        # index 1

        self._library.openRequested.connect(self.open_item)
        self._recent.openRequested.connect(self.open_item)
        self._favorites.openRequested.connect(self.open_item)
        self._reader.closeRequested.connect(self.show_tabs)
        self._settings.themeChanged.connect(self.apply_theme)

        # --- DevTools ---
        self._dev_tools = dev_tools
        self._dev_tools_view: QWebEngineView | None = None
        if dev_tools:
            QShortcut(QKeySequence("F12"), self, self.toggle_dev_tools)
            QShortcut(QKeySequence("Ctrl+Shift+I"), self, self.toggle_dev_tools)

    @property
    def notifier(self) -> StateNotifier:
        return self._notifier

    async def startup(self):
        """Load shared state and settings, then show the window."""
        settings = await self._settings_store.get()
        self._settings.apply(settings)
        self.apply_theme(settings.theme)
        await self._notifier.refresh()
        self.show()

    # --- Page switching ---

    def open_item(self, item_id: str):
        item = self._catalog.get(item_id)
        if item is None:
            logger.warning("Open requested for unknown item %r", item_id)
            return
        self._reader.open_item(item)
        self._stack.setCurrentIndex(1)

    def show_tabs(self):
        self._stack.setCurrentIndex(0)

    # --- Theme / status ---

    def apply_theme(self, theme: Theme | str):
        self.setStyleSheet(THEME_STYLES[Theme(theme)])

    def _show_error(self, message: str):
        self.statusBar().showMessage(f"Could not save: {message}", STATUS_TIMEOUT_MS)

    # --- DevTools ---

    def toggle_dev_tools(self):
        if not self._dev_tools:
            return
        if self._dev_tools_view is None:
            self._dev_tools_view = QWebEngineView()
            self._reader.set_dev_tools_page(self._dev_tools_view.page())
        if self._dev_tools_view.isVisible():
            self._dev_tools_view.hide()
        else:
            self._dev_tools_view.show()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def pick_user_data_dir(explicit: str = "") -> str:
    """--data-dir / TOONMARK_DATA_DIR, else the platform app-data location."""
    if explicit:
        return os.path.abspath(os.path.expanduser(explicit))
    location = QStandardPaths.writableLocation(QStandardPaths.StandardLocation.AppDataLocation)
    return location or str(Path.home() / ".toonmark")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=f"{APP_NAME} — webtoon reading tracker")
    parser.add_argument(
        "--data-dir", dest="data_dir",
        default=os.environ.get("TOONMARK_DATA_DIR", ""),
        help="Directory for progress, favorites, settings and logs",
    )
    parser.add_argument(
        "--catalog", dest="catalog",
        default=os.environ.get("TOONMARK_CATALOG", ""),
        help="JSON catalog file (defaults to the built-in sample catalog)",
    )
    parser.add_argument(
        "--log-level", dest="log_level",
        default=os.environ.get("TOONMARK_LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    parser.add_argument(
        "--dev-tools", action="store_true",
        default=os.environ.get("TOONMARK_DEVTOOLS") == "1",
        help="Enable DevTools (Ctrl+Shift+I / F12)",
    )
    return parser.parse_known_args(argv)


def setup_logging(data_dir: str, level: str):
    os.makedirs(data_dir, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(os.path.join(data_dir, LOG_FILE), encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main():
    args, qt_args = parse_args()

    app = QApplication([sys.argv[0], *qt_args])
    app.setApplicationName(APP_NAME)
    app.setOrganizationName(APP_NAME)

    data_dir = pick_user_data_dir(args.data_dir)
    setup_logging(data_dir, args.log_level)
    logger.info("userData: %s", data_dir)

    catalog = load_catalog(args.catalog) if args.catalog else default_catalog()
    kv = FileKeyValueStore(data_dir)

    win = ToonmarkWindow(catalog, kv, dev_tools=args.dev_tools)
    QtAsyncio.run(win.startup(), keep_running=True, quit_qapp=True, handle_sigint=True)


if __name__ == "__main__":
    main()
