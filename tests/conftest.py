"""
pytest configuration and shared fixtures.

Async tests use anyio's pytest plugin (@pytest.mark.anyio), pinned to asyncio
because the application runs its stores on the QtAsyncio loop.

    pytest                       # everything
    pytest tests/test_stores.py  # one module
"""

import asyncio

import pytest
from PySide6.QtCore import QCoreApplication

from toonmark.catalog import CatalogItem, Platform
from toonmark.errors import PersistenceError


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def qapp():
    """A QCoreApplication for tests that create QObjects."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


# ============================================
# Key-value substrate fakes
# ============================================


class MemoryKeyValueStore:
    """In-memory KeyValueStore with switchable failures."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data = dict(data or {})
        self.fail_reads = False
        self.fail_writes = False
        self.writes = 0

    async def get_item(self, key: str) -> str | None:
        if self.fail_reads:
            raise PersistenceError(key, "read", OSError("disk unavailable"))
        return self.data.get(key)

    async def set_item(self, key: str, blob: str) -> None:
        if self.fail_writes:
            raise PersistenceError(key, "write", OSError("disk full"))
        self.data[key] = blob
        self.writes += 1

    async def remove_item(self, key: str) -> None:
        if self.fail_writes:
            raise PersistenceError(key, "remove", OSError("read-only"))
        self.data.pop(key, None)
        self.writes += 1

    async def multi_remove(self, keys) -> None:
        if self.fail_writes:
            raise PersistenceError(",".join(keys), "remove", OSError("read-only"))
        for key in keys:
            self.data.pop(key, None)
        self.writes += 1


class GatedKeyValueStore(MemoryKeyValueStore):
    """Writes block until the gate is opened."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        super().__init__(data)
        self.gate = asyncio.Event()

    async def set_item(self, key: str, blob: str) -> None:
        await self.gate.wait()
        await super().set_item(key, blob)


class FakeClock:
    """Deterministic, strictly increasing ISO timestamps."""

    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> str:
        self.ticks += 1
        return f"2026-01-01T00:00:{self.ticks:02d}.000Z"


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================
# Catalog items
# ============================================


@pytest.fixture
def query_item() -> CatalogItem:
    return CatalogItem(
        id="w1",
        title="Query Toon",
        platform=Platform.NAVER,
        thumbnail="",
        url="https://x.example/list?titleId=1",
        episode_pattern=r"no=(\d+)",
    )


@pytest.fixture
def path_item() -> CatalogItem:
    return CatalogItem(
        id="w2",
        title="Path Toon",
        platform=Platform.LEZHIN,
        thumbnail="",
        url="https://x.example/comic/sample",
        episode_pattern=r"episode/(\d+)",
    )
