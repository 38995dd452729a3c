"""Tests for the file-backed key-value substrate."""

import os

import pytest

from toonmark.errors import PersistenceError
from toonmark.storage import FileKeyValueStore, read_text, write_text_sync
from toonmark.stores import PROGRESS_KEY, ProgressStore

pytestmark = pytest.mark.anyio


@pytest.fixture
def store(tmp_path):
    return FileKeyValueStore(str(tmp_path / "data"))


def _write_raw(path: str, data: bytes):
    with open(path, "wb") as f:
        f.write(data)


async def test_missing_key_reads_as_none(store):
    assert await store.get_item("toonmark_progress") is None


async def test_set_then_get(store):
    await store.set_item("toonmark_progress", '{"w1": 1}')
    assert await store.get_item("toonmark_progress") == '{"w1": 1}'


async def test_write_leaves_backup_and_no_temp_files(store):
    await store.set_item("k", '"v1"')
    await store.set_item("k", '"v2"')

    files = sorted(os.listdir(store.data_dir))
    assert files == ["k.json", "k.json.bak"]
    with open(store.path_for("k") + ".bak", encoding="utf-8") as f:
        assert f.read() == '"v2"'


async def test_lost_primary_is_restored_from_backup(store):
    await store.set_item("k", '"saved"')
    os.unlink(store.path_for("k"))

    assert await store.get_item("k") == '"saved"'
    assert os.path.exists(store.path_for("k"))


async def test_undecodable_primary_falls_back_to_backup(store):
    await store.set_item("k", '{"w1": 1}')
    _write_raw(store.path_for("k"), b'{"w1": \xff\xfe}')

    assert await store.get_item("k") == '{"w1": 1}'
    with open(store.path_for("k"), encoding="utf-8") as f:
        assert f.read() == '{"w1": 1}'


async def test_undecodable_primary_without_backup_reads_as_none(store):
    _write_raw(store.path_for("k"), b"\xff")
    assert await store.get_item("k") is None


async def test_corrupt_json_primary_falls_back_to_backup(store):
    await store.set_item("k", '{"w1": 1}')
    _write_raw(store.path_for("k"), b'{"w1": 1')

    assert await store.get_item("k") == '{"w1": 1}'


async def test_unreadable_primary_without_backup_raises(store):
    os.makedirs(store.path_for("k"))

    with pytest.raises(PersistenceError) as exc_info:
        await store.get_item("k")

    assert exc_info.value.op == "read"
    assert isinstance(exc_info.value.cause, OSError)


async def test_remove_item_removes_backup_too(store):
    await store.set_item("k", '"v"')
    await store.remove_item("k")
    await store.remove_item("k")

    assert await store.get_item("k") is None
    assert os.listdir(store.data_dir) == []


async def test_multi_remove(store):
    for key in ("a", "b", "c"):
        await store.set_item(key, f'"{key}"')

    await store.multi_remove(["a", "b", "missing"])

    assert await store.get_item("a") is None
    assert await store.get_item("b") is None
    assert await store.get_item("c") == '"c"'


async def test_unicode_round_trip(store):
    await store.set_item("k", '{"title": "여신강림"}')
    assert await store.get_item("k") == '{"title": "여신강림"}'


def test_path_for_sanitizes_keys(tmp_path):
    store = FileKeyValueStore(str(tmp_path))
    assert store.path_for("@webtoon/progress") == os.path.join(str(tmp_path), "_webtoon_progress.json")
    assert store.path_for("..") == os.path.join(str(tmp_path), "_.json")


async def test_write_failure_raises_persistence_error(store):
    os.makedirs(store.path_for("k"))

    with pytest.raises(PersistenceError) as exc_info:
        await store.set_item("k", '"v"')

    assert exc_info.value.key == "k"
    assert exc_info.value.op == "write"
    assert isinstance(exc_info.value.cause, OSError)


def test_sync_helpers(tmp_path):
    p = str(tmp_path / "nested" / "blob.json")
    assert read_text(p) is None
    write_text_sync(p, '"hello"')
    assert read_text(p) == '"hello"'


# ============================================
# Stores on top of the file substrate
# ============================================


class TestProgressOnDisk:
    async def test_undecodable_file_reads_as_empty(self, store, clock):
        _write_raw(store.path_for(PROGRESS_KEY), b'{"w1": \xff\xfe}')

        progress = ProgressStore(store, clock=clock)

        assert await progress.get_all() == {}
        assert await progress.update("w1", 2) is True
        assert (await progress.get("w1")).last_episode == 2

    async def test_corrupt_file_recovers_saved_progress(self, store, clock):
        progress = ProgressStore(store, clock=clock)
        await progress.update("w1", 3)
        await progress.update("w2", 5)
        _write_raw(store.path_for(PROGRESS_KEY), b'{"w1": {"itemId": "w1", "lastEp')

        assert {k: r.last_episode for k, r in (await progress.get_all()).items()} == {"w1": 3, "w2": 5}

        await progress.update("w3", 1)

        assert set(await progress.get_all()) == {"w1", "w2", "w3"}
