"""
Toonmark — Key-Value Storage

Durable JSON-blob persistence consumed by the stores in stores.py.
One file per key inside the data directory, with atomic writes and a .bak
last-known-good copy.

Rules:
- Writes go to a .tmp file first, then os.replace() onto the target (3x retry)
- Every successful write refreshes <file>.bak
- A primary that is missing, unreadable or not valid JSON falls back to .bak,
  which is then restored
- Blocking file I/O runs in the default executor so the Qt/asyncio loop never stalls
"""

import asyncio
import json
import logging
import os
import re
import shutil
import time
from typing import Iterable, Protocol

from toonmark.errors import PersistenceError

logger = logging.getLogger(__name__)

_RETRIES = 3
_RETRY_DELAY_S = 0.05
_SLOW_WRITE_MS = 10


class KeyValueStore(Protocol):
    """Async get/set/delete of opaque string blobs keyed by string."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, blob: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...

    async def multi_remove(self, keys: Iterable[str]) -> None: ...


# ========== FILE I/O ==========


def _read_blob(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        text = f.read()
    json.loads(text)
    return text


def read_text(p: str) -> str | None:
    """
    Read a JSON blob file. Returns None when neither the file nor a usable .bak exists.
    A primary that is missing, undecodable or not valid JSON falls back to the
    .bak (last-known-good backup), which is then restored. An I/O error on the
    primary with no usable backup is raised.
    """
    bak_path = f"{p}.bak"
    primary_error = None
    try:
        return _read_blob(p)
    except FileNotFoundError:
        if not os.path.exists(bak_path):
            return None
        logger.warning("Primary file missing, restoring from backup: %s", bak_path)
    except ValueError as e:
        # UnicodeDecodeError or JSONDecodeError
        logger.warning("Corrupt %s (%s), trying backup", p, e)
    except OSError as e:
        logger.warning("Cannot read %s (%s), trying backup", p, e)
        primary_error = e

    try:
        bak = _read_blob(bak_path)
    except (OSError, ValueError) as e:
        if primary_error is not None:
            raise primary_error
        if not isinstance(e, FileNotFoundError):
            logger.error("Backup %s is unusable: %s", bak_path, e)
        return None
    try:
        write_text_sync(p, bak)
    except OSError as e:
        logger.error("Backup restore of %s failed: %s", p, e)
    return bak


def write_text_sync(p: str, text: str):
    """
    Synchronous atomic write with retry logic.
    Raises the last OSError once all retries are exhausted.
    """
    start = time.monotonic()
    dir_name = os.path.dirname(p)
    base_name = os.path.basename(p)
    os.makedirs(dir_name, exist_ok=True)

    tmp = os.path.join(dir_name, f".{base_name}.{os.getpid()}.{int(time.time() * 1000)}.tmp")
    bak_path = f"{p}.bak"

    retries = _RETRIES
    while True:
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, p)
            break
        except OSError:
            retries -= 1
            if retries == 0:
                try:
                    os.unlink(tmp)
                except OSError:
                    pass
                raise
            time.sleep(_RETRY_DELAY_S)

    # Update last-known-good backup
    try:
        shutil.copy2(p, bak_path)
    except OSError as e:
        logger.warning("Could not refresh backup %s: %s", bak_path, e)

    duration_ms = (time.monotonic() - start) * 1000
    if duration_ms > _SLOW_WRITE_MS:
        logger.debug("write_text(%s): %.0fms", base_name, duration_ms)


def remove_file_sync(p: str):
    """Remove a blob file and its backup. Missing files are fine."""
    for path in (p, f"{p}.bak"):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass


# ========== STORE ==========


_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileKeyValueStore:
    """KeyValueStore backed by one <key>.json file per key in data_dir. Blobs must be JSON."""

    def __init__(self, data_dir: str):
        self._data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)

    @property
    def data_dir(self) -> str:
        return self._data_dir

    def path_for(self, key: str) -> str:
        """Build the file path for a key. Characters unsafe in file names become '_'."""
        name = _UNSAFE_KEY_CHARS.sub("_", key).lstrip(".") or "_"
        return os.path.join(self._data_dir, f"{name}.json")

    async def _run(self, key: str, op: str, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn, *args)
        except (OSError, ValueError) as e:
            raise PersistenceError(key, op, e) from e

    async def get_item(self, key: str) -> str | None:
        return await self._run(key, "read", read_text, self.path_for(key))

    async def set_item(self, key: str, blob: str) -> None:
        await self._run(key, "write", write_text_sync, self.path_for(key), blob)

    async def remove_item(self, key: str) -> None:
        await self._run(key, "remove", remove_file_sync, self.path_for(key))

    async def multi_remove(self, keys: Iterable[str]) -> None:
        for key in list(keys):
            await self.remove_item(key)
