"""
Toonmark — Catalog

Static registry of trackable webtoons. Each item carries the regular
expression used to pull an episode number out of a reader URL.

Patterns are validated once, when the catalog is built; everything that uses
them later (episodes.py) can then fail soft.
"""

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator

from toonmark.errors import CatalogError, PatternError

logger = logging.getLogger(__name__)


class Platform(str, Enum):
    NAVER = "naver"
    KAKAO = "kakao"
    LEZHIN = "lezhin"


# Display names and accent colours for the shell
PLATFORM_CONFIG = {
    Platform.NAVER: {"name": "Naver", "color": "#00C73C"},
    Platform.KAKAO: {"name": "Kakao", "color": "#FFCD00"},
    Platform.LEZHIN: {"name": "Lezhin", "color": "#FF5B5B"},
}


@dataclass(frozen=True)
class CatalogItem:
    id: str
    title: str
    platform: Platform
    thumbnail: str
    url: str
    episode_pattern: str

    @classmethod
    def from_dict(cls, raw: dict) -> "CatalogItem":
        """Build an item from its JSON form (camelCase keys)."""
        try:
            return cls(
                id=str(raw["id"]),
                title=str(raw["title"]),
                platform=Platform(raw["platform"]),
                thumbnail=str(raw.get("thumbnail", "")),
                url=str(raw["url"]),
                episode_pattern=str(raw["episodePattern"]),
            )
        except KeyError as e:
            raise CatalogError(f"catalog entry is missing {e.args[0]!r}: {raw!r}") from e
        except ValueError as e:
            raise CatalogError(f"catalog entry {raw.get('id')!r}: {e}") from e


def validate_pattern(item: CatalogItem):
    """Raise PatternError unless the item's pattern compiles with a capture group."""
    try:
        compiled = re.compile(item.episode_pattern)
    except re.error as e:
        raise PatternError(item.id, item.episode_pattern, str(e)) from e
    if compiled.groups < 1:
        raise PatternError(item.id, item.episode_pattern, "no capture group")


class Catalog:
    """Immutable, ordered collection of CatalogItems keyed by id."""

    def __init__(self, items: Iterable[CatalogItem]):
        by_id: dict[str, CatalogItem] = {}
        for item in items:
            if item.id in by_id:
                raise CatalogError(f"duplicate catalog id {item.id!r}")
            validate_pattern(item)
            by_id[item.id] = item
        self._items = by_id

    def __iter__(self) -> Iterator[CatalogItem]:
        return iter(self._items.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._items

    def get(self, item_id: str) -> CatalogItem | None:
        return self._items.get(item_id)

    def search(self, query: str = "", platform: Platform | str | None = None) -> list[CatalogItem]:
        """Case-insensitive title match, optionally limited to one platform."""
        q = (query or "").strip().lower()
        if platform is not None:
            platform = Platform(platform)
        out = []
        for item in self._items.values():
            if platform is not None and item.platform != platform:
                continue
            if q and q not in item.title.lower():
                continue
            out.append(item)
        return out


# ---------------------------------------------------------------------------
# Built-in sample catalog
# ---------------------------------------------------------------------------

DEFAULT_ITEMS = (
    CatalogItem(
        id="1",
        title="여신강림",
        platform=Platform.NAVER,
        thumbnail="https://shared-comic.pstatic.net/thumb/webtoon/703846/thumbnail/thumbnail_IMAG21_7636374537658391400.jpg",
        url="https://comic.naver.com/webtoon/list?titleId=703846&tab=finish",
        episode_pattern=r"no=(\d+)",
    ),
    CatalogItem(
        id="2",
        title="이태원 클라쓰",
        platform=Platform.KAKAO,
        thumbnail="https://dn-img-page.kakao.com/download/resource?kid=bxPu93/hzLYM4pKVu/S0TkKDaLBZI0UKSUKkhOxK",
        url="https://page.kakao.com/content/49994566",
        episode_pattern=r"episodeId=(\d+)",
    ),
    CatalogItem(
        id="3",
        title="레진코믹스 샘플",
        platform=Platform.LEZHIN,
        thumbnail="https://ccdn.lezhin.com/v2/comics/5953018944438272/images/thumbnail.webp",
        url="https://www.lezhin.com/ko/comic/sample",
        episode_pattern=r"episode/(\d+)",
    ),
)


def default_catalog() -> Catalog:
    return Catalog(DEFAULT_ITEMS)


def load_catalog(path: str | Path) -> Catalog:
    """Load a catalog from a JSON list of items."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except OSError as e:
        raise CatalogError(f"cannot read catalog {path}: {e}") from e
    except ValueError as e:
        raise CatalogError(f"catalog {path} is not valid JSON: {e}") from e

    if not isinstance(raw, list):
        raise CatalogError(f"catalog {path} must be a JSON list")
    for entry in raw:
        if not isinstance(entry, dict):
            raise CatalogError(f"catalog entry is not an object: {entry!r}")

    catalog = Catalog(CatalogItem.from_dict(entry) for entry in raw)
    logger.info("Loaded %d catalog items from %s", len(catalog), path)
    return catalog
