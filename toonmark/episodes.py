"""
Toonmark — Episode detection

Pure functions over (url, CatalogItem):
  extract_episode()    url -> episode number or None
  in_scope()           does the url belong to the item's host?
  build_episode_url()  (item, episode) -> url to resume reading at

None of them raise. A bad pattern or a malformed URL simply means
"nothing detected" / "out of scope".
"""

import logging
import re
from urllib.parse import urlsplit

from toonmark.catalog import CatalogItem

logger = logging.getLogger(__name__)

_INTEGER = re.compile(r"[+-]?[0-9]+")

# Shapes of episode patterns the builder understands: 'no=(\d+)' and 'episode/(\d+)'
_QUERY_FORM = re.compile(r"(\w+)=\(\\d\+\)")
_PATH_FORM = re.compile(r"(\w+)/\(\\d\+\)")


def extract_episode(url: str, item: CatalogItem) -> int | None:
    """Return the positive episode number captured by item.episode_pattern, or None."""
    try:
        match = re.search(item.episode_pattern, url)
    except (re.error, TypeError) as e:
        logger.debug("Episode pattern for %s unusable: %s", item.id, e)
        return None
    if not match or match.re.groups < 1:
        return None

    captured = match.group(1)
    if not captured or not _INTEGER.fullmatch(captured):
        return None
    try:
        episode = int(captured, 10)
    except ValueError:
        # digit runs past sys.get_int_max_str_digits()
        return None
    return episode if episode > 0 else None


def _host(url: str) -> str:
    return urlsplit(url).hostname or ""


def in_scope(url: str, item: CatalogItem) -> bool:
    """True when url's host is exactly item.url's host. Fails closed."""
    try:
        current = _host(url)
        base = _host(item.url)
    except (ValueError, TypeError, AttributeError):
        return False
    return bool(current) and current == base


def build_episode_url(item: CatalogItem, episode: int) -> str:
    """Best-effort URL for an episode; falls back to item.url."""
    base = item.url
    if episode < 1:
        return base

    query = _QUERY_FORM.search(item.episode_pattern)
    if query:
        separator = "&" if "?" in base else "?"
        return f"{base}{separator}{query.group(1)}={episode}"

    path = _PATH_FORM.search(item.episode_pattern)
    if path:
        return f"{base.rstrip('/')}/{path.group(1)}/{episode}"

    return base
