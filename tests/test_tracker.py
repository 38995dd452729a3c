"""Tests for turning browser navigation events into progress."""

import pytest

from toonmark.notifier import StateNotifier
from toonmark.tracker import NavigationTracker

pytestmark = [pytest.mark.anyio, pytest.mark.usefixtures("qapp")]


@pytest.fixture
async def notifier(anyio_backend, qapp, kv, clock):
    notifier = StateNotifier(kv, clock=clock)
    await notifier.refresh()
    return notifier


async def test_episode_page_records_progress(notifier, query_item):
    tracker = NavigationTracker(query_item, notifier)

    episode = await tracker.handle_navigation("https://x.example/view?titleId=1&no=10", True)

    assert episode == 10
    assert tracker.detected_episode == 10
    assert tracker.can_go_back is True
    assert notifier.progress_for("w1").last_episode == 10
    assert (await notifier.progress_store.get("w1")).last_episode == 10


async def test_out_of_scope_navigation_is_ignored(notifier, query_item):
    tracker = NavigationTracker(query_item, notifier)

    assert await tracker.handle_navigation("https://ads.example/click?no=99") is None

    assert tracker.current_url == "https://ads.example/click?no=99"
    assert tracker.detected_episode is None
    assert notifier.progress_for("w1") is None


async def test_list_page_detects_nothing(notifier, query_item):
    tracker = NavigationTracker(query_item, notifier)
    assert await tracker.handle_navigation(query_item.url) is None
    assert notifier.progress_for("w1") is None


async def test_duplicate_events_are_harmless(notifier, kv, query_item):
    tracker = NavigationTracker(query_item, notifier)
    url = "https://x.example/view?no=4"

    await tracker.handle_navigation(url)
    writes = kv.writes
    await tracker.handle_navigation(url)
    await tracker.handle_navigation(url)

    assert kv.writes == writes
    assert notifier.progress_for("w1").last_episode == 4


async def test_going_back_shows_current_but_keeps_highest(notifier, path_item):
    tracker = NavigationTracker(path_item, notifier)
    await tracker.handle_navigation("https://x.example/comic/sample/episode/8")

    await tracker.handle_navigation("https://x.example/comic/sample/episode/3")

    assert tracker.detected_episode == 3
    assert tracker.saved_episode() == 8


async def test_resume_url(notifier, path_item):
    tracker = NavigationTracker(path_item, notifier)
    assert tracker.resume_url() == path_item.url

    await tracker.handle_navigation("https://x.example/comic/sample/episode/5")

    assert tracker.resume_url() == "https://x.example/comic/sample/episode/5"


async def test_oversized_episode_number_is_ignored(notifier, query_item):
    tracker = NavigationTracker(query_item, notifier)

    assert await tracker.handle_navigation("https://x.example/view?no=" + "9" * 5000) is None

    assert tracker.detected_episode is None
    assert notifier.progress_for("w1") is None
