import pytest

import main
from errors import StorageConnectionError, StorageError
from feedstore import FeedStore

FEED_URL = "https://example.com/feed.xml"


@pytest.mark.asyncio
async def test_add_search_remove_round_trip(tmp_path, fake_session, response_factory, rss_builder):
    body = rss_builder({'title': 'Example Feed'}, [
        {'title': 'Read Foo Bar', 'guid': 'foo', 'link': 'https://example.com/foo'},
        {'title': 'Foobartech', 'guid': 'tech', 'link': 'https://example.com/tech'},
    ]).encode()
    fake_session.queue(FEED_URL, response_factory(200, body))
    store = FeedStore(session_factory=lambda: fake_session)
    await store.connect(str(tmp_path / "feeds.db"))
    try:
        report = await store.add_feed(FEED_URL)
        assert report.articles_created == 2

        found = await store.get_articles_by_keyword("Foo")
        assert [a.guid for a in found] == ["foo"]
        assert found[0].feed_title == "Example Feed"

        either = await store.get_articles_by_keyword_array(["foo", "foobartech"])
        assert {a.guid for a in either} == {"foo", "tech"}

        assert await store.remove_feed(FEED_URL) is True
        assert await store.get_articles_by_keyword("Foo") == []
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_scheduled_updates_start_once_and_stop(tmp_path, fake_session):
    store = FeedStore(session_factory=lambda: fake_session)
    await store.connect(str(tmp_path / "feeds.db"))
    try:
        assert store.start_scheduled_updates(60_000) is True
        assert store.start_scheduled_updates(60_000) is False
        assert store.scheduler.interval_seconds == 60
        assert store.stop_scheduled_updates() is True
        assert store.stop_scheduled_updates() is False
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_connect_failure_raises(tmp_path):
    store = FeedStore()

    with pytest.raises(StorageConnectionError):
        await store.connect(str(tmp_path / "missing" / "dir" / "feeds.db"))


@pytest.mark.asyncio
async def test_operations_require_connection():
    with pytest.raises(StorageError):
        await FeedStore().update_all_now()


def test_cli_exits_with_status_one_when_storage_is_unavailable(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        main.main(["--database", str(tmp_path / "missing" / "feeds.db"), "update"])

    assert excinfo.value.code == 1


def test_cli_parses_search_options():
    args = main.build_parser().parse_args(["search", "foo", "bar", "--from", "2025-01-01", "--limit", "5"])

    assert args.keywords == ["foo", "bar"]
    assert args.date_from.year == 2025
    assert args.limit == 5


@pytest.mark.asyncio
async def test_empty_keyword_search_returns_nothing(tmp_path):
    store = FeedStore()
    await store.connect(str(tmp_path / "feeds.db"))
    try:
        assert await store.get_articles_by_keyword("") == []
        assert await store.get_articles_by_keyword_array([]) == []
    finally:
        await store.close()
