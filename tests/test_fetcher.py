import asyncio

import pytest
from aiohttp import ClientConnectionError

from fetcher import ConditionalFetcher, FetchOutcome, get_last_modified

FEED_URL = "https://example.com/feed.xml"
LAST_MODIFIED = "Wed, 08 Jan 2025 09:00:00 GMT"


@pytest.mark.asyncio
async def test_ok_response_returns_body_and_token(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(200, b"<rss/>", {"Last-Modified": LAST_MODIFIED}))

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.outcome is FetchOutcome.MODIFIED
    assert result.ok
    assert result.body == b"<rss/>"
    assert result.last_modified == LAST_MODIFIED


@pytest.mark.asyncio
async def test_last_modified_header_is_matched_case_insensitively(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(200, b"<rss/>", {"last-modified": LAST_MODIFIED}))

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.last_modified == LAST_MODIFIED


@pytest.mark.asyncio
async def test_missing_last_modified_yields_no_token(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(200, b"<rss/>"))

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.outcome is FetchOutcome.MODIFIED
    assert result.last_modified is None


@pytest.mark.asyncio
async def test_known_token_is_sent_as_if_modified_since(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(304))

    result = await ConditionalFetcher(user_agent="test-agent").fetch(FEED_URL, LAST_MODIFIED, session=fake_session)

    assert result.outcome is FetchOutcome.NOT_MODIFIED
    assert result.body is None
    _, headers = fake_session.calls[0]
    assert headers["If-Modified-Since"] == LAST_MODIFIED
    assert headers["User-Agent"] == "test-agent"


@pytest.mark.asyncio
async def test_no_token_sends_unconditional_request(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(200, b"<rss/>"))

    await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    _, headers = fake_session.calls[0]
    assert "If-Modified-Since" not in headers


@pytest.mark.asyncio
async def test_unexpected_status_is_an_http_error(fake_session, response_factory):
    fake_session.queue(FEED_URL, response_factory(500, b"oops"))

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.outcome is FetchOutcome.HTTP_ERROR
    assert result.status == 500
    assert result.body is None
    assert not result.ok


@pytest.mark.asyncio
async def test_timeout_is_a_transport_error(fake_session):
    fake_session.queue(FEED_URL, asyncio.TimeoutError())

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.outcome is FetchOutcome.TRANSPORT_ERROR
    assert result.error == "Timed out"


@pytest.mark.asyncio
async def test_connection_failure_is_a_transport_error(fake_session):
    fake_session.queue(FEED_URL, ClientConnectionError("refused"))

    result = await ConditionalFetcher().fetch(FEED_URL, session=fake_session)

    assert result.outcome is FetchOutcome.TRANSPORT_ERROR
    assert "ClientConnectionError" in result.error


def test_request_timeout_is_ten_seconds():
    assert ConditionalFetcher().timeout.total == 10


def test_get_last_modified_absent():
    assert get_last_modified({"Content-Type": "application/rss+xml"}) is None
