import os
from typing import Dict, List, Optional

# Keep tests free of tracer providers and instrumentation
os.environ.setdefault("DISABLE_TELEMETRY", "true")

import pytest
import pytest_asyncio

from models import DatabaseQueue


class FakeResponse:
    """Minimal stand-in for aiohttp's ClientResponse used as `async with session.get(...)`."""

    def __init__(self, status: int = 200, body: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    async def read(self) -> bytes:
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Serves queued responses (or raises queued exceptions) per URL and records requests."""

    def __init__(self, routes: Optional[Dict[str, list]] = None):
        self.routes: Dict[str, list] = {url: list(items) for url, items in (routes or {}).items()}
        self.calls: List[tuple] = []
        self.closed = False

    def queue(self, url: str, *items) -> None:
        self.routes.setdefault(url, []).extend(items)

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, dict(headers or {})))
        pending = self.routes.get(url)
        if not pending:
            raise AssertionError(f"Unexpected request to {url}")
        item = pending.pop(0) if len(pending) > 1 else pending[0]
        if isinstance(item, BaseException):
            raise item
        return item

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed = True
        return False


def build_rss(channel: Optional[dict] = None, items: Optional[list] = None, encoding: str = "utf-8") -> str:
    """Render a small RSS 2.0 document from plain dicts."""
    channel = channel or {}
    parts = [
        f'<?xml version="1.0" encoding="{encoding}"?>',
        '<rss version="2.0" xmlns:atom="http://www.w3.org/2005/Atom">',
        '<channel>',
        f"<title>{channel.get('title', 'Example Feed')}</title>",
        f"<link>{channel.get('link', 'https://example.com/')}</link>",
        f"<description>{channel.get('description', 'An example feed')}</description>",
    ]
    for tag in ('language', 'copyright', 'generator', 'managingEditor', 'category'):
        if channel.get(tag):
            parts.append(f"<{tag}>{channel[tag]}</{tag}>")
    if channel.get('self'):
        parts.append(f'<atom:link rel="self" type="application/rss+xml" href="{channel["self"]}"/>')
    if channel.get('image_url'):
        parts.append(
            f"<image><url>{channel['image_url']}</url><title>{channel.get('image_title', '')}</title>"
            f"<link>{channel.get('link', 'https://example.com/')}</link></image>"
        )
    for item in items or []:
        parts.append('<item>')
        for tag in ('title', 'link', 'description', 'author', 'comments', 'category', 'pubDate'):
            if item.get(tag):
                parts.append(f"<{tag}>{item[tag]}</{tag}>")
        if item.get('guid'):
            parts.append(f'<guid isPermaLink="false">{item["guid"]}</guid>')
        if item.get('enclosure'):
            enc = item['enclosure']
            parts.append(f'<enclosure url="{enc["url"]}" length="{enc["length"]}" type="{enc["type"]}"/>')
        parts.append('</item>')
    parts.extend(['</channel>', '</rss>'])
    return "\n".join(parts)


SAMPLE_ITEMS = [
    {
        'title': 'First post',
        'link': 'https://example.com/posts/1',
        'guid': 'post-1',
        'description': 'Hello from the first post',
        'pubDate': 'Mon, 06 Jan 2025 10:00:00 +0000',
    },
    {
        'title': 'Second post',
        'link': 'https://example.com/posts/2',
        'guid': 'post-2',
        'description': 'More news',
        'pubDate': 'Tue, 07 Jan 2025 10:00:00 +0000',
    },
]


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def sample_feed() -> bytes:
    return build_rss({'title': 'Example Feed'}, SAMPLE_ITEMS).encode('utf-8')


@pytest.fixture
def rss_builder():
    return build_rss


@pytest.fixture
def response_factory():
    return FakeResponse


@pytest_asyncio.fixture
async def db(tmp_path):
    queue = DatabaseQueue(str(tmp_path / "test.db"))
    await queue.start()
    try:
        yield queue
    finally:
        await queue.stop()
