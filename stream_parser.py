#!/usr/bin/env python3
"""
Feed stream parser.

Wraps a normalized feed payload in a one-shot byte stream, hands it to
feedparser and exposes the result as an ordered sequence of typed events:

    FeedMetaEvent, ArticleEvent*, (EndEvent | ParseErrorEvent)

Articles are translated lazily, one per step of the iterator, so the consumer
reconciles each article as it arrives and can abandon the stream at any point
with `close()`.
"""

import calendar
import io
from dataclasses import dataclass
from hashlib import md5
from typing import Any, Iterator, List, Optional, Union

import feedparser

from config import get_logger
from entities import Article, Enclosure, FeedMeta, Image, Source
from errors import FeedParseError

logger = get_logger("stream_parser")

# Safer parsing options for feedparser
FEEDPARSER_OPTIONS = {
    'sanitize_html': True,
    'resolve_relative_uris': True,
}


@dataclass
class FeedMetaEvent:
    meta: FeedMeta


@dataclass
class ArticleEvent:
    article: Article


@dataclass
class EndEvent:
    pass


@dataclass
class ParseErrorEvent:
    error: FeedParseError


FeedEvent = Union[FeedMetaEvent, ArticleEvent, EndEvent, ParseErrorEvent]


class FeedEventStream:
    """One-shot, cancellable iterator over the events of one feed document."""

    def __init__(self, body: bytes, url: Optional[str] = None) -> None:
        self.url = url
        self._stream = io.BytesIO(body)
        self._consumed = False
        self._closed = False

    def __iter__(self) -> Iterator[FeedEvent]:
        if self._consumed:
            raise RuntimeError("Feed event stream can only be consumed once")
        self._consumed = True
        return self._events()

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Abandon the stream; no further events are produced."""
        self._closed = True
        self._stream.close()

    def _error(self, message: str) -> ParseErrorEvent:
        return ParseErrorEvent(FeedParseError(message, url=self.url))

    def _events(self) -> Iterator[FeedEvent]:
        if self._closed:
            return

        parsed = feedparser.parse(self._stream, **FEEDPARSER_OPTIONS)

        if parsed.get('bozo') and not parsed.get('version'):
            yield self._error(f"Not a recognizable feed: {parsed.get('bozo_exception')}")
            return
        if parsed.get('bozo'):
            logger.warning(f"Feed parsing warning for {self.url}: {parsed.get('bozo_exception')}")

        logger.debug(f"Feed {self.url} parsed as {parsed.get('version') or 'unknown'} format")

        try:
            meta = feed_meta_from_parsed(parsed.get('feed', {}))
        except (AttributeError, TypeError, ValueError) as e:
            yield self._error(f"Invalid feed metadata: {e}")
            return
        yield FeedMetaEvent(meta)

        for index, entry in enumerate(parsed.get('entries', [])):
            if self._closed:
                return
            try:
                article = article_from_entry(entry)
            except (AttributeError, TypeError, ValueError) as e:
                yield self._error(f"Invalid entry #{index}: {e}")
                return
            yield ArticleEvent(article)

        if not self._closed:
            yield EndEvent()


def _get(mapping: Any, key: str) -> Any:
    getter = getattr(mapping, 'get', None)
    return getter(key) if callable(getter) else None


def struct_to_timestamp(value: Any) -> Optional[int]:
    """Convert a feedparser *_parsed value (UTC struct_time) to epoch seconds."""
    if not value:
        return None
    try:
        return int(calendar.timegm(tuple(value)))
    except (OverflowError, ValueError, TypeError):
        return None


def _categories(container: Any) -> List[str]:
    terms = []
    for tag in _get(container, 'tags') or []:
        term = _get(tag, 'term')
        if term:
            terms.append(term)
    return terms


def _self_link(feed: Any) -> Optional[str]:
    for link in _get(feed, 'links') or []:
        if _get(link, 'rel') == 'self':
            return _get(link, 'href')
    return None


def feed_meta_from_parsed(feed: Any) -> FeedMeta:
    """Translate feedparser's `feed` section into FeedMeta."""
    image = _get(feed, 'image') or {}
    return FeedMeta(
        title=_get(feed, 'title'),
        description=_get(feed, 'subtitle') or _get(feed, 'description'),
        link=_get(feed, 'link'),
        xml_url=_self_link(feed),
        date=struct_to_timestamp(_get(feed, 'updated_parsed')),
        pub_date=struct_to_timestamp(_get(feed, 'published_parsed')),
        author=_get(feed, 'author'),
        language=_get(feed, 'language'),
        image=Image(title=_get(image, 'title'), url=_get(image, 'href') or _get(image, 'url')),
        favicon=_get(feed, 'icon'),
        copyright=_get(feed, 'rights'),
        generator=_get(feed, 'generator'),
        categories=_categories(feed),
    )


def extract_description(entry: Any) -> Optional[str]:
    """Full content if present, else the summary/description."""
    for content_item in _get(entry, 'content') or []:
        value = _get(content_item, 'value')
        if value:
            return value
    return _get(entry, 'summary') or _get(entry, 'description')


def get_guid(entry: Any) -> str:
    """Extract or derive a stable GUID for an entry."""
    entry_id = _get(entry, 'id')
    if entry_id:
        return entry_id

    link = _get(entry, 'link')
    if link:
        return md5(link.encode()).hexdigest()

    title = _get(entry, 'title') or ''
    published = _get(entry, 'published') or ''
    if title and published:
        return md5(f"{title}{published}".encode()).hexdigest()

    # Last resort: whatever content the entry carries
    return md5(f"{title}{extract_description(entry) or ''}".encode()).hexdigest()


def _entry_image(entry: Any) -> Image:
    thumbnails = _get(entry, 'media_thumbnail') or []
    if thumbnails:
        return Image(title=None, url=_get(thumbnails[0], 'url'))
    image = _get(entry, 'image') or {}
    return Image(title=_get(image, 'title'), url=_get(image, 'href') or _get(image, 'url'))


def article_from_entry(entry: Any) -> Article:
    """Translate one feedparser entry into an Article (not yet stored)."""
    source = _get(entry, 'source') or {}
    enclosures = [
        Enclosure(
            url=_get(enclosure, 'href') or _get(enclosure, 'url'),
            type=_get(enclosure, 'type'),
            length=str(_get(enclosure, 'length')) if _get(enclosure, 'length') is not None else None,
        )
        for enclosure in _get(entry, 'enclosures') or []
    ]
    return Article(
        title=_get(entry, 'title'),
        description=extract_description(entry),
        link=_get(entry, 'link'),
        orig_link=_get(entry, 'feedburner_origlink'),
        date=struct_to_timestamp(_get(entry, 'updated_parsed')),
        pub_date=struct_to_timestamp(_get(entry, 'published_parsed')),
        author=_get(entry, 'author'),
        guid=get_guid(entry),
        comments=_get(entry, 'comments'),
        image=_entry_image(entry),
        categories=_categories(entry),
        source=Source(title=_get(source, 'title'), url=_get(source, 'href') or _get(source, 'url')),
        enclosures=enclosures,
    )
