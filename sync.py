#!/usr/bin/env python3
"""
Feed synchronization engine.

Runs the per-feed pipeline fetch -> normalize -> parse -> reconcile and
decides, for the feed record and for every article, whether to create,
update or leave the stored row alone.

Change detection goes through an update predicate over (stored, parsed)
value pairs. The default, `all_fields_differ`, only updates a record when
every compared field changed at once; a single changed field is not enough.
`any_field_differs` is the alternative and can be passed to `SyncEngine`.
"""

import json
from asyncio import Semaphore, gather
from dataclasses import asdict, dataclass
from enum import Enum
from time import time
from typing import Any, Callable, Iterable, List, Optional, Tuple

from aiohttp import ClientSession

from config import config, get_logger
from encoding import normalize_encoding
from entities import Article, Feed, FeedMeta
from errors import DuplicateFeedError, StorageError
from fetcher import ConditionalFetcher, FetchOutcome
from models import DatabaseQueue
from stream_parser import ArticleEvent, EndEvent, FeedEventStream, FeedMetaEvent, ParseErrorEvent
from telemetry import trace_span
from utils import validate_url

# Module-specific logger
logger = get_logger("sync")

SECONDS_PER_DAY = 24 * 60 * 60

ComparisonPairs = List[Tuple[Any, Any]]
UpdatePredicate = Callable[[Iterable[Tuple[Any, Any]]], bool]


def all_fields_differ(pairs: Iterable[Tuple[Any, Any]]) -> bool:
    """True only when every (stored, parsed) pair differs."""
    return all(stored != parsed for stored, parsed in pairs)


def any_field_differs(pairs: Iterable[Tuple[Any, Any]]) -> bool:
    """True when at least one (stored, parsed) pair differs."""
    return any(stored != parsed for stored, parsed in pairs)


def _serialized(value: Any) -> str:
    return json.dumps(value)


def feed_comparison_pairs(stored: Feed, meta: FeedMeta, last_modified: Optional[str]) -> ComparisonPairs:
    """(stored, parsed) pairs for every comparable feed field."""
    return [
        (stored.title, meta.title),
        (stored.description, meta.description),
        (stored.link, meta.link),
        (stored.xml_url, meta.xml_url),
        (stored.author, meta.author),
        (stored.language, meta.language),
        (stored.image.title, meta.image.title),
        (stored.image.url, meta.image.url),
        (stored.favicon, meta.favicon),
        (stored.copyright, meta.copyright),
        (stored.generator, meta.generator),
        (_serialized(stored.categories), _serialized(meta.categories)),
        (stored.last_modified, last_modified),
    ]


def article_comparison_pairs(stored: Article, parsed: Article) -> ComparisonPairs:
    """(stored, parsed) pairs for every comparable article field."""
    return [
        (stored.title, parsed.title),
        (stored.description, parsed.description),
        (stored.link, parsed.link),
        (stored.author, parsed.author),
        (stored.guid, parsed.guid),
        (stored.comments, parsed.comments),
        (stored.image.title, parsed.image.title),
        (stored.image.url, parsed.image.url),
        (_serialized(stored.categories), _serialized(parsed.categories)),
        (stored.source.title, parsed.source.title),
        (stored.source.url, parsed.source.url),
        ([e.url for e in stored.enclosures], [e.url for e in parsed.enclosures]),
        ([e.type for e in stored.enclosures], [e.type for e in parsed.enclosures]),
        ([e.length for e in stored.enclosures], [e.length for e in parsed.enclosures]),
    ]


class Reconciliation(Enum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class SyncStatus(Enum):
    SYNCED = "synced"
    NOT_MODIFIED = "not_modified"
    FETCH_FAILED = "fetch_failed"
    PARSE_FAILED = "parse_failed"


@dataclass
class SyncReport:
    """What one pipeline run did to a feed and its articles."""

    url: str
    status: SyncStatus = SyncStatus.SYNCED
    feed: Optional[Reconciliation] = None
    articles_created: int = 0
    articles_updated: int = 0
    articles_unchanged: int = 0
    articles_failed: int = 0
    error: Optional[str] = None

    def count(self, result: Reconciliation) -> None:
        if result is Reconciliation.CREATED:
            self.articles_created += 1
        elif result is Reconciliation.UPDATED:
            self.articles_updated += 1
        elif result is Reconciliation.UNCHANGED:
            self.articles_unchanged += 1
        else:
            self.articles_failed += 1

    def as_dict(self) -> dict:
        data = asdict(self)
        data['status'] = self.status.value
        data['feed'] = self.feed.value if self.feed else None
        return data


class SyncEngine:
    """Fetch, parse and reconcile feeds against the database."""

    def __init__(
        self,
        db: DatabaseQueue,
        fetcher: Optional[ConditionalFetcher] = None,
        update_predicate: UpdatePredicate = all_fields_differ,
        concurrency: int = config.FETCH_CONCURRENCY,
        session_factory: Callable[[], ClientSession] = ClientSession,
    ) -> None:
        self.db = db
        self.fetcher = fetcher or ConditionalFetcher()
        self.update_predicate = update_predicate
        self.concurrency = concurrency
        self.session_factory = session_factory

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    async def reconcile_feed_meta(self, url: str, meta: FeedMeta, last_modified: Optional[str]) -> Reconciliation:
        """Create the feed, or overwrite it when the update predicate holds."""
        try:
            stored = await self.db.execute('get_feed', url=url)
            if stored is None:
                await self.db.execute('insert_feed', feed=Feed.from_meta(url, meta, last_modified))
                logger.debug(f'Added new feed "{url}" to the database.')
                return Reconciliation.CREATED

            if not self.update_predicate(feed_comparison_pairs(stored, meta, last_modified)):
                return Reconciliation.UNCHANGED

            stored.apply_meta(meta, last_modified)
            await self.db.execute('update_feed', feed=stored)
            logger.debug(f'Updated feed "{url}" in the database.')
            return Reconciliation.UPDATED
        except StorageError as e:
            logger.error(f"Failed to save feed meta for {url}: {e}")
            return Reconciliation.FAILED

    async def reconcile_article(self, url: str, parsed: Article) -> Reconciliation:
        """Create the article for (guid, feed), or overwrite it when the update predicate holds."""
        try:
            stored = await self.db.execute('find_article', guid=parsed.guid, feed=url)
            if stored is None:
                parsed.feed = url
                parsed.saved_at = time()
                parsed.id = await self.db.execute('insert_article', article=parsed)
                logger.debug(f'Added new article "{parsed.guid}" to the database.')
                return Reconciliation.CREATED

            if not self.update_predicate(article_comparison_pairs(stored, parsed)):
                return Reconciliation.UNCHANGED

            stored.apply_content(parsed)
            await self.db.execute('update_article', article=stored)
            logger.debug(f'Updated article "{stored.guid}" in the database.')
            return Reconciliation.UPDATED
        except StorageError as e:
            logger.error(f"Failed to save article {parsed.guid} of {url}: {e}")
            return Reconciliation.FAILED

    async def consume_stream(self, url: str, stream: FeedEventStream, last_modified: Optional[str], report: SyncReport) -> SyncReport:
        """Drive a feed event stream to completion, reconciling each event as it arrives."""
        try:
            for event in stream:
                if isinstance(event, FeedMetaEvent):
                    report.feed = await self.reconcile_feed_meta(url, event.meta, last_modified)
                elif isinstance(event, ArticleEvent):
                    report.count(await self.reconcile_article(url, event.article))
                elif isinstance(event, ParseErrorEvent):
                    logger.error(f"Could not parse feed at {url}. {event.error}")
                    report.status = SyncStatus.PARSE_FAILED
                    report.error = str(event.error)
                    break
                elif isinstance(event, EndEvent):
                    break
        finally:
            stream.close()
        return report

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    @trace_span(
        "sync_feed",
        tracer_name="sync",
        attr_from_args=lambda self, url, session=None: {"feed.url": url},
    )
    async def sync_feed(self, url: str, session: Optional[ClientSession] = None) -> SyncReport:
        """Run fetch -> normalize -> parse -> reconcile for one feed URL.

        Args:
            url: Feed URL, also the feed's storage key.
            session: Shared HTTP session; a private one is opened when omitted.
        """
        if session is None:
            async with self.session_factory() as own_session:
                return await self._sync_feed(url, own_session)
        return await self._sync_feed(url, session)

    async def _sync_feed(self, url: str, session: ClientSession) -> SyncReport:
        report = SyncReport(url=url)

        stored_token = None
        try:
            stored_token = await self.db.execute('get_feed_last_modified', url=url)
        except StorageError as e:
            # Fall through to an unconditional request
            logger.error(f"Failed to get Last-Modified for {url} from the database: {e}")

        result = await self.fetcher.fetch(url, stored_token, session)
        if result.outcome is FetchOutcome.NOT_MODIFIED:
            report.status = SyncStatus.NOT_MODIFIED
            return report
        if result.outcome is not FetchOutcome.MODIFIED:
            report.status = SyncStatus.FETCH_FAILED
            report.error = result.error
            return report

        normalized = normalize_encoding(result.body or b"")
        stream = FeedEventStream(normalized.body, url=url)
        await self.consume_stream(url, stream, result.last_modified, report)

        logger.info(
            "%s: status=%s feed=%s created=%d updated=%d unchanged=%d failed=%d",
            url,
            report.status.value,
            report.feed.value if report.feed else "none",
            report.articles_created,
            report.articles_updated,
            report.articles_unchanged,
            report.articles_failed,
        )
        return report

    @trace_span("update_all", tracer_name="sync")
    async def update_all(self) -> List[SyncReport]:
        """One pass over every stored feed. One feed's failure never aborts the others."""
        try:
            urls = await self.db.execute('list_feed_urls')
        except StorageError as e:
            logger.error(f"Failed to get feeds from the database: {e}")
            return []

        if not urls:
            logger.info("No feeds stored; nothing to update")
            return []

        logger.info(f"Updating {len(urls)} feeds")
        semaphore = Semaphore(self.concurrency)

        async with self.session_factory() as session:
            async def sync_with_semaphore(feed_url: str) -> SyncReport:
                async with semaphore:
                    return await self.sync_feed(feed_url, session)

            results = await gather(*(sync_with_semaphore(u) for u in urls), return_exceptions=True)

        reports: List[SyncReport] = []
        for feed_url, result in zip(urls, results):
            if isinstance(result, BaseException):
                logger.error(f"Unexpected error updating {feed_url}: {result!r}")
                reports.append(SyncReport(url=feed_url, status=SyncStatus.FETCH_FAILED, error=str(result)))
            else:
                reports.append(result)
        return reports

    # ------------------------------------------------------------------
    # Feed management
    # ------------------------------------------------------------------
    async def _stored_feed_count(self, url: str) -> int:
        count = await self.db.execute('count_feeds', url=url)
        if count > 1:
            raise DuplicateFeedError(url, count)
        return count

    @trace_span("add_feed", tracer_name="sync", attr_from_args=lambda self, url: {"feed.url": url})
    async def add_feed(self, url: str) -> Optional[SyncReport]:
        """Fetch and store a new feed. Adding a URL that is already stored is a no-op."""
        if not validate_url(url):
            logger.warning(f"Refusing to add invalid feed url {url!r}")
            return None

        try:
            count = await self._stored_feed_count(url)
        except StorageError as e:
            logger.error(f"Failed to check if feed exists in the database: {e}")
            return None
        except DuplicateFeedError as e:
            logger.error(f"Multiple documents with same url exist in the database. This should not happen! ({e})")
            return None

        if count == 1:
            logger.warning(f"Feed {url} already exists in the database. Skipping adding new feed to the storage.")
            return None

        return await self.sync_feed(url)

    @trace_span("remove_feed", tracer_name="sync", attr_from_args=lambda self, url: {"feed.url": url})
    async def remove_feed(self, url: str) -> bool:
        """Delete a feed and every article referencing it. Unknown URLs are a no-op."""
        try:
            removed = await self.db.execute('delete_feed', url=url)
        except StorageError as e:
            logger.error(f"Failed to find feed to be removed: {e}")
            return False

        if not removed:
            logger.warning(f"Feed not found with url {url}. Skipping removing.")
            return False

        try:
            deleted = await self.db.execute('delete_articles_by_feed', feed=url)
            logger.info(f"Removed feed {url} and {deleted} of its articles")
        except StorageError as e:
            logger.error(f"Failed to remove articles of feed {url}: {e}")
        return True

    async def remove_articles_older_than(self, days: float) -> int:
        """Delete articles first saved more than `days` days ago."""
        cutoff = time() - days * SECONDS_PER_DAY
        try:
            deleted = await self.db.execute('delete_articles_older_than', cutoff=cutoff)
        except StorageError as e:
            logger.error(f"Failed to remove articles older than {days} days: {e}")
            return 0
        if deleted:
            logger.info(f"Removed {deleted} articles older than {days} days")
        return deleted
