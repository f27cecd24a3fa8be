#!/usr/bin/env python3
"""
FeedStore: the public face of the feed sync engine.

Wires the database queue, sync engine, scheduler and keyword search behind a
small set of awaitable operations:

    store = FeedStore()
    await store.connect("feeds.db")
    await store.add_feed("https://example.com/feed.xml")
    store.start_scheduled_updates(30 * 60 * 1000)
    articles = await store.get_articles_by_keyword("python", limit=20)
    await store.close()
"""

from typing import Callable, Iterable, List, Optional

from aiohttp import ClientSession

from config import config, get_logger
from entities import Article
from errors import StorageError
from models import DatabaseQueue
from scheduler import FeedScheduler
from search import Bound, search_articles, search_articles_any
from sync import SyncEngine, SyncReport, UpdatePredicate, all_fields_differ

logger = get_logger("feedstore")


class FeedStore:
    def __init__(
        self,
        update_predicate: UpdatePredicate = all_fields_differ,
        session_factory: Callable[[], ClientSession] = ClientSession,
    ) -> None:
        self.update_predicate = update_predicate
        self.session_factory = session_factory
        self.db: Optional[DatabaseQueue] = None
        self.engine: Optional[SyncEngine] = None
        self.scheduler: Optional[FeedScheduler] = None

    async def connect(self, db_path: Optional[str] = None) -> None:
        """Open storage. Raises StorageConnectionError when the database cannot be opened."""
        if self.db is not None:
            logger.warning("FeedStore is already connected")
            return
        db = DatabaseQueue(db_path or config.DATABASE_PATH)
        await db.start()
        self.db = db
        self.engine = SyncEngine(db, update_predicate=self.update_predicate, session_factory=self.session_factory)
        self.scheduler = FeedScheduler(self.update_all_now)
        logger.info(f"Connected to database {db.db_path}")

    def _require_engine(self) -> SyncEngine:
        if self.engine is None:
            raise StorageError("FeedStore is not connected")
        return self.engine

    async def add_feed(self, url: str) -> Optional[SyncReport]:
        return await self._require_engine().add_feed(url)

    async def remove_feed(self, url: str) -> bool:
        return await self._require_engine().remove_feed(url)

    async def remove_articles_older_than(self, days: float) -> int:
        return await self._require_engine().remove_articles_older_than(days)

    async def update_all_now(self) -> List[SyncReport]:
        return await self._require_engine().update_all()

    def start_scheduled_updates(self, interval_ms: int, run_immediately: bool = False) -> bool:
        """Run `update_all_now` every `interval_ms` milliseconds."""
        self._require_engine()
        return self.scheduler.start(interval_ms / 1000, run_immediately=run_immediately)

    def stop_scheduled_updates(self) -> bool:
        if self.scheduler is None:
            return False
        return self.scheduler.stop()

    async def get_articles_by_keyword(
        self,
        keyword: str,
        date_from: Bound = None,
        date_to: Bound = None,
        limit: Optional[int] = None,
    ) -> List[Article]:
        self._require_engine()
        return await search_articles(self.db, keyword, date_from, date_to, limit)

    async def get_articles_by_keyword_array(
        self,
        keywords: Iterable[str],
        date_from: Bound = None,
        date_to: Bound = None,
        limit: Optional[int] = None,
    ) -> List[Article]:
        self._require_engine()
        return await search_articles_any(self.db, keywords, date_from, date_to, limit)

    async def close(self) -> None:
        """Stop the scheduler, let any running pass finish, then close storage."""
        if self.scheduler is not None:
            self.scheduler.stop()
            await self.scheduler.wait_idle()
            self.scheduler = None
        if self.db is not None:
            await self.db.stop()
            self.db = None
        self.engine = None
        logger.info("FeedStore closed")
