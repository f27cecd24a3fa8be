#!/usr/bin/env python3
"""
Database models and operations for Feed Sync.

This module contains all database-related classes and functions, providing a
clean separation between data access and the sync/query logic. All access goes
through a single shared sqlite connection owned by `DatabaseQueue`.
"""

from os import path, access, R_OK
from functools import lru_cache
import re
from sqlite3 import connect, Row, Error
from asyncio import Queue, create_task, wait_for, TimeoutError, CancelledError, Event
from uuid import uuid4
from typing import Dict, List, Optional, Any

from config import config, get_logger
from entities import Article, Feed
from errors import StorageError, StorageConnectionError
from telemetry import trace_span

# Module-specific logger
logger = get_logger("models")


def initialize_database(conn) -> None:
    """Initialize the database with the schema from schema.sql if it is new."""
    cursor = conn.cursor()

    try:
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name='feeds'")
        feeds_table_exists = cursor.fetchone() is not None

        if not feeds_table_exists:
            logger.info("Database is new or empty. Initializing schema.")
            schema_sql = _read_schema_file()
            cursor.executescript(schema_sql)
            conn.commit()
            logger.info("Database schema initialized successfully")
        else:
            logger.info("Database already exists with proper schema")
    finally:
        cursor.close()


def _read_schema_file() -> str:
    """Read the schema from the SQL file."""
    schema_path = config.SCHEMA_FILE_PATH

    if not path.isfile(schema_path):
        raise FileNotFoundError(f"Schema file not found at {schema_path}")

    if not access(schema_path, R_OK):
        raise PermissionError(f"No read permission for schema file at {schema_path}")

    file_size = path.getsize(schema_path)
    max_size = config.SCHEMA_FILE_SIZE_LIMIT_MB * 1024 * 1024
    if file_size > max_size:
        raise ValueError(f"Schema file too large: {file_size} bytes (limit: {max_size} bytes)")

    with open(schema_path, 'r') as f:
        return f.read()


@lru_cache(maxsize=128)
def _compile_pattern(pattern: str):
    return re.compile(pattern, re.IGNORECASE)


def _sqlite_regexp(pattern: Optional[str], value: Optional[str]) -> bool:
    """Implementation of `value REGEXP pattern` (case-insensitive search)."""
    if pattern is None or value is None:
        return False
    return _compile_pattern(pattern).search(value) is not None


class DatabaseQueue:
    """A queue for database operations so every caller shares one connection.

    Operations are plain methods on this class, invoked by name through
    `execute()`. Any exception raised inside an operation is logged by the
    worker and re-raised to the caller as `StorageError`.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.queue = Queue()
        self.results: Dict[str, Dict] = {}
        self.events: Dict[str, Event] = {}
        self.conn = None
        self.running = False
        self.worker_task = None

    async def start(self) -> None:
        """Open the database and start the worker.

        Raises:
            StorageConnectionError: if the database cannot be opened or initialized.
        """
        if self.running:
            return

        if path.isfile(self.db_path):
            logger.info(f"Using existing database at {self.db_path}")
        else:
            logger.info(f"Database file {self.db_path} does not exist. A new database will be created.")

        try:
            self.conn = connect(self.db_path)
            self.conn.row_factory = Row
            self.conn.create_function("REGEXP", 2, _sqlite_regexp, deterministic=True)
            initialize_database(self.conn)
        except (Error, OSError, ValueError) as e:
            if self.conn:
                self.conn.close()
                self.conn = None
            raise StorageConnectionError(f"Could not open database {self.db_path}: {e}") from e

        self.running = True
        self.worker_task = create_task(self._worker())
        logger.debug("Database worker started")

    async def stop(self) -> None:
        """Stop the database worker and close the connection."""
        if not self.running:
            return

        self.running = False
        if self.worker_task:
            self.worker_task.cancel()
            try:
                await self.worker_task
            except CancelledError:
                pass
            self.worker_task = None

        if self.conn:
            self.conn.close()
            self.conn = None

        # Release anyone still waiting on an operation
        for event in self.events.values():
            event.set()
        self.events.clear()
        self.results.clear()

        logger.debug("Database worker stopped")

    async def _worker(self) -> None:
        """Worker coroutine processing database operations in arrival order."""
        while self.running:
            try:
                try:
                    operation_id, operation_name, params = await wait_for(self.queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                try:
                    method = getattr(self, operation_name, None)
                    if method is None or operation_name.startswith('_'):
                        self.results[operation_id] = {"error": f"Unknown operation: {operation_name}"}
                    else:
                        self.results[operation_id] = {"result": method(**params)}
                except Exception as e:
                    logger.error(f"Database operation error in {operation_name}: {e}")
                    if self.conn:
                        self.conn.rollback()
                    self.results[operation_id] = {"error": str(e)}
                finally:
                    if operation_id in self.events:
                        self.events[operation_id].set()
                    self.queue.task_done()

            except CancelledError:
                logger.debug("Database worker cancelled")
                break

    @trace_span(
        "db.execute",
        tracer_name="db",
        static_attrs={"db.system": "sqlite"},
        attr_from_args=lambda self, operation_name, **params: {
            "db.operation": operation_name,
        },
    )
    async def execute(self, operation_name: str, **params) -> Any:
        """Execute a database operation and return its result.

        Raises:
            StorageError: if the worker is not running or the operation failed.
        """
        if not self.running:
            raise StorageError("Database worker is not running", operation=operation_name)

        operation_id = str(uuid4())
        event = Event()
        self.events[operation_id] = event

        try:
            await self.queue.put((operation_id, operation_name, params))
            await event.wait()

            result = self.results.pop(operation_id, None)
            if result is None:
                raise StorageError("Database worker stopped before completing the operation", operation=operation_name)
            if "error" in result:
                raise StorageError(result["error"], operation=operation_name)

            return result["result"]
        finally:
            self.events.pop(operation_id, None)

    # Feed Operations
    def get_feed(self, url: str) -> Optional[Feed]:
        """Return the stored feed for a URL, or None."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT * FROM feeds WHERE url = ?", (url,))
            row = cursor.fetchone()
            return Feed.from_row(row) if row else None
        finally:
            cursor.close()

    def count_feeds(self, url: str) -> int:
        """Count feeds stored under a URL (0 or 1 unless the store is corrupt)."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT COUNT(*) FROM feeds WHERE url = ?", (url,))
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()

    def get_feed_last_modified(self, url: str) -> Optional[str]:
        """Get the stored Last-Modified token for a feed."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT last_modified FROM feeds WHERE url = ?", (url,))
            row = cursor.fetchone()
            return row['last_modified'] if row else None
        finally:
            cursor.close()

    def list_feed_urls(self) -> List[str]:
        """List the URLs of all stored feeds."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT url FROM feeds ORDER BY url")
            return [row['url'] for row in cursor.fetchall()]
        finally:
            cursor.close()

    def insert_feed(self, feed: Feed) -> bool:
        """Insert a new feed row."""
        row = feed.to_row()
        columns = ', '.join(row.keys())
        placeholders = ', '.join('?' for _ in row)
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"INSERT INTO feeds ({columns}) VALUES ({placeholders})", tuple(row.values()))
            self.conn.commit()
            return True
        finally:
            cursor.close()

    def update_feed(self, feed: Feed) -> bool:
        """Overwrite all columns of an existing feed row."""
        row = feed.to_row()
        url = row.pop('url')
        assignments = ', '.join(f"{column} = ?" for column in row)
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"UPDATE feeds SET {assignments} WHERE url = ?", tuple(row.values()) + (url,))
            self.conn.commit()
            return cursor.rowcount > 0
        finally:
            cursor.close()

    def delete_feed(self, url: str) -> bool:
        """Delete a feed row. Returns True if a feed was removed."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM feeds WHERE url = ?", (url,))
            self.conn.commit()
            return cursor.rowcount > 0
        finally:
            cursor.close()

    # Article Operations
    def find_article(self, guid: Optional[str], feed: str) -> Optional[Article]:
        """Find the article stored for a (guid, feed) pair."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("SELECT * FROM articles WHERE guid IS ? AND feed = ? LIMIT 1", (guid, feed))
            row = cursor.fetchone()
            return Article.from_row(row) if row else None
        finally:
            cursor.close()

    def insert_article(self, article: Article) -> int:
        """Insert a new article row and return its id."""
        row = article.to_row()
        columns = ', '.join(row.keys())
        placeholders = ', '.join('?' for _ in row)
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"INSERT INTO articles ({columns}) VALUES ({placeholders})", tuple(row.values()))
            self.conn.commit()
            return int(cursor.lastrowid)
        finally:
            cursor.close()

    def update_article(self, article: Article) -> bool:
        """Overwrite the content columns of a stored article (saved_at and feed are kept)."""
        row = article.to_row()
        row.pop('saved_at')
        row.pop('feed')
        assignments = ', '.join(f"{column} = ?" for column in row)
        cursor = self.conn.cursor()
        try:
            cursor.execute(f"UPDATE articles SET {assignments} WHERE id = ?", tuple(row.values()) + (article.id,))
            self.conn.commit()
            return cursor.rowcount > 0
        finally:
            cursor.close()

    def delete_articles_by_feed(self, feed: str) -> int:
        """Delete every article referencing a feed URL."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM articles WHERE feed = ?", (feed,))
            self.conn.commit()
            return cursor.rowcount
        finally:
            cursor.close()

    def delete_articles_older_than(self, cutoff: float) -> int:
        """Delete articles first saved strictly before `cutoff` (epoch seconds)."""
        cursor = self.conn.cursor()
        try:
            cursor.execute("DELETE FROM articles WHERE saved_at < ?", (cutoff,))
            self.conn.commit()
            return cursor.rowcount
        finally:
            cursor.close()

    def count_articles(self, feed: Optional[str] = None) -> int:
        """Return the number of stored articles, optionally for one feed."""
        cursor = self.conn.cursor()
        try:
            if feed is None:
                cursor.execute("SELECT COUNT(*) FROM articles")
            else:
                cursor.execute("SELECT COUNT(*) FROM articles WHERE feed = ?", (feed,))
            return int(cursor.fetchone()[0])
        finally:
            cursor.close()

    def search_articles(
        self,
        pattern: str,
        date_from: Optional[float] = None,
        date_to: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[Article]:
        """Articles whose title, description or author match `pattern`.

        Results are newest-first by saved_at and carry the owning feed's title.
        A limit of 0 or None returns every match.
        """
        query = (
            "SELECT a.*, f.title AS feed_title FROM articles a "
            "LEFT JOIN feeds f ON f.url = a.feed "
            "WHERE (a.title REGEXP ? OR a.description REGEXP ? OR a.author REGEXP ?)"
        )
        params: List[Any] = [pattern, pattern, pattern]
        if date_from is not None:
            query += " AND a.saved_at >= ?"
            params.append(date_from)
        if date_to is not None:
            query += " AND a.saved_at <= ?"
            params.append(date_to)
        query += " ORDER BY a.saved_at DESC"
        if limit:
            query += " LIMIT ?"
            params.append(int(limit))

        cursor = self.conn.cursor()
        try:
            cursor.execute(query, params)
            return [Article.from_row(row) for row in cursor.fetchall()]
        finally:
            cursor.close()
