#!/usr/bin/env python3
"""
Keyword search over stored articles.

A keyword is a regular expression that must match inside an article's title,
description or author as a whole token: bounded on each side by the start or
end of the text, whitespace, or one of the punctuation delimiters below.
"Foo" matches "Read Foo Bar" but not "Foobartech", and "colou?r" matches both
"Color" and "Colour". Matching is case-insensitive.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Union

from config import get_logger
from entities import Article
from errors import StorageError
from models import DatabaseQueue

logger = get_logger("search")

DELIMITERS = r"""\s.,!?:\-_'"@#$%&()\[\]{}+"""
_BOUNDARY_START = f"(?:^|[{DELIMITERS}])"
_BOUNDARY_END = f"(?:[{DELIMITERS}]|$)"

Bound = Union[datetime, float, int, None]


def _bounded(alternatives: str) -> str:
    return f"{_BOUNDARY_START}(?:{alternatives}){_BOUNDARY_END}"


def build_keyword_pattern(keyword: str) -> str:
    """Embed one keyword (itself a regex) between token delimiters."""
    if not keyword:
        raise ValueError("Keyword must not be empty")
    return _bounded(keyword)


def build_keyword_array_pattern(keywords: Iterable[str]) -> str:
    """Join several keywords into one alternation between token delimiters."""
    keywords = [keyword for keyword in keywords if keyword]
    if not keywords:
        raise ValueError("At least one non-empty keyword is required")
    return _bounded("|".join(keywords))


def to_timestamp(value: Bound) -> Optional[float]:
    """Normalize a date bound to epoch seconds. Naive datetimes are local time."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


@dataclass
class ArticleQuery:
    """Filter, sort and cap for one keyword search. A limit of 0 or None means no limit."""

    pattern: str
    date_from: Bound = None
    date_to: Bound = None
    limit: Optional[int] = None

    async def run(self, db: DatabaseQueue) -> List[Article]:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"Limit must not be negative, got {self.limit}")
        return await db.execute(
            'search_articles',
            pattern=self.pattern,
            date_from=to_timestamp(self.date_from),
            date_to=to_timestamp(self.date_to),
            limit=self.limit or None,
        )


async def _run_query(db: DatabaseQueue, label: str, build, keywords, date_from, date_to, limit) -> List[Article]:
    try:
        query = ArticleQuery(build(keywords), date_from, date_to, limit)
    except ValueError as e:
        logger.warning(f"Skipping search for {label} {keywords!r}: {e}")
        return []

    try:
        articles = await query.run(db)
    except StorageError as e:
        logger.error(f"Failed to search articles for {label} {keywords!r}: {e}")
        return []

    logger.debug(f"{label.capitalize()} {keywords!r} matched {len(articles)} articles")
    return articles


async def search_articles(
    db: DatabaseQueue,
    keyword: str,
    date_from: Bound = None,
    date_to: Bound = None,
    limit: Optional[int] = None,
) -> List[Article]:
    """Articles mentioning `keyword`, newest first, each with its feed title.

    An empty keyword or a keyword that is not a valid regex is logged and
    yields no results.
    """
    return await _run_query(db, "keyword", build_keyword_pattern, keyword, date_from, date_to, limit)


async def search_articles_any(
    db: DatabaseQueue,
    keywords: Iterable[str],
    date_from: Bound = None,
    date_to: Bound = None,
    limit: Optional[int] = None,
) -> List[Article]:
    """Articles mentioning any of `keywords`, newest first, each with its feed title."""
    return await _run_query(db, "keywords", build_keyword_array_pattern, list(keywords), date_from, date_to, limit)
