#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports.
"""

from typing import Optional


class FeedSyncError(Exception):
    """Base class for all feed sync errors."""


class StorageError(FeedSyncError):
    """Raised when a storage operation fails.

    Attributes:
        operation: Name of the storage operation that failed.
    """

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class StorageConnectionError(StorageError):
    """Raised when the database cannot be opened or initialized at startup."""


class FeedParseError(FeedSyncError):
    """Raised when a feed document cannot be parsed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class DuplicateFeedError(FeedSyncError):
    """Raised when more than one stored feed shares the same URL."""

    def __init__(self, url: str, count: int):
        super().__init__(f"{count} feeds stored with url {url}")
        self.url = url
        self.count = count

__all__ = [
    "FeedSyncError",
    "StorageError",
    "StorageConnectionError",
    "FeedParseError",
    "DuplicateFeedError",
]
