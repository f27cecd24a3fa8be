#!/usr/bin/env python3
"""
Conditional feed fetcher.

Issues a single HTTP GET per feed, revalidating with If-Modified-Since when a
Last-Modified token is known, and classifies the response. The fetcher never
touches storage and never retries; the next scheduled pass is the retry.
"""

from asyncio import TimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import List, Mapping, Optional

from aiohttp import ClientSession, ClientError, ClientTimeout

from config import config, get_logger
from telemetry import trace_span

# Module-specific logger
logger = get_logger("fetcher")

# HTTP status codes
HTTP_OK = 200
HTTP_NOT_MODIFIED = 304


class FetchOutcome(Enum):
    MODIFIED = "modified"
    NOT_MODIFIED = "not_modified"
    HTTP_ERROR = "http_error"
    TRANSPORT_ERROR = "transport_error"


@dataclass
class FetchResult:
    """Classified response of one fetch.

    `body` and `last_modified` are only meaningful for MODIFIED results.
    """

    url: str
    outcome: FetchOutcome
    status: Optional[int] = None
    body: Optional[bytes] = None
    last_modified: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome in (FetchOutcome.MODIFIED, FetchOutcome.NOT_MODIFIED)


def get_last_modified(headers: Mapping[str, str]) -> Optional[str]:
    """Case-insensitive lookup of the Last-Modified response header."""
    last_modified = None
    for header_name, value in headers.items():
        if header_name.lower() == 'last-modified':
            last_modified = value
    return last_modified


def format_client_error(error: Exception) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        strerror = getattr(os_error, 'strerror', None)
        if errno is not None:
            parts.append(f"errno={errno}")
        if strerror:
            parts.append(str(strerror))
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class ConditionalFetcher:
    """HTTP GET with Last-Modified revalidation and a fixed 10 s timeout."""

    def __init__(self, timeout_ms: int = config.REQUEST_TIMEOUT_MS, user_agent: str = config.USER_AGENT) -> None:
        self.timeout = ClientTimeout(total=timeout_ms / 1000)
        self.user_agent = user_agent

    def prepare_request_headers(self, last_modified: Optional[str]) -> dict:
        """Build request headers, adding If-Modified-Since when a token is known."""
        headers = {'User-Agent': self.user_agent}
        if last_modified:
            headers['If-Modified-Since'] = last_modified
        return headers

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url, last_modified=None, session=None: {
            "http.url": url,
            "feed.revalidate": bool(last_modified),
        },
    )
    async def fetch(self, url: str, last_modified: Optional[str] = None, session: Optional[ClientSession] = None) -> FetchResult:
        """Fetch a feed once and classify the outcome.

        Args:
            url: Feed URL.
            last_modified: Previously stored Last-Modified token, if any.
            session: Shared client session; a private one is opened when omitted.
        """
        if session is None:
            async with ClientSession() as own_session:
                return await self._fetch(url, last_modified, own_session)
        return await self._fetch(url, last_modified, session)

    async def _fetch(self, url: str, last_modified: Optional[str], session: ClientSession) -> FetchResult:
        headers = self.prepare_request_headers(last_modified)
        if last_modified:
            logger.debug(f"Using If-Modified-Since: {last_modified} for {url}")

        try:
            async with session.get(url, headers=headers, timeout=self.timeout) as response:
                if response.status == HTTP_NOT_MODIFIED:
                    logger.info(f"Feed {url} not modified since last fetch")
                    return FetchResult(url, FetchOutcome.NOT_MODIFIED, status=response.status)

                if response.status != HTTP_OK:
                    logger.warning(
                        f"HTTP status code received that can not be handled for {url}: {response.status}"
                    )
                    return FetchResult(url, FetchOutcome.HTTP_ERROR, status=response.status,
                                       error=f"HTTP {response.status}")

                body = await response.read()
                return FetchResult(
                    url,
                    FetchOutcome.MODIFIED,
                    status=response.status,
                    body=body,
                    last_modified=get_last_modified(response.headers),
                )

        except TimeoutError as e:
            logger.error(f"Timeout fetching {url} after {self.timeout.total}s: {e}")
            return FetchResult(url, FetchOutcome.TRANSPORT_ERROR, error="Timed out")
        except ClientError as e:
            detail = format_client_error(e)
            logger.error(f"Failed to fetch {url}: {detail}")
            return FetchResult(url, FetchOutcome.TRANSPORT_ERROR, error=f"Network error: {detail}")
        except (OSError, ValueError) as e:
            logger.error(f"Unexpected error fetching {url}: {e}")
            return FetchResult(url, FetchOutcome.TRANSPORT_ERROR, error=f"Unexpected error: {e}")
