#!/usr/bin/env python3
"""
Small shared helpers for the feed sync engine.
"""

from urllib.parse import urlparse


def validate_url(url: str) -> bool:
    """Validate that a string is an absolute http(s) URL with a host.

    Args:
        url: The URL string to validate

    Returns:
        True if the URL can be fetched as a feed, False otherwise
    """
    if not url or not isinstance(url, str):
        return False

    url = url.strip()
    if not url:
        return False

    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ('http', 'https') and bool(parsed.hostname)
