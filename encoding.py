#!/usr/bin/env python3
"""
Character encoding normalization for fetched feed payloads.

Feeds arrive in whatever encoding the origin server chose. Before parsing we
detect the encoding statistically and transcode anything that is not UTF-8,
so the grammar parser always sees UTF-8 bytes. Detection is best-effort: if it
fails, or transcoding fails, the payload is passed through unchanged.
"""

import codecs
import re
from dataclasses import dataclass
from typing import Optional

from charset_normalizer import from_bytes

from config import get_logger

logger = get_logger("encoding")

CANONICAL_ENCODING = "utf-8"

# ASCII is a strict subset of UTF-8 and needs no conversion
_CANONICAL_CODECS = {"utf-8", "ascii"}

_XML_DECLARATION_ENCODING = re.compile(
    rb"""^(\s*<\?xml[^>]*?\bencoding\s*=\s*)(["'])[^"']*\2""",
    re.IGNORECASE,
)


@dataclass
class NormalizedPayload:
    """Result of normalization.

    `converted` is True when a non-UTF-8 encoding was detected and the body was
    transcoded; False when the body was assumed canonical and returned as-is.
    """

    body: bytes
    encoding: Optional[str]
    converted: bool


def detect_encoding(payload: bytes) -> Optional[str]:
    """Return the best-guess codec name for a payload, or None if undetectable."""
    best = from_bytes(payload).best()
    if best is None:
        return None
    return best.encoding


def _codec_name(label: str) -> Optional[str]:
    try:
        return codecs.lookup(label).name
    except LookupError:
        return None


def _rewrite_xml_declaration(body: bytes) -> bytes:
    return _XML_DECLARATION_ENCODING.sub(rb"\g<1>\g<2>utf-8\g<2>", body, count=1)


def normalize_encoding(payload: bytes) -> NormalizedPayload:
    """Transcode a payload to UTF-8 if its detected encoding differs.

    Never raises for detection or transcoding problems; those degrade to
    returning the original bytes with `converted=False`.
    """
    if not payload:
        return NormalizedPayload(payload, None, False)

    label = detect_encoding(payload)
    if not label:
        logger.debug("Could not detect payload encoding; assuming UTF-8")
        return NormalizedPayload(payload, None, False)

    codec = _codec_name(label)
    if codec in _CANONICAL_CODECS:
        return NormalizedPayload(payload, codec, False)
    if codec is None:
        logger.debug(f"Detected unsupported encoding '{label}'; passing payload through")
        return NormalizedPayload(payload, label, False)

    try:
        text = payload.decode(codec)
        body = text.encode(CANONICAL_ENCODING)
    except (UnicodeDecodeError, UnicodeEncodeError) as e:
        logger.debug(f"Transcoding from {codec} failed ({e}); passing payload through")
        return NormalizedPayload(payload, codec, False)

    logger.debug(f"Transcoded payload from {codec} to {CANONICAL_ENCODING}")
    # The document no longer matches an encoding declared in its prolog
    return NormalizedPayload(_rewrite_xml_declaration(body), codec, True)
