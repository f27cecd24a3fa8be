#!/usr/bin/env python3
"""
Feed and article records.

Parsed feed documents and stored rows share these dataclasses. Nested values
(image, source, enclosures, categories) are stored as JSON text columns and
converted back on load.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional


@dataclass
class Image:
    title: Optional[str] = None
    url: Optional[str] = None


@dataclass
class Source:
    title: Optional[str] = None
    url: Optional[str] = None


@dataclass
class Enclosure:
    url: Optional[str] = None
    type: Optional[str] = None
    length: Optional[str] = None


@dataclass
class FeedMeta:
    """Feed-level metadata as emitted by the stream parser."""

    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    xml_url: Optional[str] = None
    date: Optional[int] = None
    pub_date: Optional[int] = None
    author: Optional[str] = None
    language: Optional[str] = None
    image: Image = field(default_factory=Image)
    favicon: Optional[str] = None
    copyright: Optional[str] = None
    generator: Optional[str] = None
    categories: List[str] = field(default_factory=list)


@dataclass
class Feed(FeedMeta):
    """A stored feed, keyed by its source URL."""

    url: str = ""
    last_modified: Optional[str] = None

    @classmethod
    def from_meta(cls, url: str, meta: FeedMeta, last_modified: Optional[str]) -> "Feed":
        return cls(url=url, last_modified=last_modified, **_meta_fields(meta))

    def apply_meta(self, meta: FeedMeta, last_modified: Optional[str]) -> None:
        """Overwrite every metadata field and the revalidation token."""
        for name, value in _meta_fields(meta).items():
            setattr(self, name, value)
        self.last_modified = last_modified

    def to_row(self) -> Dict[str, Any]:
        return {
            'url': self.url,
            'title': self.title,
            'description': self.description,
            'link': self.link,
            'xml_url': self.xml_url,
            'date': self.date,
            'pub_date': self.pub_date,
            'author': self.author,
            'language': self.language,
            'image': json.dumps(asdict(self.image)),
            'favicon': self.favicon,
            'copyright': self.copyright,
            'generator': self.generator,
            'categories': json.dumps(self.categories),
            'last_modified': self.last_modified,
        }

    @classmethod
    def from_row(cls, row) -> "Feed":
        return cls(
            url=row['url'],
            title=row['title'],
            description=row['description'],
            link=row['link'],
            xml_url=row['xml_url'],
            date=row['date'],
            pub_date=row['pub_date'],
            author=row['author'],
            language=row['language'],
            image=Image(**_load_json(row['image'], {})),
            favicon=row['favicon'],
            copyright=row['copyright'],
            generator=row['generator'],
            categories=_load_json(row['categories'], []),
            last_modified=row['last_modified'],
        )


@dataclass
class Article:
    """A syndicated item. `feed`, `saved_at` and `feed_title` are only set once stored."""

    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    orig_link: Optional[str] = None
    date: Optional[int] = None
    pub_date: Optional[int] = None
    author: Optional[str] = None
    guid: Optional[str] = None
    comments: Optional[str] = None
    image: Image = field(default_factory=Image)
    categories: List[str] = field(default_factory=list)
    source: Source = field(default_factory=Source)
    enclosures: List[Enclosure] = field(default_factory=list)
    feed: Optional[str] = None
    saved_at: Optional[float] = None
    id: Optional[int] = None
    feed_title: Optional[str] = None

    def apply_content(self, parsed: "Article") -> None:
        """Overwrite the content fields from a freshly parsed article.

        Identity (`id`, `feed`) and the first-seen `saved_at` are never touched.
        """
        for name in CONTENT_FIELDS:
            setattr(self, name, getattr(parsed, name))

    def to_row(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'description': self.description,
            'link': self.link,
            'orig_link': self.orig_link,
            'date': self.date,
            'pub_date': self.pub_date,
            'author': self.author,
            'guid': self.guid,
            'comments': self.comments,
            'image': json.dumps(asdict(self.image)),
            'categories': json.dumps(self.categories),
            'source': json.dumps(asdict(self.source)),
            'enclosures': json.dumps([asdict(e) for e in self.enclosures]),
            'feed': self.feed,
            'saved_at': self.saved_at,
        }

    @classmethod
    def from_row(cls, row) -> "Article":
        keys = row.keys()
        return cls(
            id=row['id'],
            title=row['title'],
            description=row['description'],
            link=row['link'],
            orig_link=row['orig_link'],
            date=row['date'],
            pub_date=row['pub_date'],
            author=row['author'],
            guid=row['guid'],
            comments=row['comments'],
            image=Image(**_load_json(row['image'], {})),
            categories=_load_json(row['categories'], []),
            source=Source(**_load_json(row['source'], {})),
            enclosures=[Enclosure(**e) for e in _load_json(row['enclosures'], [])],
            feed=row['feed'],
            saved_at=row['saved_at'],
            feed_title=row['feed_title'] if 'feed_title' in keys else None,
        )


CONTENT_FIELDS = (
    'title', 'description', 'link', 'orig_link', 'date', 'pub_date', 'author',
    'guid', 'comments', 'image', 'categories', 'source', 'enclosures',
)


def _meta_fields(meta: FeedMeta) -> Dict[str, Any]:
    return {name: getattr(meta, name) for name in FeedMeta.__dataclass_fields__}


def _load_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    loaded = json.loads(value)
    return loaded if loaded is not None else default
