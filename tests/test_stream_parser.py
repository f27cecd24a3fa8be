from hashlib import md5

import pytest

from stream_parser import (
    ArticleEvent,
    EndEvent,
    FeedEventStream,
    FeedMetaEvent,
    ParseErrorEvent,
    article_from_entry,
    extract_description,
    get_guid,
)


def test_events_arrive_as_meta_then_articles_then_end(sample_feed):
    events = list(FeedEventStream(sample_feed, url="https://example.com/feed.xml"))

    assert isinstance(events[0], FeedMetaEvent)
    assert [type(e) for e in events[1:-1]] == [ArticleEvent, ArticleEvent]
    assert isinstance(events[-1], EndEvent)
    assert events[0].meta.title == "Example Feed"
    assert [e.article.guid for e in events[1:-1]] == ["post-1", "post-2"]


def test_feed_metadata_fields_are_extracted(rss_builder):
    body = rss_builder(
        {
            'title': 'Metadata Feed',
            'description': 'All the fields',
            'language': 'en-us',
            'copyright': 'CC-BY',
            'generator': 'hand',
            'category': 'tech',
            'self': 'https://example.com/rss',
            'image_url': 'https://example.com/logo.png',
            'image_title': 'Logo',
        },
    ).encode()

    meta = next(iter(FeedEventStream(body))).meta

    assert meta.description == 'All the fields'
    assert meta.language == 'en-us'
    assert meta.copyright == 'CC-BY'
    assert meta.generator == 'hand'
    assert meta.categories == ['tech']
    assert meta.xml_url == 'https://example.com/rss'
    assert meta.image.url == 'https://example.com/logo.png'
    assert meta.image.title == 'Logo'


def test_article_fields_are_extracted(rss_builder):
    body = rss_builder(items=[{
        'title': 'Podcast',
        'link': 'https://example.com/ep/1',
        'guid': 'ep-1',
        'description': 'Episode one',
        'comments': 'https://example.com/ep/1#comments',
        'category': 'audio',
        'pubDate': 'Mon, 06 Jan 2025 10:00:00 +0000',
        'enclosure': {'url': 'https://example.com/ep1.mp3', 'length': 1234, 'type': 'audio/mpeg'},
    }]).encode()

    events = list(FeedEventStream(body))
    article = events[1].article

    assert article.title == 'Podcast'
    assert article.link == 'https://example.com/ep/1'
    assert article.description == 'Episode one'
    assert article.comments == 'https://example.com/ep/1#comments'
    assert article.categories == ['audio']
    assert article.pub_date == 1736157600
    assert len(article.enclosures) == 1
    assert article.enclosures[0].url == 'https://example.com/ep1.mp3'
    assert article.enclosures[0].type == 'audio/mpeg'
    assert article.enclosures[0].length == '1234'
    # Not stored yet
    assert article.feed is None
    assert article.saved_at is None


def test_garbage_yields_single_parse_error():
    events = list(FeedEventStream(b"this is not a feed", url="https://example.com/bad"))

    assert len(events) == 1
    assert isinstance(events[0], ParseErrorEvent)
    assert events[0].error.url == "https://example.com/bad"


def test_stream_can_only_be_consumed_once(sample_feed):
    stream = FeedEventStream(sample_feed)
    list(stream)

    with pytest.raises(RuntimeError):
        iter(stream)


def test_closing_mid_stream_stops_further_events(sample_feed):
    stream = FeedEventStream(sample_feed)
    seen = []
    for event in stream:
        seen.append(event)
        if isinstance(event, ArticleEvent):
            stream.close()

    assert stream.closed
    assert [type(e) for e in seen] == [FeedMetaEvent, ArticleEvent]


def test_guid_falls_back_to_link_hash():
    entry = {'link': 'https://example.com/a', 'title': 'A'}

    assert get_guid(entry) == md5(b'https://example.com/a').hexdigest()


def test_guid_falls_back_to_title_and_published():
    entry = {'title': 'A', 'published': 'Mon, 06 Jan 2025 10:00:00 +0000'}

    assert get_guid(entry) == md5('AMon, 06 Jan 2025 10:00:00 +0000'.encode()).hexdigest()


def test_guid_prefers_entry_id():
    assert get_guid({'id': 'urn:x', 'link': 'https://example.com/a'}) == 'urn:x'


def test_description_prefers_full_content():
    entry = {'content': [{'value': '<p>Full</p>'}], 'summary': 'Short'}

    assert extract_description(entry) == '<p>Full</p>'
    assert extract_description({'summary': 'Short'}) == 'Short'


def test_article_from_plain_entry_defaults():
    article = article_from_entry({'title': 'Bare', 'link': 'https://example.com/bare'})

    assert article.title == 'Bare'
    assert article.enclosures == []
    assert article.categories == []
    assert article.image.url is None
    assert article.source.title is None
