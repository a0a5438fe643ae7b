import pytest
import requests

from gellobit.errors import FetchError


def _feed(feed_id: int = 1, url: str = "https://feeds.example.com/rss.xml"):
    from gellobit.db.models import FeedSource
    return FeedSource(id=feed_id, name="Test", url=url)


def test_parse_normalizes_and_dedups_entries(rss, fetcher_cls) -> None:
    document = rss([
        {"title": "Win a Laptop", "link": "https://X.com/a?utm_source=rss", "image": "https://img.example.com/a.jpg"},
        {"title": "Win a Laptop (again)", "link": "https://x.com/a"},
        {"title": "", "link": "https://x.com/untitled"},
        {"title": "Guid only", "guid": "tag:example.com,2024:42"},
        {"title": "Alert", "link": "https://www.google.com/url?rct=j&url=https://brand.example.com/promo&ct=ga"},
    ])

    items = fetcher_cls().parse(7, document)

    assert [i.identity_key for i in items] == [
        "https://x.com/a",
        "tag:example.com,2024:42",
        "https://brand.example.com/promo",
    ]
    first = items[0]
    assert first.source_feed_id == 7
    assert first.title == "Win a Laptop"
    assert first.image_url == "https://img.example.com/a.jpg"
    assert "Enter now to win" in first.raw_content
    assert items[2].link == "https://brand.example.com/promo"


def test_scrape_applies_offset_and_cap(rss, fetcher_cls) -> None:
    feed = _feed()
    document = rss([{"title": f"Item {n}", "link": f"https://x.com/{n}"} for n in range(5)])
    fetcher = fetcher_cls({feed.url: document})

    result = fetcher.scrape(feed, offset=1, max_items=2)

    assert [i.title for i in result.items] == ["Item 1", "Item 2"]
    assert (result.total_available, result.offset, result.next_offset) == (5, 1, 3)


def test_scrape_wraps_offset_past_end(rss, fetcher_cls) -> None:
    feed = _feed()
    document = rss([{"title": f"Item {n}", "link": f"https://x.com/{n}"} for n in range(3)])
    result = fetcher_cls({feed.url: document}).scrape(feed, offset=3, max_items=10)

    assert result.offset == 0
    assert len(result.items) == 3
    assert result.next_offset == 3


def test_transport_error_becomes_fetch_error(fetcher_cls) -> None:
    feed = _feed()
    fetcher = fetcher_cls({feed.url: requests.ConnectionError("connection refused")})
    with pytest.raises(FetchError):
        fetcher.scrape(feed)


def test_unparseable_document_is_fetch_error(fetcher_cls) -> None:
    with pytest.raises(FetchError):
        fetcher_cls().parse(1, b"this is not a feed <<<")
