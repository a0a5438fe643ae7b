from __future__ import annotations
import logging
from typing import List, Optional

import feedparser
import requests

from gellobit.db.deduplication import compute_identity_key
from gellobit.db.models import FeedSource
from gellobit.errors import FetchError
from gellobit.schemas import CandidateItem, FetchResult
from gellobit.scrapers.base_scraper import BaseScraper
from gellobit.utils.dates import from_struct_time
from gellobit.utils.extractors import first_image_src, strip_html
from gellobit.utils.urls import resolve_google_redirect

logger = logging.getLogger(__name__)


def _entry_image(entry) -> Optional[str]:
    for key in ("media_content", "media_thumbnail"):
        for media in entry.get(key) or []:
            url = media.get("url")
            if url and (media.get("medium") in (None, "image") or "image" in (media.get("type") or "")):
                return url
    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]
    for link in entry.get("links") or []:
        if link.get("rel") == "enclosure" and (link.get("type") or "").startswith("image/"):
            return link.get("href")
    return None


def _entry_body(entry) -> str:
    contents = entry.get("content") or []
    if contents and contents[0].get("value"):
        return contents[0]["value"]
    return entry.get("summary") or entry.get("description") or ""


class FeedFetcher(BaseScraper):
    accept = "application/rss+xml, application/atom+xml, application/xml;q=0.9, text/xml;q=0.8, */*;q=0.5"

    def __init__(self, timeout: float = 30, user_agent: str = "", follow_google_redirects: bool = True):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.follow_google_redirects = follow_google_redirects

    def parse(self, feed_id: int, document: bytes) -> List[CandidateItem]:
        parsed = feedparser.parse(document)
        if parsed.bozo and not parsed.entries:
            raise FetchError(f"Feed parse error: {parsed.get('bozo_exception')}")

        items: List[CandidateItem] = []
        seen = set()
        for entry in parsed.entries:
            link = (entry.get("link") or "").strip()
            if link and self.follow_google_redirects:
                link = resolve_google_redirect(link)
            title = strip_html(entry.get("title") or "")
            identity_key = compute_identity_key(link, entry.get("id"))
            if not title or not identity_key:
                logger.debug("Skipping feed entry without title or identity: %r", link)
                continue
            if identity_key in seen:
                continue
            seen.add(identity_key)

            body = _entry_body(entry)
            items.append(CandidateItem(
                source_feed_id=feed_id,
                identity_key=identity_key,
                link=link or identity_key,
                title=title,
                raw_content=body,
                image_url=_entry_image(entry) or first_image_src(body),
                published_at=from_struct_time(entry.get("published_parsed") or entry.get("updated_parsed")),
            ))
        return items

    def scrape(self, feed: FeedSource, offset: int = 0, max_items: int = 10) -> FetchResult:
        """Fetch the feed and return the slice [offset, offset + max_items).

        The offset wraps to 0 once it has walked past the end of the document.
        """
        try:
            response = self._get(feed.url)
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch {feed.url}: {e}") from e

        items = self.parse(feed.id, response.content)
        total = len(items)
        if offset < 0 or offset >= total:
            offset = 0
        window = items[offset: offset + max(0, max_items)]
        logger.info(
            "Fetched %d items from '%s' (offset=%d, emitting=%d)", total, feed.name, offset, len(window),
            extra={"feed_id": feed.id, "event": "feed_fetched"},
        )
        return FetchResult(items=window, total_available=total, offset=offset, next_offset=offset + len(window))
