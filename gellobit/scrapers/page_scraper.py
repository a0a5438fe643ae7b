from __future__ import annotations
import logging
from typing import Optional
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup, Comment

from gellobit.errors import ScrapeFailure
from gellobit.schemas import ScrapedPage
from gellobit.scrapers.base_scraper import BaseScraper
from gellobit.utils.extractors import clean_whitespace
from gellobit.utils.urls import is_public_http_url, resolve_google_redirect

logger = logging.getLogger(__name__)

NOISE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "iframe", "noscript", "form", "svg"]
NOISE_SELECTORS = [
    ".advertisement", ".ads", ".ad", ".adsbygoogle", '[id^="ad-"]',
    ".social-share", ".share-buttons", ".comments", "#comments", ".comment-list",
    ".sidebar", ".related-posts", ".newsletter", ".cookie-banner",
]
SEMANTIC_SELECTORS = [
    "article", "main", "[role=main]",
    ".post-content", ".entry-content", ".article-content", ".article-body", "#content", ".content",
]
MAX_REDIRECTS = 5


def _meta(soup: BeautifulSoup, *names: str) -> str:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return clean_whitespace(tag["content"])
    return ""


class PageScraper(BaseScraper):
    accept = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.5"

    def __init__(
        self,
        timeout: float = 15,
        user_agent: str = "",
        min_content_length: int = 100,
        max_content_length: int = 50000,
        follow_google_redirects: bool = True,
        resolve_hosts: bool = True,
    ):
        super().__init__(timeout=timeout, user_agent=user_agent)
        self.min_content_length = min_content_length
        self.max_content_length = max_content_length
        self.follow_google_redirects = follow_google_redirects
        self.resolve_hosts = resolve_hosts

    def scrape(self, url: str) -> Optional[ScrapedPage]:
        """Fetch and extract a page. Any failure comes back as None."""
        if self.follow_google_redirects:
            url = resolve_google_redirect(url)
        if not is_public_http_url(url, resolve=self.resolve_hosts):
            logger.warning("PageScraper: refusing non-public url %s", url)
            return None

        try:
            response = self._get(url)
        except requests.RequestException as e:
            logger.warning(f"PageScraper: fetch failed for {url}: {e}")
            return None
        except ScrapeFailure as e:
            logger.warning("PageScraper: %s", e)
            return None

        content_type = response.headers.get("Content-Type", "")
        if content_type and "html" not in content_type.lower():
            logger.info(f"PageScraper: skipping non-html content ({content_type}) at {url}")
            return None

        try:
            return self.extract(response.text, base_url=response.url or url)
        except ScrapeFailure as e:
            logger.info("PageScraper: %s at %s", e, url)
            return None
        except Exception as e:
            logger.warning(f"PageScraper: extraction failed for {url}: {e}")
            return None

    def _get(self, url: str) -> requests.Response:
        """Follow redirects one hop at a time; every target must pass the public-address check."""
        for _ in range(MAX_REDIRECTS + 1):
            response = super()._get(url, allow_redirects=False)
            if not response.is_redirect:
                return response
            target = urljoin(url, response.headers.get("Location", ""))
            response.close()
            if not is_public_http_url(target, resolve=self.resolve_hosts):
                raise ScrapeFailure(f"redirect from {url} to non-public url {target}")
            url = target
        raise requests.TooManyRedirects(f"more than {MAX_REDIRECTS} redirects ending at {url}")

    def extract(self, html: str, base_url: str = "") -> ScrapedPage:
        """Raises ScrapeFailure when the page has no usable content."""
        soup = BeautifulSoup(html, "html.parser")

        title = _meta(soup, "og:title", "twitter:title")
        if not title and soup.title and soup.title.string:
            title = clean_whitespace(soup.title.string)
        if not title and soup.h1:
            title = clean_whitespace(soup.h1.get_text(" "))
        description = _meta(soup, "description", "og:description", "twitter:description")
        image = _meta(soup, "og:image", "twitter:image", "twitter:image:src")

        for tag in soup(NOISE_TAGS):
            tag.decompose()
        for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
            comment.extract()
        for selector in NOISE_SELECTORS:
            for tag in soup.select(selector):
                if not tag.decomposed:
                    tag.decompose()

        container = self._semantic_container(soup)
        if container is None:
            container = self._densest_container(soup)
        if container is None:
            raise ScrapeFailure("no content container found")

        text = clean_whitespace(container.get_text(" "))
        if len(text) < self.min_content_length:
            raise ScrapeFailure(f"insufficient content ({len(text)} chars)")

        if not image:
            img = container.find("img", src=True)
            image = img["src"] if img else ""
        if image and base_url:
            image = urljoin(base_url, image)

        return ScrapedPage(
            title=title,
            description=description,
            text=text[: self.max_content_length],
            html=str(container)[: self.max_content_length * 2],
            image=image or None,
        )

    def _semantic_container(self, soup: BeautifulSoup):
        for selector in SEMANTIC_SELECTORS:
            for node in soup.select(selector):
                if len(clean_whitespace(node.get_text(" "))) >= self.min_content_length:
                    return node
        return None

    def _densest_container(self, soup: BeautifulSoup):
        """Element with the most direct <p> children."""
        best, best_count = None, 0
        for node in soup.find_all(["div", "section", "article", "main", "td", "body"]):
            count = len(node.find_all("p", recursive=False))
            if count > best_count:
                best, best_count = node, count
        return best
