import itertools
import threading
from abc import ABC, abstractmethod

import requests

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
]
_ua_cycle = itertools.cycle(USER_AGENTS)
_ua_lock = threading.Lock()


def next_user_agent() -> str:
    with _ua_lock:
        return next(_ua_cycle)


class BaseScraper(ABC):
    """Shared HTTP plumbing for the feed fetcher and the page scraper."""

    accept = "*/*"

    def __init__(self, timeout: float = 15, user_agent: str = ""):
        self.timeout = timeout
        self.user_agent = user_agent

    def _headers(self) -> dict:
        return {
            "User-Agent": self.user_agent or next_user_agent(),
            "Accept": self.accept,
            "Accept-Language": "en-US,en;q=0.8",
        }

    def _get(self, url: str, allow_redirects: bool = True) -> requests.Response:
        response = requests.get(url, headers=self._headers(), timeout=self.timeout, allow_redirects=allow_redirects)
        response.raise_for_status()
        return response

    @abstractmethod
    def scrape(self, *args, **kwargs):
        pass
