"""Shared fixtures: a throwaway SQLite database and fake network collaborators."""

import json
import uuid
from types import SimpleNamespace
from typing import Callable, Iterable, List, Optional
from xml.sax.saxutils import escape

import pytest

from gellobit.db import init_db, SessionLocal, session_scope
from gellobit.db.database import reset_engine
from gellobit.db.models import FeedSource
from gellobit.scrapers.feed_fetcher import FeedFetcher


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'gellobit.db'}")
    monkeypatch.setenv("NOTIFICATIONS_ENABLED", "false")
    monkeypatch.setenv("LLM_PROVIDER", "ollama")
    monkeypatch.setenv("LLM_MODEL", "test-model")
    monkeypatch.delenv("LLM_API_KEY", raising=False)
    monkeypatch.delenv("STORAGE_URL", raising=False)
    reset_engine()
    init_db()
    yield
    reset_engine()


def build_rss(items: Iterable[dict]) -> bytes:
    parts = []
    for item in items:
        extra = ""
        if item.get("guid"):
            extra += f"<guid isPermaLink=\"false\">{escape(item['guid'])}</guid>"
        if item.get("image"):
            extra += f"<enclosure url=\"{escape(item['image'])}\" type=\"image/jpeg\" length=\"1000\"/>"
        link = f"<link>{escape(item['link'])}</link>" if item.get("link") else ""
        parts.append(
            f"<item><title>{escape(item.get('title', ''))}</title>{link}"
            f"<description>{escape(item.get('description', 'Enter now to win.'))}</description>{extra}</item>"
        )
    return (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>"
        "<rss version=\"2.0\"><channel><title>Test</title><link>https://feeds.example.com</link>"
        "<description>Test feed</description>" + "".join(parts) + "</channel></rss>"
    ).encode("utf-8")


class StaticFeedFetcher(FeedFetcher):
    """Real parsing and pagination over canned documents keyed by feed url."""

    def __init__(self, documents: Optional[dict] = None, default: Optional[bytes] = None):
        super().__init__()
        self.documents = documents or {}
        self.default = default
        self.requested: List[str] = []

    def _get(self, url):
        self.requested.append(url)
        document = self.documents.get(url, self.default)
        if isinstance(document, Exception):
            raise document
        return SimpleNamespace(content=document, headers={}, url=url)


class FakeLLM:
    """Stands in for an LLMClient; `reply` is a dict, a raw string, an exception or a callable."""

    def __init__(self, reply):
        self.reply = reply
        self.calls: List[tuple] = []

    def complete(self, system_prompt: str, user_prompt: str, model: Optional[str] = None) -> str:
        self.calls.append((system_prompt, user_prompt, model))
        reply = self.reply(user_prompt) if callable(self.reply) else self.reply
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


def accepted(title: str = "Win a Laptop", confidence: float = 0.75, **fields) -> dict:
    verdict = {
        "valid": True,
        "title": title,
        "excerpt": "Enter for a chance to win a brand new laptop.",
        "content": "<p>A laptop giveaway open to US residents.</p>",
        "deadline": None,
        "prize_value": "$1,200",
        "requirements": "18+",
        "location": "United States",
        "confidence_score": confidence,
    }
    verdict.update(fields)
    return verdict


@pytest.fixture
def rss() -> Callable[[Iterable[dict]], bytes]:
    return build_rss


@pytest.fixture
def fetcher_cls():
    return StaticFeedFetcher


@pytest.fixture
def fake_llm():
    return FakeLLM


@pytest.fixture
def verdict():
    return accepted


@pytest.fixture
def make_feed():
    def _make(**overrides) -> int:
        values = dict(
            name="Test feed",
            url=f"https://feeds.example.com/{uuid.uuid4().hex}.xml",
            opportunity_type="giveaway",
            enable_scraping=False,
            enable_ai_processing=True,
            auto_publish=True,
            quality_threshold=0.6,
        )
        values.update(overrides)
        with session_scope() as db:
            feed = FeedSource(**values)
            db.add(feed)
            db.flush()
            return feed.id
    return _make


@pytest.fixture
def load_feed():
    def _load(feed_id: int) -> FeedSource:
        with SessionLocal() as db:
            return db.get(FeedSource, feed_id)
    return _load
