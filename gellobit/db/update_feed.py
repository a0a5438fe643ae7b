from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Optional

import yaml
from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from gellobit.db.models import OPPORTUNITY_TYPES, FeedSource
from gellobit.utils.dates import as_utc, utcnow

logger = logging.getLogger(__name__)

CRON_INTERVALS = {
    "every_5_minutes": timedelta(minutes=5),
    "every_15_minutes": timedelta(minutes=15),
    "every_30_minutes": timedelta(minutes=30),
    "hourly": timedelta(hours=1),
    "every_2_hours": timedelta(hours=2),
    "every_6_hours": timedelta(hours=6),
    "every_12_hours": timedelta(hours=12),
    "daily": timedelta(days=1),
}
# a run that lands slightly early still counts
DUE_BUFFER = timedelta(minutes=1)


def is_due(feed: FeedSource, now: Optional[datetime] = None) -> bool:
    last = as_utc(feed.last_fetched)
    if last is None:
        return True
    now = now or utcnow()
    interval = CRON_INTERVALS.get(feed.cron_interval, CRON_INTERVALS["hourly"])
    return now - last >= interval - DUE_BUFFER


def claim_feed(db: Session, feed_id: int, lock_ttl_seconds: int) -> Optional[datetime]:
    """Move the feed idle -> fetching in one conditional UPDATE.

    A claim older than lock_ttl_seconds is treated as abandoned. Returns the
    claim time, which the later writes of the run match on, or None.
    """
    now = utcnow()
    stale_before = now - timedelta(seconds=lock_ttl_seconds)
    result = db.execute(
        update(FeedSource)
        .where(FeedSource.id == feed_id)
        .where(
            or_(
                FeedSource.processing_status == "idle",
                FeedSource.processing_started_at.is_(None),
                FeedSource.processing_started_at < stale_before,
            )
        )
        .values(processing_status="fetching", processing_started_at=now)
        .execution_options(synchronize_session=False)
    )
    return now if (result.rowcount or 0) == 1 else None


def _owned(feed_id: int, claimed_at: Optional[datetime]):
    stmt = update(FeedSource).where(FeedSource.id == feed_id)
    if claimed_at is not None:
        stmt = stmt.where(FeedSource.processing_started_at == claimed_at)
    return stmt.execution_options(synchronize_session=False)


def refresh_claim(db: Session, feed_id: int, claimed_at: datetime) -> Optional[datetime]:
    """Move the claim time forward; None when another run has taken the feed over."""
    now = utcnow()
    result = db.execute(_owned(feed_id, claimed_at).values(processing_started_at=now))
    return now if (result.rowcount or 0) == 1 else None


def set_processing_status(db: Session, feed_id: int, status: str, claimed_at: Optional[datetime] = None) -> bool:
    values = {"processing_status": status}
    if status == "idle":
        values["processing_started_at"] = None
    return (db.execute(_owned(feed_id, claimed_at).values(**values)).rowcount or 0) > 0


def record_fetch_failure(
    db: Session, feed_id: int, message: str, max_errors: int, claimed_at: Optional[datetime] = None
) -> bool:
    """Bump the consecutive error count; returns True when the feed was flipped to error."""
    bumped = db.execute(
        _owned(feed_id, claimed_at).values(
            error_count=FeedSource.error_count + 1,
            last_error=message[:2000],
            processing_status="idle",
            processing_started_at=None,
        )
    ).rowcount or 0
    if not bumped:
        return False
    flipped = db.execute(
        update(FeedSource)
        .where(and_(FeedSource.id == feed_id, FeedSource.error_count >= max_errors, FeedSource.status == "active"))
        .values(status="error")
        .execution_options(synchronize_session=False)
    ).rowcount or 0
    return bool(flipped)


def finish_run(db: Session, feed_id: int, next_offset: int, claimed_at: Optional[datetime] = None) -> bool:
    """Single write closing a successful run: release the claim, store the cursor, clear errors."""
    result = db.execute(
        _owned(feed_id, claimed_at).values(
            processing_status="idle",
            processing_started_at=None,
            last_fetched=utcnow(),
            error_count=0,
            last_error=None,
            url_list_offset=next_offset,
        )
    )
    return (result.rowcount or 0) > 0


def increment_counters(db: Session, feed_id: int, processed: int = 0, published: int = 0) -> None:
    db.execute(
        update(FeedSource)
        .where(FeedSource.id == feed_id)
        .values(
            total_processed=FeedSource.total_processed + processed,
            total_published=FeedSource.total_published + published,
        )
        .execution_options(synchronize_session=False)
    )


def reactivate_feed(db: Session, feed_id: int) -> bool:
    """Back to active with a clean error count. Dedup state and counters are untouched."""
    result = db.execute(
        update(FeedSource)
        .where(FeedSource.id == feed_id)
        .values(status="active", error_count=0, last_error=None, processing_status="idle", processing_started_at=None)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) > 0


FEED_FIELDS = {
    "name", "opportunity_type", "output_type", "status", "enable_scraping", "enable_ai_processing",
    "auto_publish", "ai_provider", "ai_model", "quality_threshold", "priority", "cron_interval",
    "allow_republishing", "fallback_featured_image_url",
}


def import_feeds(db: Session, path: str) -> int:
    """Upsert feeds from a YAML file shaped like {feeds: [{url, name, ...}, ...]}, keyed by url."""
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    count = 0
    for entry in data.get("feeds", []) or []:
        url = (entry.get("url") or "").strip()
        if not url:
            logger.warning("Skipping feed entry without url: %s", entry)
            continue
        values = {k: v for k, v in entry.items() if k in FEED_FIELDS}
        if values.get("opportunity_type", "giveaway") not in OPPORTUNITY_TYPES:
            logger.warning("Skipping feed %s: unknown opportunity_type %r", url, values.get("opportunity_type"))
            continue
        feed = db.execute(select(FeedSource).where(FeedSource.url == url)).scalar_one_or_none()
        if feed is None:
            values.setdefault("name", url)
            db.add(FeedSource(url=url, **values))
        else:
            for key, value in values.items():
                setattr(feed, key, value)
        count += 1
    db.flush()
    logger.info(f"Imported {count} feeds from {path}")
    return count
