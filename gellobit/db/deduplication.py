from __future__ import annotations
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from gellobit.db.models import BlogPost, DuplicateRecord, FeedSource, Opportunity
from gellobit.schemas import ClearDuplicatesResult
from gellobit.utils.urls import normalize_url


def compute_identity_key(link: Optional[str], guid: Optional[str] = None) -> Optional[str]:
    """Canonical item URL, or the feed-provided id when the item has no usable link."""
    for candidate in (link, guid):
        if not candidate or not candidate.strip():
            continue
        candidate = candidate.strip()
        if candidate.lower().startswith(("http://", "https://")):
            try:
                return normalize_url(candidate)
            except ValueError:
                continue
        return candidate
    return None


def is_duplicate(
    db: Session,
    feed_id: int,
    identity_key: str,
    cross_feed: bool = False,
    allow_republishing: bool = False,
) -> bool:
    if allow_republishing:
        return False
    stmt = select(DuplicateRecord.id).where(DuplicateRecord.identity_key == identity_key)
    if not cross_feed:
        stmt = stmt.where(DuplicateRecord.feed_id == feed_id)
    return db.execute(stmt.limit(1)).first() is not None


def record_duplicate(
    db: Session,
    feed_id: int,
    identity_key: str,
    entity_id: Optional[int],
    entity_type: str = "opportunity",
    title: Optional[str] = None,
    allow_repeat: bool = False,
) -> DuplicateRecord:
    """Add the marker to the caller's transaction; the caller commits or rolls back."""
    row = DuplicateRecord(
        feed_id=feed_id,
        identity_key=identity_key,
        entity_id=entity_id,
        entity_type=entity_type,
        title=(title or "")[:255] or None,
        allow_repeat=allow_repeat,
    )
    db.add(row)
    db.flush()
    return row


def clear_duplicates(db: Session, feed_id: int) -> Optional[ClearDuplicatesResult]:
    """Forget every identity key seen for a feed and rewind its counters.

    Rows are matched by feed_id and also by entity_id, since records whose feed
    was deleted or reassigned keep only the entity link.
    """
    feed = db.get(FeedSource, feed_id)
    if feed is None:
        return None

    opportunity_ids = select(Opportunity.id).where(Opportunity.source_feed_id == feed_id)
    post_ids = select(BlogPost.id).where(BlogPost.source_feed_id == feed_id)

    by_feed = db.execute(
        delete(DuplicateRecord).where(DuplicateRecord.feed_id == feed_id)
    ).rowcount or 0
    by_entity = db.execute(
        delete(DuplicateRecord).where(
            or_(
                and_(DuplicateRecord.entity_type == "opportunity", DuplicateRecord.entity_id.in_(opportunity_ids)),
                and_(DuplicateRecord.entity_type == "post", DuplicateRecord.entity_id.in_(post_ids)),
            )
        ).execution_options(synchronize_session=False)
    ).rowcount or 0

    db.execute(
        update(FeedSource)
        .where(FeedSource.id == feed_id)
        .values(total_processed=0, total_published=0, url_list_offset=0)
    )
    return ClearDuplicatesResult(entities_cleared=by_feed + by_entity, offset_reset=True)
