import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from gellobit.db import SessionLocal, session_scope
from gellobit.db.deduplication import clear_duplicates, is_duplicate, record_duplicate
from gellobit.db.models import DuplicateRecord, FeedSource, Opportunity


def test_is_duplicate_scoped_to_feed_unless_cross_feed(make_feed) -> None:
    a = make_feed()
    b = make_feed()
    with session_scope() as db:
        record_duplicate(db, a, "https://x.com/a", entity_id=None)

    with SessionLocal() as db:
        assert is_duplicate(db, a, "https://x.com/a")
        assert not is_duplicate(db, b, "https://x.com/a")
        assert is_duplicate(db, b, "https://x.com/a", cross_feed=True)
        assert not is_duplicate(db, a, "https://x.com/a", allow_republishing=True)
        assert not is_duplicate(db, a, "https://x.com/other")


def test_unique_marker_per_feed_and_key(make_feed) -> None:
    feed_id = make_feed()
    with session_scope() as db:
        record_duplicate(db, feed_id, "https://x.com/a", entity_id=1)

    with pytest.raises(IntegrityError):
        with session_scope() as db:
            record_duplicate(db, feed_id, "https://x.com/a", entity_id=2)


def test_republishing_markers_do_not_collide(make_feed) -> None:
    feed_id = make_feed(allow_republishing=True)
    with session_scope() as db:
        record_duplicate(db, feed_id, "https://x.com/a", entity_id=1, allow_repeat=True)
        record_duplicate(db, feed_id, "https://x.com/a", entity_id=2, allow_repeat=True)

    with SessionLocal() as db:
        assert db.execute(select(func.count(DuplicateRecord.id))).scalar_one() == 2


def test_clear_duplicates_matches_feed_id_and_entity_id(make_feed) -> None:
    feed_id = make_feed()
    other_feed = make_feed()
    with session_scope() as db:
        opp = Opportunity(slug="laptop", title="Laptop", content="<p>x</p>", opportunity_type="giveaway",
                          status="published", source_feed_id=feed_id)
        db.add(opp)
        db.flush()
        record_duplicate(db, feed_id, "https://x.com/a", entity_id=None)
        # orphaned marker that only points at the entity
        db.add(DuplicateRecord(feed_id=None, entity_id=opp.id, entity_type="opportunity", identity_key="https://x.com/b"))
        record_duplicate(db, other_feed, "https://x.com/a", entity_id=None)
        feed = db.get(FeedSource, feed_id)
        feed.total_processed, feed.total_published, feed.url_list_offset = 5, 3, 20

    with session_scope() as db:
        result = clear_duplicates(db, feed_id)

    assert result is not None
    assert result.entities_cleared == 2
    assert result.offset_reset is True
    with SessionLocal() as db:
        remaining = db.execute(select(DuplicateRecord)).scalars().all()
        assert [(r.feed_id, r.identity_key) for r in remaining] == [(other_feed, "https://x.com/a")]
        feed = db.get(FeedSource, feed_id)
        assert (feed.total_processed, feed.total_published, feed.url_list_offset) == (0, 0, 0)


def test_clear_duplicates_unknown_feed() -> None:
    with session_scope() as db:
        assert clear_duplicates(db, 999) is None
