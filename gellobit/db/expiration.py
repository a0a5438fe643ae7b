from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from gellobit.db.database import SessionLocal
from gellobit.db.models import DuplicateRecord, Favorite, MediaFile, Opportunity
from gellobit.db.settings_store import Settings, load_settings
from gellobit.schemas import CleanupResult, ExpirationStats
from gellobit.utils.dates import as_utc, utcnow
from gellobit.utils.storage import BlobStore

logger = logging.getLogger(__name__)


def max_age_for(opportunity_type: str, settings: Settings) -> Optional[int]:
    """Age ceiling in days for undated records; None means evergreen.

    Types missing from cleanup.max_age_by_type use cleanup.max_age_days_no_deadline;
    a missing, zero or negative ceiling keeps the record forever.
    """
    by_type: Dict[str, int] = settings.get("cleanup.max_age_by_type", {}) or {}
    value = by_type.get(opportunity_type)
    if value is None:
        value = settings.get("cleanup.max_age_days_no_deadline")
    if value is None or int(value) <= 0:
        return None
    return int(value)


def expiry_reason(opp: Opportunity, now: datetime, days_after_deadline: int, max_age_days: Optional[int]) -> Optional[str]:
    """'deadline_passed', 'max_age_exceeded', 'evergreen' or None (still live)."""
    deadline = as_utc(opp.deadline)
    if deadline is not None:
        if now > deadline + timedelta(days=days_after_deadline):
            return "deadline_passed"
        return None
    if max_age_days is None:
        return "evergreen"
    created_at = as_utc(opp.created_at)
    if created_at is not None and now - created_at > timedelta(days=max_age_days):
        return "max_age_exceeded"
    return None


def _delete_opportunity(opportunity_id: int) -> List[str]:
    """Dependents first: favorites, dedup markers, media rows, then the record. One transaction."""
    with SessionLocal() as db, db.begin():
        media_paths = list(db.execute(
            select(MediaFile.storage_path).where(
                MediaFile.entity_type == "opportunity", MediaFile.entity_id == opportunity_id
            )
        ).scalars())
        db.execute(delete(Favorite).where(Favorite.opportunity_id == opportunity_id))
        db.execute(delete(DuplicateRecord).where(
            DuplicateRecord.entity_type == "opportunity", DuplicateRecord.entity_id == opportunity_id
        ))
        db.execute(delete(MediaFile).where(
            MediaFile.entity_type == "opportunity", MediaFile.entity_id == opportunity_id
        ))
        db.execute(delete(Opportunity).where(Opportunity.id == opportunity_id))
    return media_paths


def cleanup_expired_opportunities(now: Optional[datetime] = None, blob_store: Optional[BlobStore] = None) -> CleanupResult:
    """Delete published opportunities past deadline + grace or past their type's age ceiling.

    Each record is removed in its own transaction; failures land in errors[].
    Blog posts live in another table and are never considered.
    """
    now = now or utcnow()
    result = CleanupResult()

    with SessionLocal() as db:
        settings = load_settings(db)
        rows = db.execute(
            select(Opportunity).where(Opportunity.status == "published").order_by(Opportunity.id)
        ).scalars().all()

    days_after_deadline = int(settings.get("cleanup.days_after_deadline", 7))
    logger.info("Cleanup started: %d published opportunities, grace=%d days", len(rows), days_after_deadline)

    for opp in rows:
        reason = expiry_reason(opp, now, days_after_deadline, max_age_for(opp.opportunity_type, settings))
        if reason is None:
            continue
        if reason == "evergreen":
            result.skipped_evergreen += 1
            continue
        try:
            media_paths = _delete_opportunity(opp.id)
        except SQLAlchemyError as e:
            msg = f"Failed to delete opportunity {opp.id} ({opp.title}): {e}"
            logger.error(msg)
            result.errors.append(msg)
            continue

        result.deleted_count += 1
        result.deleted_by_type[opp.opportunity_type] = result.deleted_by_type.get(opp.opportunity_type, 0) + 1
        logger.info("Deleted opportunity %s '%s' (%s)", opp.id, opp.title, reason)

        if blob_store is not None:
            for path in media_paths:
                try:
                    blob_store.remove(path)
                except Exception as e:
                    result.errors.append(f"Failed to remove media {path} for opportunity {opp.id}: {e}")

    logger.info(
        "Cleanup finished: deleted=%d evergreen=%d errors=%d by_type=%s",
        result.deleted_count, result.skipped_evergreen, len(result.errors), result.deleted_by_type,
    )
    return result


def get_expiration_stats(now: Optional[datetime] = None) -> ExpirationStats:
    now = now or utcnow()
    published = Opportunity.status == "published"
    with SessionLocal() as db:
        def count(*conditions) -> int:
            return db.execute(select(func.count(Opportunity.id)).where(published, *conditions)).scalar_one()

        return ExpirationStats(
            expired_count=count(Opportunity.deadline.isnot(None), Opportunity.deadline < now),
            expiring_in_7_days=count(Opportunity.deadline >= now, Opportunity.deadline < now + timedelta(days=7)),
            expiring_in_30_days=count(Opportunity.deadline >= now, Opportunity.deadline < now + timedelta(days=30)),
            no_deadline_count=count(Opportunity.deadline.is_(None)),
        )
