from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gellobit.api.deps import get_db, require_admin, Role
from gellobit.api.schemas import BatchResult, ClearDuplicatesResult, ReactivateResponse, RunResult
from gellobit.db.models import FeedSource
from gellobit import main as pipeline

router = APIRouter(prefix="/api/admin/feeds", tags=["feeds"])


def _ensure_feed(db: Session, feed_id: int) -> FeedSource:
    feed = db.get(FeedSource, feed_id)
    if not feed:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feed not found")
    return feed


@router.post("/process-all", response_model=BatchResult)
def process_all(
    force: bool = Query(True, description="Run every active feed, ignoring its cron cadence."),
    role: Role = Depends(require_admin),
):
    return pipeline.process_all_feeds(force=force)


@router.post("/{feed_id}/process", response_model=RunResult)
def process_one(feed_id: int, db: Session = Depends(get_db), role: Role = Depends(require_admin)):
    _ensure_feed(db, feed_id)
    db.close()
    return pipeline.process_feed(feed_id)


@router.post("/{feed_id}/reactivate", response_model=ReactivateResponse)
def reactivate(feed_id: int, db: Session = Depends(get_db), role: Role = Depends(require_admin)):
    _ensure_feed(db, feed_id)
    db.close()
    return ReactivateResponse(feed_id=feed_id, reactivated=pipeline.reactivate_feed(feed_id))


@router.post("/{feed_id}/clear-duplicates", response_model=ClearDuplicatesResult)
def clear_duplicates(feed_id: int, role: Role = Depends(require_admin)):
    result = pipeline.clear_duplicates(feed_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feed not found")
    return result
