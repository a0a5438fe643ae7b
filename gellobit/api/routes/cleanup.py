from typing import Optional
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from gellobit.api.deps import get_db, require_admin, Role
from gellobit.api.schemas import CleanupResult, ExpirationStats, TrimLogsRequest, TrimLogsResponse
from gellobit.db.expiration import cleanup_expired_opportunities, get_expiration_stats
from gellobit.db.settings_store import load_settings
from gellobit.logging_config import trim_processing_logs
from gellobit.utils.storage import get_blob_store

router = APIRouter(prefix="/api/admin", tags=["cleanup"])


@router.post("/cleanup", response_model=CleanupResult)
def run_cleanup(role: Role = Depends(require_admin)):
    return cleanup_expired_opportunities(blob_store=get_blob_store())


@router.get("/cleanup/stats", response_model=ExpirationStats)
def cleanup_stats(role: Role = Depends(require_admin)):
    return get_expiration_stats()


@router.post("/logs/trim", response_model=TrimLogsResponse)
def trim_logs(
    payload: Optional[TrimLogsRequest] = Body(None),
    db: Session = Depends(get_db),
    role: Role = Depends(require_admin),
):
    settings = load_settings(db)
    db.close()
    payload = payload or TrimLogsRequest()
    max_entries = payload.max_entries
    if max_entries is None:
        max_entries = int(settings.get("advanced.log_retention_max_entries", 5000))
    max_age_days = payload.max_age_days or settings.get("advanced.log_retention_days")
    return TrimLogsResponse(deleted=trim_processing_logs(max_entries, max_age_days))
