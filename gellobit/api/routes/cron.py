import logging
from fastapi import APIRouter, Depends

from gellobit.api.deps import require_cron_secret
from gellobit.api.schemas import BatchResult, CleanupResult
from gellobit.db.expiration import cleanup_expired_opportunities
from gellobit.main import process_all_feeds
from gellobit.utils.storage import get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


@router.post("/process-feeds", response_model=BatchResult)
def cron_process_feeds():
    logger.info("Cron trigger: process-feeds")
    return process_all_feeds(force=False)


@router.post("/cleanup", response_model=CleanupResult)
def cron_cleanup():
    logger.info("Cron trigger: cleanup")
    return cleanup_expired_opportunities(blob_store=get_blob_store())
