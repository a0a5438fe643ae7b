from __future__ import annotations
from datetime import datetime, timezone
import logging
import os
from typing import Any, Dict

from redis import Redis
from redis.exceptions import LockError

from gellobit.db import SessionLocal
from gellobit.db.expiration import cleanup_expired_opportunities
from gellobit.db.settings_store import load_settings
from gellobit.logging_config import setup_logging, trim_processing_logs
from gellobit.main import process_all_feeds
from gellobit.utils.storage import get_blob_store

logger = logging.getLogger(__name__)

PROCESS_LOCK_KEY = "gellobit:process_feeds_lock"
PROCESS_LOCK_TTL_SECONDS = int(os.getenv("PIPELINE_LOCK_TTL", "3300"))


def _redis() -> Redis:
    return Redis.from_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"))


# ---------- Ingestion ----------
def process_feeds_job(force: bool = False) -> Dict[str, Any]:
    """
    Scheduled entry point. Each feed's own cron_interval decides whether it runs.
    Overlapping invocations are skipped via a Redis lock.
    """
    setup_logging(persist=True)
    logger.info("process_feeds_job: TRIGGERED at %s", datetime.now(timezone.utc).isoformat())

    lock = _redis().lock(PROCESS_LOCK_KEY, timeout=PROCESS_LOCK_TTL_SECONDS)
    if not lock.acquire(blocking=False):
        logger.info("process_feeds_job: another run is in progress; skipping.")
        return {"skipped": True, "reason": "already_running"}

    try:
        batch = process_all_feeds(force=force)
        summary = batch.summary.model_dump()
        summary["finished_at"] = datetime.now(timezone.utc).isoformat()
        logger.info("process_feeds_job summary: %s", summary)
        return summary
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("process_feeds_job: lock expired before release")


# ---------- Cleanup ----------
def cleanup_job() -> Dict[str, Any]:
    setup_logging(persist=True)
    result = cleanup_expired_opportunities(blob_store=get_blob_store())
    logger.info("cleanup_job: deleted=%d errors=%d", result.deleted_count, len(result.errors))
    return result.model_dump()


def trim_logs_job() -> int:
    setup_logging(persist=True)
    with SessionLocal() as db:
        settings = load_settings(db)
    return trim_processing_logs(
        int(settings.get("advanced.log_retention_max_entries", 5000)),
        settings.get("advanced.log_retention_days"),
    )
