import logging
import os
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LEVEL_NAMES = {logging.DEBUG: "info", logging.INFO: "info", logging.WARNING: "warn"}

_configured = False


class ProcessingLogHandler(logging.Handler):
    """Persist pipeline records (those logged with extra={'feed_id': ...}) to processing_logs."""

    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "feed_id"):
            return
        from gellobit.db.database import SessionLocal
        from gellobit.db.models import ProcessingLog

        try:
            with SessionLocal() as db, db.begin():
                db.add(ProcessingLog(
                    level=LEVEL_NAMES.get(record.levelno, "error"),
                    message=record.getMessage()[:4000],
                    feed_id=record.feed_id,
                    context={"event": getattr(record, "event", None), "logger": record.name},
                ))
        except SQLAlchemyError:
            self.handleError(record)


def setup_logging(level: Optional[str] = None, persist: bool = False) -> None:
    global _configured
    if _configured:
        return
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)
    # urllib3 retries are noisy at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    if persist:
        handler = ProcessingLogHandler(level=logging.INFO)
        logging.getLogger("gellobit").addHandler(handler)
    _configured = True


def trim_processing_logs(max_entries: int, max_age_days: Optional[int] = None) -> int:
    """Keep the newest max_entries rows and drop anything older than max_age_days."""
    from gellobit.db.database import SessionLocal
    from gellobit.db.models import ProcessingLog
    from gellobit.utils.dates import utcnow

    deleted = 0
    with SessionLocal() as db, db.begin():
        if max_age_days:
            cutoff = utcnow() - timedelta(days=max_age_days)
            deleted += db.execute(
                delete(ProcessingLog).where(ProcessingLog.created_at < cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount or 0
        if max_entries <= 0:
            deleted += db.execute(
                delete(ProcessingLog).execution_options(synchronize_session=False)
            ).rowcount or 0
        else:
            # id of the oldest row that survives
            keep_from = db.execute(
                select(ProcessingLog.id).order_by(ProcessingLog.id.desc()).offset(max_entries - 1).limit(1)
            ).scalar_one_or_none()
            if keep_from is not None:
                deleted += db.execute(
                    delete(ProcessingLog).where(ProcessingLog.id < keep_from)
                    .execution_options(synchronize_session=False)
                ).rowcount or 0
    logging.getLogger(__name__).info("Trimmed %d processing log entries", deleted)
    return deleted
