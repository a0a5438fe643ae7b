import os, time
from redis import Redis
from rq import Queue
from rq_scheduler import Scheduler
import logging

from gellobit.logging_config import setup_logging

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
QUEUE_NAME = os.getenv("RQ_QUEUE", "gellobit")

# (job id, dotted function path, cron expression in UTC, description)
JOBS = [
    ("gellobit_process_feeds", "gellobit.tasks.process_feeds_job", os.getenv("FEEDS_CRON", "*/5 * * * *"),
     "Process due RSS feeds"),
    ("gellobit_cleanup", "gellobit.tasks.cleanup_job", os.getenv("CLEANUP_CRON", "0 3 * * *"),
     "Delete expired opportunities"),
    ("gellobit_trim_logs", "gellobit.tasks.trim_logs_job", os.getenv("TRIM_LOGS_CRON", "30 3 * * *"),
     "Trim processing logs"),
]


def _cancel_existing_job(sched: Scheduler, job_id: str) -> None:
    for j in sched.get_jobs():
        if getattr(j, "id", None) == job_id:
            sched.cancel(j)


def ensure_jobs(sched: Scheduler, q: Queue) -> None:
    for job_id, func_path, cron, description in JOBS:
        _cancel_existing_job(sched, job_id)
        sched.cron(
            cron,
            func=func_path,
            args=[],
            kwargs={},
            repeat=None,
            queue_name=q.name,
            id=job_id,
            use_local_timezone=False,
            result_ttl=86400,
            description=description,
        )
        logger.info("Scheduled %s -> %s as cron '%s' (UTC)", job_id, func_path, cron)


if __name__ == "__main__":
    setup_logging()
    conn = Redis.from_url(REDIS_URL)
    q = Queue(QUEUE_NAME, connection=conn)
    sched = Scheduler(queue=q, connection=conn)
    ensure_jobs(sched, q)

    try:
        while True:
            sched.run(burst=False)
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Scheduler stopped.")
