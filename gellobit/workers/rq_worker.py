import os, time
from redis import Redis
from rq import Worker, Queue
from logging import getLogger

from gellobit.logging_config import setup_logging

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
LISTEN = [q.strip() for q in os.getenv("RQ_QUEUE", "gellobit").split(",") if q.strip()]
DEFAULT_TIMEOUT = int(os.getenv("RQ_DEFAULT_TIMEOUT", "3600"))
logger = getLogger(__name__)

def main():
    setup_logging(persist=True)
    while True:
        try:
            conn = Redis.from_url(REDIS_URL)
            queues = [Queue(n, connection=conn, default_timeout=DEFAULT_TIMEOUT) for n in LISTEN]
            w = Worker(queues, connection=conn)
            logger.info(f"RQ worker listening on {LISTEN} (redis={REDIS_URL}, default_timeout={DEFAULT_TIMEOUT}s)")
            w.work(with_scheduler=False)
            break
        except Exception:
            logger.error("Worker crashed; retrying in 5s...", exc_info=True)
            time.sleep(5)

if __name__ == "__main__":
    main()
