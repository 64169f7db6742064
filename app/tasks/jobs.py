import redis
import structlog

from app.core.config import settings
from app.tasks.celery_app import celery
from app.tasks import worker_jobs

logger = structlog.get_logger().bind(component="jobs")

# Longer than any sweep; the lock expires if a worker dies holding it.
LOCK_TIMEOUT_SECONDS = 15 * 60


def _locked(name: str, fn, **kwargs) -> dict:
    """Run fn unless another worker holds the sweep lock."""
    client = redis.Redis.from_url(settings.REDIS_URL)
    lock = client.lock(f"megajump:sweep:{name}", timeout=LOCK_TIMEOUT_SECONDS)
    if not lock.acquire(blocking=False):
        logger.info("sweep_skipped", sweep=name, reason="already_running")
        return {"skipped": True, "reason": "already_running"}
    try:
        return fn(**kwargs)
    finally:
        lock.release()


@celery.task(name="app.tasks.jobs.payment_sync")
def payment_sync(mode: str = "recent"):
    return _locked("payment-sync", worker_jobs.payment_sync, mode=mode)


@celery.task(name="app.tasks.jobs.email_retry")
def email_retry():
    return _locked("email-retry", worker_jobs.email_retry)
