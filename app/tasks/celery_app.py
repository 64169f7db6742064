from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.schedules import crontab
from celery.signals import worker_process_init
from app.core.config import settings
from app.core.logging import configure_logging


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "megajump",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = settings.TIMEZONE


@worker_process_init.connect
def on_worker_process_init(**kwargs):
    configure_logging()


_eod_hour, _eod_minute = (int(x) for x in settings.PAYMENT_SYNC_DAILY_AT.split(":"))

celery.conf.beat_schedule = {
    "payment-sync-recent": {
        "task": "app.tasks.jobs.payment_sync",
        "schedule": float(settings.PAYMENT_SYNC_INTERVAL_SECONDS),
        "kwargs": {"mode": "recent"},
    },
    "payment-sync-end-of-day": {
        "task": "app.tasks.jobs.payment_sync",
        "schedule": crontab(hour=_eod_hour, minute=_eod_minute),
        "kwargs": {"mode": "end_of_day"},
    },
    "email-retry": {
        "task": "app.tasks.jobs.email_retry",
        "schedule": float(settings.EMAIL_RETRY_INTERVAL_SECONDS),
    },
}
