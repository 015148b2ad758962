import os
from celery import Celery
from celery.schedules import crontab
import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "memory://")
LOCK_SWEEP_MINUTES = os.getenv("EXHIBITS_LOCK_SWEEP_MINUTES", "*/5")

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[CeleryIntegration()])

celery_app = Celery(
    "exhibits",
    broker=CELERY_BROKER_URL,
    include=["exhibits.workers.publication"],
)
celery_app.conf.task_always_eager = (
    CELERY_BROKER_URL == "memory://" or os.getenv("TESTING") == "1"
)

celery_app.conf.beat_schedule = {
    "release-expired-exhibit-locks": {
        "task": "exhibits.workers.publication.release_expired_locks",
        "schedule": crontab(minute=LOCK_SWEEP_MINUTES),
    },
}
