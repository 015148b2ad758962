"""Celery workers for deferred republish and lock lease maintenance."""

from __future__ import annotations

import asyncio
import os
from typing import Any

from celery.utils.log import get_task_logger

from ..bootstrap import build_orchestrator
from ..errors import ValidationError
from ..scheduling import DeferredTaskQueue, task_from_message
from ..tasks import celery_app

# purpose: execute deferred republish messages and periodic lock sweeps outside the editor request
# inputs: DeferredTask messages from the broker, beat schedule ticks
# outputs: envelope status strings, retry scheduling for transient publish failures
# status: pilot

_logger = get_task_logger(__name__)

MAX_RETRIES = int(os.getenv("EXHIBITS_REPUBLISH_MAX_RETRIES", "3"))
RETRY_BACKOFF_SECONDS = int(os.getenv("EXHIBITS_REPUBLISH_RETRY_SECONDS", "30"))


def _worker_orchestrator():
    # Each task runs its own event loop, so the shared redis client is not reused here.
    return build_orchestrator(scheduler=DeferredTaskQueue(), events=None)


@celery_app.task(bind=True, name="exhibits.workers.publication.run_deferred_task")
def run_deferred_task(self, message: dict[str, Any]) -> str:
    """Run a deferred republish; failures are logged and retried, never raised to the editor."""

    try:
        task = task_from_message(message)
    except (KeyError, ValueError, ValidationError) as exc:
        _logger.warning("Rejecting deferred message %s: %s", message, exc)
        return "invalid"
    if self.request.id:
        task.task_id = self.request.id

    result = asyncio.run(_worker_orchestrator().execute_deferred(task))
    if result.status == "error":
        attempt = self.request.retries + 1
        if attempt <= MAX_RETRIES:
            _logger.info("Retrying %s for exhibit %s (attempt %s)", task.action, task.exhibit_id, attempt)
            raise self.retry(countdown=RETRY_BACKOFF_SECONDS * attempt)
        _logger.error("Giving up on %s for exhibit %s after %s attempts", task.action, task.exhibit_id, attempt)
    return result.status


@celery_app.task(name="exhibits.workers.publication.release_expired_locks")
def release_expired_locks() -> int:
    result = asyncio.run(_worker_orchestrator().release_expired_locks())
    if result.status != "ok":
        _logger.error("Expired lock sweep failed: %s", result.message)
        return 0
    return result.data["released"]
