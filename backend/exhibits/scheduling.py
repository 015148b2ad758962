"""Deferred work for republish-on-edit."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Awaitable, Callable, Protocol
from uuid import UUID, uuid4

from . import models
from .tasks import celery_app

# purpose: explicit, cancellable, observable deferred republish messages instead of in-process timers
# inputs: exhibit ids and a delay in seconds
# outputs: DeferredTask messages, due-task batches for in-process execution
# status: pilot

logger = logging.getLogger(__name__)

REPUBLISH_DELAY_SECONDS = float(os.getenv("EXHIBITS_REPUBLISH_DELAY_SECONDS", "3"))

REPUBLISH = "republish"
REPUBLISH_RECORD = "republish_record"


@dataclass(slots=True)
class DeferredTask:
    task_id: str
    action: str
    exhibit_id: str
    due_at: datetime
    kind: str | None = None
    parent_id: str | None = None
    record_id: str | None = None

    @property
    def target(self) -> tuple[str, str, str | None]:
        return (self.action, self.exhibit_id, self.record_id)

    def as_message(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "action": self.action,
            "exhibit_id": self.exhibit_id,
            "kind": self.kind,
            "parent_id": self.parent_id,
            "record_id": self.record_id,
            "due_at": self.due_at.isoformat(),
        }



class DeferredScheduler(Protocol):
    def schedule(
        self,
        action: str,
        exhibit_id: UUID | str,
        delay_seconds: float = REPUBLISH_DELAY_SECONDS,
        kind: str | None = None,
        parent_id: UUID | str | None = None,
        record_id: UUID | str | None = None,
    ) -> DeferredTask: ...

    def cancel(self, task_id: str) -> bool: ...

    def pending(self) -> list[DeferredTask]: ...

    def pop_due(self, now: datetime | None = None) -> list[DeferredTask]: ...

    async def join(self) -> None: ...


def _build_task(
    task_id: str,
    action: str,
    exhibit_id: UUID | str,
    due_at: datetime,
    kind: str | None,
    parent_id: UUID | str | None,
    record_id: UUID | str | None,
) -> DeferredTask:
    if action not in (REPUBLISH, REPUBLISH_RECORD):
        raise ValueError(f"Unsupported deferred action: {action}")
    if action == REPUBLISH_RECORD and not (kind and parent_id and record_id):
        raise ValueError("Record republish needs kind, parent_id, and record_id")
    return DeferredTask(
        task_id=task_id,
        action=action,
        exhibit_id=str(exhibit_id),
        due_at=due_at,
        kind=kind,
        parent_id=str(parent_id) if parent_id else None,
        record_id=str(record_id) if record_id else None,
    )


DeferredRunner = Callable[[DeferredTask], Awaitable[Any]]


class DeferredTaskQueue:
    """In-process queue of delayed messages driven by an injectable clock.

    One pending message is kept per target; scheduling the same target again
    replaces it, so a burst of edits yields a single republish. With a
    ``runner`` attached, each message also gets an asyncio driver that hands
    it to the runner once its delay elapses; without one, messages wait for
    ``pop_due``.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = models.utcnow,
        runner: DeferredRunner | None = None,
    ) -> None:
        self.clock = clock
        self.runner = runner
        self._pending: dict[str, DeferredTask] = {}
        self._drivers: dict[str, asyncio.Task] = {}

    def schedule(
        self,
        action: str,
        exhibit_id: UUID | str,
        delay_seconds: float = REPUBLISH_DELAY_SECONDS,
        kind: str | None = None,
        parent_id: UUID | str | None = None,
        record_id: UUID | str | None = None,
    ) -> DeferredTask:
        task = _build_task(
            str(uuid4()),
            action,
            exhibit_id,
            self.clock() + timedelta(seconds=delay_seconds),
            kind,
            parent_id,
            record_id,
        )
        for existing in list(self._pending.values()):
            if existing.target == task.target:
                logger.info("replacing pending %s for exhibit %s", action, task.exhibit_id)
                self.cancel(existing.task_id)
        self._pending[task.task_id] = task
        if self.runner is not None:
            driver = asyncio.get_running_loop().create_task(self._drive(task.task_id, delay_seconds))
            driver.add_done_callback(partial(self._driver_done, task.task_id))
            self._drivers[task.task_id] = driver
        return task

    async def _drive(self, task_id: str, delay_seconds: float) -> Any:
        await asyncio.sleep(delay_seconds)
        task = self._pending.pop(task_id, None)
        if task is None:
            return None
        return await self.runner(task)

    def _driver_done(self, task_id: str, driver: asyncio.Task) -> None:
        if self._drivers.get(task_id) is driver:
            del self._drivers[task_id]
        if driver.cancelled():
            return
        exc = driver.exception()
        if exc is not None:
            logger.error("deferred task %s raised", task_id, exc_info=exc)

    def cancel(self, task_id: str) -> bool:
        driver = self._drivers.pop(task_id, None)
        if driver is not None:
            driver.cancel()
        return self._pending.pop(task_id, None) is not None

    def pending(self) -> list[DeferredTask]:
        return sorted(self._pending.values(), key=lambda task: task.due_at)

    def pop_due(self, now: datetime | None = None) -> list[DeferredTask]:
        now = now or self.clock()
        due = [task for task in self.pending() if task.due_at <= now]
        for task in due:
            self._pending.pop(task.task_id, None)
        return due

    async def join(self) -> None:
        """Wait until every driven message has run or been cancelled."""

        while self._drivers:
            await asyncio.gather(*list(self._drivers.values()), return_exceptions=True)


class CeleryRepublishScheduler:
    """Hands deferred republish messages to the Celery broker with a countdown.

    A new schedule for a target revokes the message already queued for it.
    """

    def __init__(self, clock: Callable[[], datetime] = models.utcnow) -> None:
        self.clock = clock
        self._scheduled: dict[str, DeferredTask] = {}

    def _prune(self) -> None:
        now = self.clock()
        for task_id, task in list(self._scheduled.items()):
            if task.due_at <= now:
                del self._scheduled[task_id]

    def schedule(
        self,
        action: str,
        exhibit_id: UUID | str,
        delay_seconds: float = REPUBLISH_DELAY_SECONDS,
        kind: str | None = None,
        parent_id: UUID | str | None = None,
        record_id: UUID | str | None = None,
    ) -> DeferredTask:
        from .workers.publication import run_deferred_task

        task = _build_task(
            "",
            action,
            exhibit_id,
            self.clock() + timedelta(seconds=delay_seconds),
            kind,
            parent_id,
            record_id,
        )
        self._prune()
        for existing in list(self._scheduled.values()):
            if existing.target == task.target:
                logger.info("revoking queued %s %s for exhibit %s", action, existing.task_id, task.exhibit_id)
                self.cancel(existing.task_id)
        result = run_deferred_task.apply_async(args=[task.as_message()], countdown=delay_seconds)
        task.task_id = result.id
        self._scheduled[task.task_id] = task
        return task

    def cancel(self, task_id: str) -> bool:
        if self._scheduled.pop(task_id, None) is None:
            return False
        celery_app.control.revoke(task_id)
        return True

    def pending(self) -> list[DeferredTask]:
        self._prune()
        return sorted(self._scheduled.values(), key=lambda task: task.due_at)

    def pop_due(self, now: datetime | None = None) -> list[DeferredTask]:
        # Due messages are delivered to workers by the broker.
        return []

    async def join(self) -> None:
        return None


def task_from_message(message: dict[str, Any]) -> DeferredTask:
    return _build_task(
        message.get("task_id") or "",
        message["action"],
        message["exhibit_id"],
        datetime.fromisoformat(message["due_at"]),
        message.get("kind"),
        message.get("parent_id"),
        message.get("record_id"),
    )
