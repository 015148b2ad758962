"""Advisory single-editor locks for exhibit records."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import UUID

from . import models
from .errors import ValidationError
from .kinds import RecordKind
from .schemas import LockResult
from .store import ContentStore

# purpose: grant one editor at a time advisory edit rights; publish/suppress never consult these locks
# inputs: record kind, record id, editing user
# outputs: LockResult states, release booleans, expired-lease sweeps
# status: pilot

logger = logging.getLogger(__name__)

LOCK_TTL_MINUTES = int(os.getenv("EXHIBITS_LOCK_TTL_MINUTES", "20"))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _normalize_user(user: object) -> str:
    normalized = str(user).strip() if user is not None else ""
    if not normalized:
        raise ValidationError("A user is required to lock or unlock a record")
    return normalized


class LockManager:
    """Compare-and-set advisory locks with an optional lease.

    A lease of ``ttl_minutes`` makes a lock free to take once it is older than
    the lease; ``ttl_minutes=0`` keeps locks until they are released.
    """

    def __init__(
        self,
        store: ContentStore,
        ttl_minutes: int = LOCK_TTL_MINUTES,
        clock: Callable[[], datetime] = models.utcnow,
    ) -> None:
        self.store = store
        self.ttl_minutes = ttl_minutes
        self.clock = clock

    def _stale_before(self, now: datetime) -> datetime | None:
        if self.ttl_minutes <= 0:
            return None
        return now - timedelta(minutes=self.ttl_minutes)

    def is_expired(self, locked_at: datetime | None) -> bool:
        cutoff = self._stale_before(self.clock())
        locked_at = _as_utc(locked_at)
        return cutoff is not None and locked_at is not None and locked_at < cutoff

    async def acquire(self, kind: RecordKind | str, record_id: UUID | str, user: object) -> LockResult:
        kind = RecordKind.parse(kind)
        user = _normalize_user(user)
        now = self.clock()
        acquired, record = await self.store.acquire_lock(
            kind, record_id, user, now, self._stale_before(now)
        )
        if acquired:
            logger.info("%s %s locked by %s", kind.value, record_id, user)
            return LockResult(state="acquired", locked_by_user=user, locked_at=now)
        if record.locked_by_user == user:
            return LockResult(
                state="already_locked_by_self",
                locked_by_user=user,
                locked_at=_as_utc(record.locked_at),
            )
        logger.info(
            "%s %s requested by %s is locked by %s",
            kind.value,
            record_id,
            user,
            record.locked_by_user,
        )
        return LockResult(
            state="already_locked_by_other",
            locked_by_user=record.locked_by_user,
            locked_at=_as_utc(record.locked_at),
        )

    async def release(
        self,
        kind: RecordKind | str,
        record_id: UUID | str,
        user: object,
        force: bool = False,
    ) -> bool:
        """Release a lock; ``False`` means another editor holds it and ``force`` was not set."""

        kind = RecordKind.parse(kind)
        user = _normalize_user(user)
        changed, record = await self.store.release_lock(kind, record_id, user, force=force)
        if changed:
            if force:
                logger.warning("%s %s lock force-released by %s", kind.value, record_id, user)
            else:
                logger.info("%s %s unlocked by %s", kind.value, record_id, user)
            return True
        if not record.is_locked:
            return True
        return False

    async def release_expired(self) -> int:
        cutoff = self._stale_before(self.clock())
        if cutoff is None:
            return 0
        released = await self.store.release_locks_older_than(cutoff)
        if released:
            logger.info("released %s expired record locks", released)
        return released
