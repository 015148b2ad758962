"""Orchestration Facade: public entry points that always answer with an envelope."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from . import audit, models
from .errors import ExhibitError, LockConflict, NotFound, PartialFailure, ValidationError
from .identifiers import validate_uuid
from .indexing import IndexSynchronizer
from .kinds import CONTAINER_KINDS, FIRST_LEVEL_KINDS, KIND_SPECS, RecordKind
from .locks import LockManager
from .metrics import DEFERRED_TASKS, OPERATION_COUNT, OPERATION_LATENCY
from .ordering import OrderManager
from .publication import PublicationStateMachine, derive_state
from .scheduling import (
    REPUBLISH,
    REPUBLISH_DELAY_SECONDS,
    REPUBLISH_RECORD,
    DeferredScheduler,
    DeferredTask,
)
from .schemas import OperationResult, ReorderEntry
from .store import ContentStore

# purpose: sequence store, lock, order, publication, and index components behind uniform result envelopes
# inputs: record identifiers, payloads, acting user, reorder batches
# outputs: OperationResult envelopes; audit rows and pub/sub events for successful changes
# status: pilot

logger = logging.getLogger(__name__)

EventPublisher = Callable[[UUID | str, dict[str, Any]], Awaitable[None]]

_RECORDED_STATUSES = ("ok", "partial_failure")


def _kind_label(kind: RecordKind | str) -> str:
    try:
        return RecordKind.parse(kind).value
    except ValidationError:
        return str(kind)


def _summary(kind: RecordKind, record: Any) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "uuid": str(record.id),
        "kind": kind.value,
        "label": getattr(record, "title", None) or getattr(record, "text", None),
        "order": record.order,
        "updated": record.updated.isoformat() if record.updated else None,
    }
    for field in ("is_member_of_exhibit", "is_member_of_grid", "is_member_of_timeline"):
        if hasattr(record, field):
            summary[field] = str(getattr(record, field))
    return summary


class ExhibitOrchestrator:
    """Facade over the publication engine.

    Collaborators are injected; ``bootstrap.build_orchestrator`` wires the
    production set. No exception escapes a public method: failures come back
    as ``OperationResult`` envelopes.
    """

    def __init__(
        self,
        store: ContentStore,
        locks: LockManager,
        ordering: OrderManager,
        indexer: IndexSynchronizer,
        publication: PublicationStateMachine,
        scheduler: DeferredScheduler,
        events: EventPublisher | None = None,
        audit_sessions: sessionmaker | None = None,
        republish_delay: float = REPUBLISH_DELAY_SECONDS,
    ) -> None:
        self.store = store
        self.locks = locks
        self.ordering = ordering
        self.indexer = indexer
        self.publication = publication
        self.scheduler = scheduler
        self.events = events
        self.audit_sessions = audit_sessions
        self.republish_delay = republish_delay

    # -- plumbing ---------------------------------------------------------

    async def _envelope(self, operation: str, work: Awaitable[OperationResult]) -> OperationResult:
        start = time.time()
        try:
            result = await work
        except ExhibitError as exc:
            if exc.status == "error":
                logger.error("%s failed: %s", operation, exc.message)
            result = OperationResult(status=exc.status, message=exc.message, data=exc.data or None)
        except Exception:
            logger.exception("%s failed unexpectedly", operation)
            result = OperationResult(status="error", message=f"Unable to complete {operation.replace('_', ' ')}")
        OPERATION_COUNT.labels(operation, result.status).inc()
        OPERATION_LATENCY.labels(operation).observe(time.time() - start)
        return result

    async def _record(
        self,
        result: OperationResult,
        action: str,
        user: str | None,
        target_type: str,
        target_id: UUID | str | None,
        exhibit_id: UUID | str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        """Audit row and pub/sub event for a change that went through."""

        if result.status not in _RECORDED_STATUSES:
            return
        try:
            target_id = validate_uuid(target_id) if target_id is not None else None
            exhibit_id = validate_uuid(exhibit_id) if exhibit_id is not None else None
        except ValidationError:
            return
        details = {"status": result.status, "message": result.message}
        details.update(extra or {})
        if user and self.audit_sessions is not None:
            try:
                await audit.record_action(
                    self.audit_sessions, user, action, target_type, target_id, details
                )
            except SQLAlchemyError as exc:
                logger.warning("audit log for %s %s not written: %s", action, target_id, exc)
        if self.events is not None and exhibit_id is not None:
            event = {
                "type": f"exhibit.{action}",
                "target_type": target_type,
                "target_id": str(target_id),
                "status": result.status,
                "user": user,
                "at": models.utcnow(),
            }
            try:
                await self.events(exhibit_id, event)
            except (RedisError, OSError) as exc:
                logger.warning("event for %s %s not published: %s", action, target_id, exc)

    def _schedule(self, action: str, exhibit_id: UUID | str, **target: Any) -> DeferredTask:
        task = self.scheduler.schedule(action, exhibit_id, self.republish_delay, **target)
        DEFERRED_TASKS.labels(action, "scheduled").inc()
        logger.info("%s for exhibit %s scheduled as %s at %s", action, exhibit_id, task.task_id, task.due_at)
        return task

    async def _exhibit_of(self, kind: RecordKind, parent_id: UUID | str) -> UUID:
        parent_kind = KIND_SPECS[kind].parent_kind
        if parent_kind in CONTAINER_KINDS:
            container = await self.store.find(parent_kind, parent_id)
            return container.is_member_of_exhibit
        return validate_uuid(parent_id, "parent_id")

    async def _resolve_exhibit(self, kind: RecordKind | str, parent_id: UUID | str) -> UUID | None:
        try:
            return await self._exhibit_of(RecordKind.parse(kind), parent_id)
        except ExhibitError as exc:
            logger.warning("could not resolve exhibit for %s under %s: %s", kind, parent_id, exc.message)
            return None

    # -- exhibit transitions ----------------------------------------------

    async def publish_exhibit(self, exhibit_id: UUID | str, user: str | None = None) -> OperationResult:
        result = await self._envelope("publish_exhibit", self.publication.publish(exhibit_id))
        await self._record(result, "published", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def suppress_exhibit(self, exhibit_id: UUID | str, user: str | None = None) -> OperationResult:
        result = await self._envelope("suppress_exhibit", self.publication.suppress(exhibit_id))
        await self._record(result, "suppressed", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def build_preview(self, exhibit_id: UUID | str, user: str | None = None) -> OperationResult:
        result = await self._envelope("build_preview", self.publication.preview(exhibit_id))
        await self._record(result, "preview_built", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def delete_preview(self, exhibit_id: UUID | str, user: str | None = None) -> OperationResult:
        result = await self._envelope("delete_preview", self.publication.unpreview(exhibit_id))
        await self._record(result, "preview_deleted", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def check_preview(self, exhibit_id: UUID | str) -> OperationResult:
        async def work() -> OperationResult:
            exists = await self.publication.has_preview(exhibit_id)
            return OperationResult(
                status="ok",
                message="Preview exists" if exists else "No preview indexed",
                data={"uuid": str(exhibit_id), "exists": exists},
            )

        return await self._envelope("check_preview", work())

    async def delete_exhibit(self, exhibit_id: UUID | str, user: str | None = None) -> OperationResult:
        async def work() -> OperationResult:
            exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
            for task in self.scheduler.pending():
                if task.exhibit_id == str(exhibit_uuid) and self.scheduler.cancel(task.task_id):
                    DEFERRED_TASKS.labels(task.action, "cancelled").inc()
            return await self.publication.delete(exhibit_uuid)

        result = await self._envelope("delete_exhibit", work())
        await self._record(result, "deleted", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def get_exhibit_state(self, exhibit_id: UUID | str) -> OperationResult:
        async def work() -> OperationResult:
            exhibit = await self.store.get_exhibit(exhibit_id)
            return OperationResult(
                status="ok",
                message="Exhibit state",
                data={"uuid": str(exhibit.id), "state": derive_state(exhibit).value},
            )

        return await self._envelope("get_exhibit_state", work())

    async def get_indexed_record(self, doc_id: UUID | str) -> OperationResult:
        async def work() -> OperationResult:
            document = await self.indexer.get(validate_uuid(doc_id))
            return OperationResult(status="ok", message="Indexed record", data=document)

        return await self._envelope("get_indexed_record", work())

    # -- single records ---------------------------------------------------

    async def publish_record(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, user: str | None = None
    ) -> OperationResult:
        result = await self._envelope(
            "publish_record", self.publication.publish_record(kind, parent_id, record_id)
        )
        if result.status in _RECORDED_STATUSES:
            exhibit_id = await self._resolve_exhibit(kind, parent_id)
            await self._record(result, "record_published", user, _kind_label(kind), record_id, exhibit_id)
        return result

    async def suppress_record(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, user: str | None = None
    ) -> OperationResult:
        result = await self._envelope(
            "suppress_record", self.publication.suppress_record(kind, parent_id, record_id)
        )
        if result.status in _RECORDED_STATUSES:
            exhibit_id = await self._resolve_exhibit(kind, parent_id)
            await self._record(result, "record_suppressed", user, _kind_label(kind), record_id, exhibit_id)
        return result

    # -- content editing --------------------------------------------------

    async def create_exhibit(self, data: Mapping[str, Any], user: str | None = None) -> OperationResult:
        async def work() -> OperationResult:
            payload = dict(data)
            if user and not payload.get("created_by"):
                payload["created_by"] = user
            if payload.get("order") is None:
                payload["order"] = await self.ordering.next_order(RecordKind.EXHIBIT)
            exhibit = await self.store.create(RecordKind.EXHIBIT, payload)
            return OperationResult(
                status="ok",
                message="Exhibit created",
                data={"uuid": str(exhibit.id), "order": exhibit.order},
            )

        return await self._envelope("create_exhibit", work())

    async def create_record(
        self, kind: RecordKind | str, data: Mapping[str, Any], user: str | None = None
    ) -> OperationResult:
        """Create a component appended after its live siblings."""

        async def work() -> OperationResult:
            record_kind = RecordKind.parse(kind)
            if record_kind is RecordKind.EXHIBIT:
                raise ValidationError("Use create_exhibit to create an exhibit")
            spec = KIND_SPECS[record_kind]
            payload = dict(data)
            if spec.parent_field not in payload:
                raise ValidationError(f"{spec.parent_field} is required")
            parent_id = validate_uuid(payload[spec.parent_field], spec.parent_field)
            if user and not payload.get("created_by"):
                payload["created_by"] = user
            if payload.get("order") is None:
                payload["order"] = await self.ordering.next_order(record_kind, parent_id)
            record = await self.store.create(record_kind, payload)
            return OperationResult(
                status="ok",
                message=f"{record_kind.value} created",
                data={"uuid": str(record.id), "order": record.order},
            )

        return await self._envelope("create_record", work())

    async def _suppress_then_republish(self, exhibit_id: UUID) -> DeferredTask | None:
        suppressed = await self._envelope("suppress_exhibit", self.publication.suppress(exhibit_id))
        if suppressed.status != "ok":
            logger.error("republish of exhibit %s skipped; suppress returned %s", exhibit_id, suppressed.message)
            return None
        return self._schedule(REPUBLISH, exhibit_id)

    async def _suppress_then_republish_record(
        self, kind: RecordKind, parent_id: UUID, record_id: UUID, exhibit_id: UUID
    ) -> DeferredTask | None:
        suppressed = await self._envelope(
            "suppress_record", self.publication.suppress_record(kind, parent_id, record_id)
        )
        if suppressed.status != "ok":
            logger.error("republish of %s %s skipped; suppress returned %s", kind.value, record_id, suppressed.message)
            return None
        return self._schedule(
            REPUBLISH_RECORD,
            exhibit_id,
            kind=kind.value,
            parent_id=parent_id,
            record_id=record_id,
        )

    async def update_exhibit(
        self, exhibit_id: UUID | str, patch: Mapping[str, Any], user: str | None = None
    ) -> OperationResult:
        """Update an exhibit; a published exhibit is suppressed and republished after a delay."""

        async def work() -> OperationResult:
            exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
            exhibit = await self.store.get_exhibit(exhibit_uuid)
            values = dict(patch)
            if user and not values.get("updated_by"):
                values["updated_by"] = user
            if not await self.store.update(RecordKind.EXHIBIT, exhibit_uuid, exhibit_uuid, values):
                return OperationResult(status="error", message="Unable to update exhibit", data={"uuid": str(exhibit_uuid)})
            data: dict[str, Any] = {"uuid": str(exhibit_uuid)}
            if exhibit.is_published:
                task = await self._suppress_then_republish(exhibit_uuid)
                data["republish"] = task.as_message() if task else None
            return OperationResult(status="ok", message="Exhibit updated", data=data)

        result = await self._envelope("update_exhibit", work())
        await self._record(result, "updated", user, "exhibit", exhibit_id, exhibit_id)
        return result

    async def update_record(
        self,
        kind: RecordKind | str,
        parent_id: UUID | str,
        record_id: UUID | str,
        patch: Mapping[str, Any],
        user: str | None = None,
    ) -> OperationResult:
        async def work() -> OperationResult:
            record_kind = RecordKind.parse(kind)
            if record_kind is RecordKind.EXHIBIT:
                raise ValidationError("Use update_exhibit to update an exhibit")
            parent_uuid = validate_uuid(parent_id, "parent_id")
            record_uuid = validate_uuid(record_id)
            record = await self.store.get_one(record_kind, parent_uuid, record_uuid)
            values = dict(patch)
            if user and not values.get("updated_by"):
                values["updated_by"] = user
            data: dict[str, Any] = {"uuid": str(record_uuid), "kind": record_kind.value}
            if not await self.store.update(record_kind, parent_uuid, record_uuid, values):
                return OperationResult(status="error", message=f"Unable to update {record_kind.value}", data=data)
            if record.is_published:
                task = await self._suppress_then_republish_record(
                    record_kind, parent_uuid, record_uuid, record.is_member_of_exhibit
                )
                data["republish"] = task.as_message() if task else None
            return OperationResult(status="ok", message=f"{record_kind.value} updated", data=data)

        result = await self._envelope("update_record", work())
        if result.status in _RECORDED_STATUSES:
            exhibit_id = await self._resolve_exhibit(kind, parent_id)
            await self._record(result, "record_updated", user, _kind_label(kind), record_id, exhibit_id)
        return result

    async def delete_record(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, user: str | None = None
    ) -> OperationResult:
        """Soft-delete one component (and a container's items) and drop it from the index."""

        async def work() -> OperationResult:
            record_kind = RecordKind.parse(kind)
            if record_kind is RecordKind.EXHIBIT:
                raise ValidationError("Use delete_exhibit to delete an exhibit")
            parent_uuid = validate_uuid(parent_id, "parent_id")
            record_uuid = validate_uuid(record_id)
            await self.store.get_one(record_kind, parent_uuid, record_uuid)
            data = {"uuid": str(record_uuid), "kind": record_kind.value}
            child_kind = KIND_SPECS[record_kind].child_kind
            if child_kind is not None and not await self.store.soft_delete_children(child_kind, record_uuid):
                return OperationResult(status="error", message=f"Unable to delete {record_kind.value} items", data=data)
            if not await self.store.soft_delete(record_kind, parent_uuid, record_uuid):
                return OperationResult(status="error", message=f"Unable to delete {record_kind.value}", data=data)
            if record_kind in FIRST_LEVEL_KINDS:
                removed = await self.indexer.remove(record_uuid)
            else:
                try:
                    removed = await self.indexer.patch_remove_child(parent_uuid, record_uuid)
                except NotFound:
                    removed = True
            if not removed:
                raise PartialFailure(
                    f"{record_kind.value} deleted but its index entry could not be removed",
                    failed=1,
                    total=2,
                    data=data,
                )
            return OperationResult(status="ok", message=f"{record_kind.value} deleted", data=data)

        result = await self._envelope("delete_record", work())
        if result.status in _RECORDED_STATUSES:
            exhibit_id = await self._resolve_exhibit(kind, parent_id)
            await self._record(result, "record_deleted", user, _kind_label(kind), record_id, exhibit_id)
        return result

    # -- ordering ---------------------------------------------------------

    async def reorder(
        self, batch: Iterable[ReorderEntry | Mapping[str, Any]], user: str | None = None
    ) -> OperationResult:
        """Apply a reorder batch; published exhibits that changed are reindexed after a delay."""

        async def work() -> OperationResult:
            entries = list(batch)
            report = await self.ordering.apply(entries)
            by_id: dict[str, tuple[str, str]] = {}
            for entry in entries:
                if isinstance(entry, ReorderEntry):
                    by_id[entry.id] = (entry.kind, entry.parent_id)
                else:
                    by_id[str(entry.get("id"))] = (str(entry.get("kind")), str(entry.get("parent_id")))

            exhibits: set[UUID] = set()
            for record_id in report.updated:
                kind, parent_id = by_id[record_id]
                try:
                    exhibits.add(await self._exhibit_of(RecordKind.parse(kind), parent_id))
                except ExhibitError as exc:
                    logger.warning("could not resolve exhibit for reordered %s %s: %s", kind, record_id, exc.message)

            republish = []
            for exhibit_id in exhibits:
                try:
                    exhibit = await self.store.get_exhibit(exhibit_id)
                except ExhibitError as exc:
                    logger.warning("reindex of exhibit %s skipped: %s", exhibit_id, exc.message)
                    continue
                if exhibit.is_published:
                    republish.append(self._schedule(REPUBLISH, exhibit_id).as_message())

            data = report.model_dump()
            data["republish"] = republish
            total = len(report.updated) + len(report.failed)
            if report.failed and not report.updated:
                return OperationResult(status="error", message="Unable to reorder records", data=data)
            if report.failed:
                raise PartialFailure(
                    f"{len(report.failed)} of {total} records could not be reordered",
                    failed=len(report.failed),
                    total=total,
                    data=data,
                )
            return OperationResult(status="ok", message="Records reordered", data=data)

        return await self._envelope("reorder", work())

    async def compact_order(self, exhibit_id: UUID | str) -> OperationResult:
        async def work() -> OperationResult:
            changed = await self.ordering.compact(exhibit_id)
            return OperationResult(status="ok", message="Order compacted", data={"changed": changed})

        return await self._envelope("compact_order", work())

    # -- locks ------------------------------------------------------------

    async def lock_for_edit(self, kind: RecordKind | str, record_id: UUID | str, user: str) -> OperationResult:
        async def work() -> OperationResult:
            lock = await self.locks.acquire(kind, record_id, user)
            data = lock.model_dump(mode="json")
            data["uuid"] = str(record_id)
            if lock.state == "acquired":
                return OperationResult(status="ok", message="Record locked", data=data)
            if lock.state == "already_locked_by_self":
                return OperationResult(status="ok", message="Record already locked by you", data=data)
            raise LockConflict(
                f"Record is locked by {lock.locked_by_user}", locked_by_user=lock.locked_by_user, data=data
            )

        result = await self._envelope("lock_for_edit", work())
        if result.data and result.data.get("state") == "acquired":
            await self._record(result, "locked", user, _kind_label(kind), record_id)
        return result

    async def unlock(
        self, kind: RecordKind | str, record_id: UUID | str, user: str, force: bool = False
    ) -> OperationResult:
        async def work() -> OperationResult:
            released = await self.locks.release(kind, record_id, user, force=force)
            data = {"uuid": str(record_id), "force": force}
            if released:
                return OperationResult(status="ok", message="Record unlocked", data=data)
            raise LockConflict("Record is locked by another user; use force to override", data=data)

        result = await self._envelope("unlock", work())
        await self._record(result, "unlocked", user, _kind_label(kind), record_id)
        return result

    async def release_expired_locks(self) -> OperationResult:
        async def work() -> OperationResult:
            released = await self.locks.release_expired()
            return OperationResult(status="ok", message="Expired locks released", data={"released": released})

        return await self._envelope("release_expired_locks", work())

    # -- trash ------------------------------------------------------------

    async def list_trashed(self, kinds: Iterable[RecordKind | str] | None = None) -> OperationResult:
        async def work() -> OperationResult:
            trashed = await self.store.list_trashed(kinds)
            data = {kind.value: [_summary(kind, record) for record in records] for kind, records in trashed.items()}
            return OperationResult(status="ok", message="Trashed records", data=data)

        return await self._envelope("list_trashed", work())

    async def restore_record(
        self, kind: RecordKind | str, record_id: UUID | str, user: str | None = None
    ) -> OperationResult:
        async def work() -> OperationResult:
            record_kind = RecordKind.parse(kind)
            record = await self.store.restore(record_kind, record_id)
            return OperationResult(
                status="ok",
                message=f"{record_kind.value} restored",
                data=_summary(record_kind, record),
            )

        result = await self._envelope("restore_record", work())
        await self._record(result, "restored", user, _kind_label(kind), record_id)
        return result

    async def purge_record(
        self, kind: RecordKind | str, record_id: UUID | str, user: str | None = None
    ) -> OperationResult:
        """Irreversibly remove a trashed record and its descendants."""

        async def work() -> OperationResult:
            record_kind = RecordKind.parse(kind)
            removed = await self.store.purge(record_kind, record_id)
            return OperationResult(
                status="ok",
                message=f"{record_kind.value} permanently deleted",
                data={"uuid": str(record_id), "removed": removed},
            )

        result = await self._envelope("purge_record", work())
        await self._record(result, "purged", user, _kind_label(kind), record_id)
        return result

    async def purge_trash(self, user: str | None = None) -> OperationResult:
        async def work() -> OperationResult:
            removed = await self.store.purge_trashed()
            return OperationResult(status="ok", message="Trash emptied", data={"removed": removed})

        result = await self._envelope("purge_trash", work())
        await self._record(result, "trash_purged", user, "trash", None, extra=result.data)
        return result

    # -- deferred work ----------------------------------------------------

    async def execute_deferred(self, task: DeferredTask) -> OperationResult:
        """Run one deferred message; the outcome is logged rather than surfaced to the editor."""

        if task.action == REPUBLISH:
            result = await self._envelope("republish", self.publication.publish(task.exhibit_id))
        else:
            result = await self._envelope(
                "republish_record",
                self.publication.publish_record(task.kind, task.parent_id, task.record_id),
            )
        event = "completed" if result.status == "ok" else "failed"
        DEFERRED_TASKS.labels(task.action, event).inc()
        if result.status == "ok":
            logger.info("%s %s for exhibit %s completed", task.action, task.task_id, task.exhibit_id)
        elif result.status == "not_found":
            logger.warning("%s %s skipped: %s", task.action, task.task_id, result.message)
        else:
            logger.error("%s %s failed: %s", task.action, task.task_id, result.message)
        return result

    async def run_deferred(self, now: datetime | None = None) -> list[OperationResult]:
        results = []
        for task in self.scheduler.pop_due(now):
            results.append(await self.execute_deferred(task))
        return results
