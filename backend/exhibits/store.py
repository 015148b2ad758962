"""Content Store Adapter: parent-scoped CRUD over the exhibit content tables."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping
from uuid import UUID

import pydantic
from sqlalchemy import event, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from . import models, schemas
from .errors import NotFound, StoreError, ValidationError
from .identifiers import validate_uuid
from .kinds import CONTAINER_KINDS, FIRST_LEVEL_KINDS, KIND_SPECS, RecordKind

# purpose: every store read and write the engine performs, scoped by parent id and run off the event loop
# inputs: record kinds, parent/record identifiers, validated payloads
# outputs: detached ORM records, booleans for fan-out mutations, StoreError on query failure or timeout
# status: pilot

logger = logging.getLogger(__name__)

QUERY_TIMEOUT_SECONDS = float(os.getenv("EXHIBITS_QUERY_TIMEOUT", "10"))

CREATE_SCHEMAS: dict[RecordKind, type[pydantic.BaseModel]] = {
    RecordKind.EXHIBIT: schemas.ExhibitCreate,
    RecordKind.HEADING: schemas.HeadingCreate,
    RecordKind.ITEM: schemas.ItemCreate,
    RecordKind.GRID: schemas.GridCreate,
    RecordKind.GRID_ITEM: schemas.GridItemCreate,
    RecordKind.TIMELINE: schemas.TimelineCreate,
    RecordKind.TIMELINE_ITEM: schemas.TimelineItemCreate,
}

UPDATE_SCHEMAS: dict[RecordKind, type[pydantic.BaseModel]] = {
    RecordKind.EXHIBIT: schemas.ExhibitUpdate,
    RecordKind.HEADING: schemas.HeadingUpdate,
    RecordKind.ITEM: schemas.ItemUpdate,
    RecordKind.GRID: schemas.GridUpdate,
    RecordKind.GRID_ITEM: schemas.ItemUpdate,
    RecordKind.TIMELINE: schemas.TimelineUpdate,
    RecordKind.TIMELINE_ITEM: schemas.ItemUpdate,
}

PARENT_FIELDS = ("is_member_of_exhibit", "is_member_of_grid", "is_member_of_timeline")

# Hard deletes must remove children before parents.
PURGE_ORDER: tuple[RecordKind, ...] = (
    RecordKind.GRID_ITEM,
    RecordKind.TIMELINE_ITEM,
    RecordKind.HEADING,
    RecordKind.ITEM,
    RecordKind.GRID,
    RecordKind.TIMELINE,
    RecordKind.EXHIBIT,
)


def _validation_message(exc: pydantic.ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(piece) for piece in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


class ContentStore:
    """Typed access to exhibits and their descendants.

    Each call opens its own session in a worker thread so that concurrent
    fan-out operations never share a session. Queries are bounded by
    ``query_timeout`` seconds; expiry surfaces as ``StoreError``.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        query_timeout: float = QUERY_TIMEOUT_SECONDS,
    ) -> None:
        self.session_factory = session_factory
        self.query_timeout = query_timeout

    # -- plumbing ---------------------------------------------------------

    def _in_session(self, abandoned: threading.Event, work: Callable[..., Any], *args: Any) -> Any:
        db: Session = self.session_factory()

        def refuse_abandoned_commit(session: Session) -> None:
            if abandoned.is_set():
                raise StoreError("commit refused; the caller already timed out")

        event.listen(db, "before_commit", refuse_abandoned_commit)
        try:
            return work(db, *args)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    async def _run(self, operation: str, work: Callable[..., Any], *args: Any) -> Any:
        # The worker thread outlives a timeout; the flag stops it from committing afterwards.
        abandoned = threading.Event()
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._in_session, abandoned, work, *args),
                timeout=self.query_timeout,
            )
        except asyncio.TimeoutError as exc:
            abandoned.set()
            raise StoreError(f"{operation} timed out after {self.query_timeout}s") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"{operation} failed: {exc}") from exc

    async def _run_flag(self, operation: str, work: Callable[..., Any], *args: Any) -> bool:
        """Run a mutation whose failure is reported as ``False`` rather than raised."""

        try:
            return bool(await self._run(operation, work, *args))
        except StoreError as exc:
            logger.error("%s failed: %s", operation, exc.message)
            return False

    @staticmethod
    def _live(db: Session, kind: RecordKind, parent_id: UUID):
        spec = KIND_SPECS[kind]
        model = spec.model
        query = db.query(model).filter(model.is_deleted.is_(False))
        if spec.parent_field is None:
            return query.filter(model.id == parent_id)
        return query.filter(getattr(model, spec.parent_field) == parent_id)

    @staticmethod
    def _ordered(query, model):
        return query.order_by(model.order.asc(), model.created.asc(), model.id.asc())

    @staticmethod
    def _require_live(db: Session, kind: RecordKind, record_id: UUID) -> Any:
        model = KIND_SPECS[kind].model
        record = (
            db.query(model)
            .filter(model.id == record_id, model.is_deleted.is_(False))
            .first()
        )
        if record is None:
            raise NotFound(f"{kind.value} {record_id} not found")
        return record

    def _check_parents(self, db: Session, kind: RecordKind, values: Mapping[str, Any]) -> None:
        spec = KIND_SPECS[kind]
        if spec.parent_kind is None:
            return
        parent = self._require_live(db, spec.parent_kind, values[spec.parent_field])
        if spec.parent_kind in CONTAINER_KINDS:
            exhibit_id = values["is_member_of_exhibit"]
            self._require_live(db, RecordKind.EXHIBIT, exhibit_id)
            if parent.is_member_of_exhibit != exhibit_id:
                raise ValidationError(
                    f"{spec.parent_kind.value} {parent.id} does not belong to exhibit {exhibit_id}"
                )

    # -- create / read ----------------------------------------------------

    async def create(self, kind: RecordKind | str, data: Mapping[str, Any] | pydantic.BaseModel) -> Any:
        """Insert a record and return it as read back inside the same transaction."""

        kind = RecordKind.parse(kind)
        if isinstance(data, pydantic.BaseModel):
            data = data.model_dump()
        data = dict(data)
        for field in PARENT_FIELDS:
            if field in data:
                data[field] = validate_uuid(data[field], field)
        try:
            payload = CREATE_SCHEMAS[kind].model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        values = payload.model_dump()
        if values.get("order") is None:
            values["order"] = 0

        def work(db: Session):
            self._check_parents(db, kind, values)
            model = KIND_SPECS[kind].model
            record = model(**values)
            db.add(record)
            db.flush()
            created = db.get(model, record.id)
            db.commit()
            return created

        return await self._run(f"create {kind.value}", work)

    async def get_by_parent(self, kind: RecordKind | str, parent_id: UUID | str) -> list[Any]:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        model = KIND_SPECS[kind].model

        def work(db: Session):
            return self._ordered(self._live(db, kind, parent_uuid), model).all()

        return await self._run(f"list {kind.value}", work)

    async def get_one(self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str) -> Any:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            record = self._live(db, kind, parent_uuid).filter(model.id == record_uuid).first()
            if record is None:
                raise NotFound(f"{kind.value} {record_uuid} not found")
            return record

        return await self._run(f"get {kind.value}", work)

    async def get_exhibit(self, exhibit_id: UUID | str) -> models.Exhibit:
        return await self.get_one(RecordKind.EXHIBIT, exhibit_id, exhibit_id)

    async def find(self, kind: RecordKind | str, record_id: UUID | str) -> Any:
        """Look up a live record by id alone, for callers that do not know its parent."""

        kind = RecordKind.parse(kind)
        record_uuid = validate_uuid(record_id)
        return await self._run(f"find {kind.value}", self._require_live, kind, record_uuid)

    async def list_exhibits(self) -> list[models.Exhibit]:
        model = models.Exhibit

        def work(db: Session):
            query = db.query(model).filter(model.is_deleted.is_(False))
            return self._ordered(query, model).all()

        return await self._run("list exhibits", work)

    async def count(self, kind: RecordKind | str, parent_id: UUID | str) -> int:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")

        def work(db: Session):
            return self._live(db, kind, parent_uuid).count()

        return await self._run(f"count {kind.value}", work)

    async def count_first_level(self, exhibit_id: UUID | str) -> int:
        """Live headings, items, grids, and timelines under one exhibit."""

        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")

        def work(db: Session):
            return sum(self._live(db, kind, exhibit_uuid).count() for kind in FIRST_LEVEL_KINDS)

        return await self._run("count exhibit children", work)

    # -- updates ----------------------------------------------------------

    async def update(
        self,
        kind: RecordKind | str,
        parent_id: UUID | str,
        record_id: UUID | str,
        patch: Mapping[str, Any] | pydantic.BaseModel,
    ) -> bool:
        """Apply ``patch`` to one live record; identity and parent fields are immutable."""

        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        if isinstance(patch, pydantic.BaseModel):
            patch = patch.model_dump(exclude_unset=True)
        protected = {"id", "uuid", *PARENT_FIELDS} & set(patch)
        if protected:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(protected))}")
        try:
            values = UPDATE_SCHEMAS[kind].model_validate(dict(patch)).model_dump(exclude_unset=True)
        except pydantic.ValidationError as exc:
            raise ValidationError(_validation_message(exc)) from exc
        if not values:
            return True
        model = KIND_SPECS[kind].model
        values["updated"] = models.utcnow()

        def work(db: Session):
            count = (
                self._live(db, kind, parent_uuid)
                .filter(model.id == record_uuid)
                .update(values, synchronize_session=False)
            )
            db.commit()
            return count > 0

        return await self._run_flag(f"update {kind.value} {record_uuid}", work)

    async def set_order(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, order: int
    ) -> bool:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        if order < 0:
            raise ValidationError(f"order must be non-negative, got {order}")
        model = KIND_SPECS[kind].model

        def work(db: Session):
            count = (
                self._live(db, kind, parent_uuid)
                .filter(model.id == record_uuid)
                .update({"order": order, "updated": models.utcnow()}, synchronize_session=False)
            )
            db.commit()
            return count > 0

        return await self._run_flag(f"reorder {kind.value} {record_uuid}", work)

    async def soft_delete(self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str) -> bool:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            count = (
                self._live(db, kind, parent_uuid)
                .filter(model.id == record_uuid)
                .update({"is_deleted": True, "updated": models.utcnow()}, synchronize_session=False)
            )
            db.commit()
            return count > 0

        return await self._run_flag(f"delete {kind.value} {record_uuid}", work)

    async def soft_delete_children(self, kind: RecordKind | str, parent_id: UUID | str) -> bool:
        """Soft-delete every live record of ``kind`` under ``parent_id``."""

        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")

        def work(db: Session):
            self._live(db, kind, parent_uuid).update(
                {"is_deleted": True, "updated": models.utcnow()}, synchronize_session=False
            )
            db.commit()
            return True

        return await self._run_flag(f"delete {kind.value} under {parent_uuid}", work)

    # -- publication flags ------------------------------------------------

    async def set_published(self, kind: RecordKind | str, parent_id: UUID | str, value: bool) -> bool:
        """Flip ``is_published`` on every live record of ``kind`` under ``parent_id``.

        For the exhibit kind the parent id is the exhibit itself; publishing it
        clears the preview flag and stamps ``last_published_at``.
        """

        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        values: dict[str, Any] = {"is_published": bool(value), "updated": models.utcnow()}
        if kind is RecordKind.EXHIBIT and value:
            values["is_preview"] = False
            values["last_published_at"] = models.utcnow()

        def work(db: Session):
            count = self._live(db, kind, parent_uuid).update(values, synchronize_session=False)
            db.commit()
            if kind is RecordKind.EXHIBIT:
                return count > 0
            return True

        state = "publish" if value else "suppress"
        return await self._run_flag(f"{state} {kind.value} under {parent_uuid}", work)

    async def set_record_published(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, value: bool
    ) -> bool:
        kind = RecordKind.parse(kind)
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            count = (
                self._live(db, kind, parent_uuid)
                .filter(model.id == record_uuid)
                .update({"is_published": bool(value), "updated": models.utcnow()}, synchronize_session=False)
            )
            db.commit()
            return count > 0

        state = "publish" if value else "suppress"
        return await self._run_flag(f"{state} {kind.value} {record_uuid}", work)

    async def set_preview(self, exhibit_id: UUID | str, value: bool) -> bool:
        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")

        def work(db: Session):
            count = self._live(db, RecordKind.EXHIBIT, exhibit_uuid).update(
                {"is_preview": bool(value), "updated": models.utcnow()}, synchronize_session=False
            )
            db.commit()
            return count > 0

        return await self._run_flag(f"set preview {exhibit_uuid}", work)

    async def revert_exhibit_publication(
        self, exhibit_id: UUID | str, is_preview: bool, last_published_at: datetime | None
    ) -> bool:
        """Undo ``set_published(EXHIBIT, True)``, restoring the columns it overwrote."""

        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        values = {
            "is_published": False,
            "is_preview": bool(is_preview),
            "last_published_at": last_published_at,
            "updated": models.utcnow(),
        }

        def work(db: Session):
            count = self._live(db, RecordKind.EXHIBIT, exhibit_uuid).update(values, synchronize_session=False)
            db.commit()
            return count > 0

        return await self._run_flag(f"revert publication of {exhibit_uuid}", work)

    # -- advisory locks ---------------------------------------------------

    async def acquire_lock(
        self,
        kind: RecordKind | str,
        record_id: UUID | str,
        user: str,
        now: datetime,
        stale_before: datetime | None = None,
    ) -> tuple[bool, Any]:
        """Compare-and-set the lock columns; returns ``(acquired, record)``."""

        kind = RecordKind.parse(kind)
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            free = [model.is_locked.is_(False), model.locked_by_user.is_(None)]
            if stale_before is not None:
                free.append(model.locked_at < stale_before)
            count = (
                db.query(model)
                .filter(model.id == record_uuid, model.is_deleted.is_(False), or_(*free))
                .update(
                    {"is_locked": True, "locked_by_user": user, "locked_at": now},
                    synchronize_session=False,
                )
            )
            db.commit()
            record = self._require_live(db, kind, record_uuid)
            return count > 0, record

        return await self._run(f"lock {kind.value} {record_uuid}", work)

    async def release_lock(
        self, kind: RecordKind | str, record_id: UUID | str, user: str, force: bool = False
    ) -> tuple[bool, Any]:
        """Clear the lock when held by ``user`` (or any holder with ``force``).

        Returns ``(changed, record)``; the record reflects the state after the call.
        """

        kind = RecordKind.parse(kind)
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            query = db.query(model).filter(
                model.id == record_uuid,
                model.is_deleted.is_(False),
                model.is_locked.is_(True),
            )
            if not force:
                query = query.filter(model.locked_by_user == user)
            count = query.update(
                {"is_locked": False, "locked_by_user": None, "locked_at": None},
                synchronize_session=False,
            )
            db.commit()
            record = self._require_live(db, kind, record_uuid)
            return count > 0, record

        return await self._run(f"unlock {kind.value} {record_uuid}", work)

    async def release_locks_older_than(self, stale_before: datetime) -> int:
        def work(db: Session):
            released = 0
            for spec in KIND_SPECS.values():
                model = spec.model
                released += (
                    db.query(model)
                    .filter(model.is_locked.is_(True), model.locked_at < stale_before)
                    .update(
                        {"is_locked": False, "locked_by_user": None, "locked_at": None},
                        synchronize_session=False,
                    )
                )
            db.commit()
            return released

        return await self._run("release expired locks", work)

    # -- trash ------------------------------------------------------------

    async def list_trashed(self, kinds: Iterable[RecordKind | str] | None = None) -> dict[RecordKind, list[Any]]:
        selected = [RecordKind.parse(kind) for kind in kinds] if kinds else list(RecordKind)

        def work(db: Session):
            trashed: dict[RecordKind, list[Any]] = {}
            for kind in selected:
                model = KIND_SPECS[kind].model
                trashed[kind] = (
                    db.query(model)
                    .filter(model.is_deleted.is_(True))
                    .order_by(model.updated.desc(), model.id.asc())
                    .all()
                )
            return trashed

        return await self._run("list trash", work)

    async def restore(self, kind: RecordKind | str, record_id: UUID | str) -> Any:
        """Clear ``is_deleted`` on a trashed record whose parent chain is live."""

        kind = RecordKind.parse(kind)
        record_uuid = validate_uuid(record_id)
        spec = KIND_SPECS[kind]
        model = spec.model

        def work(db: Session):
            record = (
                db.query(model)
                .filter(model.id == record_uuid, model.is_deleted.is_(True))
                .first()
            )
            if record is None:
                raise NotFound(f"trashed {kind.value} {record_uuid} not found")
            if spec.parent_kind is not None:
                self._check_parents(db, kind, {
                    field: getattr(record, field)
                    for field in PARENT_FIELDS
                    if hasattr(record, field)
                })
            record.is_deleted = False
            record.is_published = False
            record.updated = models.utcnow()
            db.commit()
            return record

        return await self._run(f"restore {kind.value} {record_uuid}", work)

    def _descendant_filters(self, kind: RecordKind, record_id: UUID) -> list[tuple[RecordKind, Any]]:
        """(kind, filter) pairs covering every row beneath a record, children first."""

        if kind is RecordKind.EXHIBIT:
            return [
                (child, KIND_SPECS[child].model.is_member_of_exhibit == record_id)
                for child in PURGE_ORDER
                if child is not RecordKind.EXHIBIT
            ]
        child_kind = KIND_SPECS[kind].child_kind
        if child_kind is None:
            return []
        child_spec = KIND_SPECS[child_kind]
        return [(child_kind, getattr(child_spec.model, child_spec.parent_field) == record_id)]

    async def purge(self, kind: RecordKind | str, record_id: UUID | str) -> int:
        """Hard-delete a trashed record and everything beneath it; irreversible."""

        kind = RecordKind.parse(kind)
        record_uuid = validate_uuid(record_id)
        model = KIND_SPECS[kind].model

        def work(db: Session):
            record = (
                db.query(model)
                .filter(model.id == record_uuid, model.is_deleted.is_(True))
                .first()
            )
            if record is None:
                raise NotFound(f"trashed {kind.value} {record_uuid} not found")
            removed = 0
            for child_kind, criterion in self._descendant_filters(kind, record_uuid):
                removed += (
                    db.query(KIND_SPECS[child_kind].model)
                    .filter(criterion)
                    .delete(synchronize_session=False)
                )
            db.delete(record)
            db.commit()
            return removed + 1

        return await self._run(f"purge {kind.value} {record_uuid}", work)

    async def purge_trashed(self) -> dict[str, int]:
        """Hard-delete every trashed record, children before parents."""

        def work(db: Session):
            trashed_exhibits = [
                row.id
                for row in db.query(models.Exhibit.id).filter(models.Exhibit.is_deleted.is_(True))
            ]
            trashed_containers = {
                container: [
                    row.id
                    for row in db.query(KIND_SPECS[container].model.id).filter(
                        or_(
                            KIND_SPECS[container].model.is_deleted.is_(True),
                            KIND_SPECS[container].model.is_member_of_exhibit.in_(trashed_exhibits),
                        )
                    )
                ]
                for container in CONTAINER_KINDS
            }
            removed: dict[str, int] = {}
            for kind in PURGE_ORDER:
                spec = KIND_SPECS[kind]
                model = spec.model
                criteria = [model.is_deleted.is_(True)]
                if kind is not RecordKind.EXHIBIT:
                    criteria.append(model.is_member_of_exhibit.in_(trashed_exhibits))
                if spec.parent_kind in CONTAINER_KINDS:
                    criteria.append(
                        getattr(model, spec.parent_field).in_(trashed_containers[spec.parent_kind])
                    )
                removed[kind.value] = (
                    db.query(model).filter(or_(*criteria)).delete(synchronize_session=False)
                )
            db.commit()
            return removed

        return await self._run("purge trash", work)
