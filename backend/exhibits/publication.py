"""Publication State Machine: tree-wide publish, suppress, preview, and delete transitions."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import UUID

from .errors import NotFound, SearchIndexError, StoreError, ValidationError
from .fanout import FanOutReport, settle_labeled
from .identifiers import validate_uuid
from .indexing import IndexResult, IndexSynchronizer
from .kinds import CONTAINER_KINDS, FIRST_LEVEL_KINDS, KIND_SPECS, PUBLISHABLE_KINDS, RecordKind
from .schemas import OperationResult
from .store import ContentStore

# purpose: drive exhibit state transitions across every descendant kind with settle-all failure accounting
# inputs: exhibit ids (and record kind/parent/id for single-record transitions)
# outputs: OperationResult envelopes with ok, no_items, published, invalid, partial_failure, or error status
# status: pilot

logger = logging.getLogger(__name__)

COMPENSATE_ON_FAILURE = os.getenv("EXHIBITS_COMPENSATE_ON_FAILURE", "0") == "1"


class ExhibitState(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    SUPPRESSED = "suppressed"
    PREVIEW_ONLY = "preview_only"
    DELETED = "deleted"


def derive_state(exhibit: Any) -> ExhibitState:
    """State is read off the stored flags; nothing persists it directly."""

    if exhibit.is_deleted:
        return ExhibitState.DELETED
    if exhibit.is_published:
        return ExhibitState.PUBLISHED
    if exhibit.is_preview:
        return ExhibitState.PREVIEW_ONLY
    if exhibit.last_published_at is not None:
        return ExhibitState.SUPPRESSED
    return ExhibitState.DRAFT


@dataclass(slots=True)
class FlagSweep:
    """Flag flips attempted by one publish/suppress pass and the ones that landed."""

    report: FanOutReport = field(default_factory=FanOutReport)
    applied: list[tuple[RecordKind, UUID]] = field(default_factory=list)


def _failure_data(exhibit_id: UUID, report: FanOutReport, **extra: Any) -> dict[str, Any]:
    data = {"uuid": str(exhibit_id), "failed": report.failed}
    data.update(extra)
    return data


class PublicationStateMachine:
    def __init__(
        self,
        store: ContentStore,
        indexer: IndexSynchronizer,
        compensate_on_failure: bool = COMPENSATE_ON_FAILURE,
    ) -> None:
        self.store = store
        self.indexer = indexer
        self.compensate_on_failure = compensate_on_failure

    # -- flag sweeps ------------------------------------------------------

    async def _flip(self, sweep: FlagSweep, operation: str, steps: list[tuple[str, RecordKind, UUID]], value: bool) -> None:
        report = await settle_labeled(
            operation,
            ((label, self.store.set_published(kind, parent_id, value)) for label, kind, parent_id in steps),
        )
        succeeded = set(report.succeeded)
        sweep.applied.extend((kind, parent_id) for label, kind, parent_id in steps if label in succeeded)
        sweep.report.merge(report)

    async def _live_containers(self, exhibit_id: UUID, sweep: FlagSweep) -> list[tuple[RecordKind, Any]]:
        listings = await asyncio.gather(
            *(self.store.get_by_parent(kind, exhibit_id) for kind in CONTAINER_KINDS),
            return_exceptions=True,
        )
        containers = []
        for kind, listing in zip(CONTAINER_KINDS, listings):
            if isinstance(listing, Exception):
                logger.error("could not list %ss of exhibit %s: %s", kind.value, exhibit_id, listing)
                sweep.report.failed.append({"target": f"{kind.value}s", "reason": str(listing)})
                continue
            containers.extend((kind, record) for record in listing)
        return containers

    async def _sweep_tree(self, exhibit_id: UUID, value: bool) -> FlagSweep:
        """Set ``is_published`` on the exhibit, its four child kinds, then container items.

        The first five updates run concurrently. Container items are a second,
        sequenced pass because they are keyed by each live grid and timeline.
        """

        operation = "publish" if value else "suppress"
        sweep = FlagSweep()
        await self._flip(
            sweep,
            operation,
            [(kind.value, kind, exhibit_id) for kind in PUBLISHABLE_KINDS],
            value,
        )
        containers = await self._live_containers(exhibit_id, sweep)
        await self._flip(
            sweep,
            operation,
            [
                (f"{KIND_SPECS[kind].child_kind.value}s of {record.id}", KIND_SPECS[kind].child_kind, record.id)
                for kind, record in containers
            ],
            value,
        )
        return sweep

    async def _compensate(self, sweep: FlagSweep, value: bool, exhibit: Any = None) -> None:
        """Revert the flag updates that landed; ``exhibit`` is the record as read before the sweep."""

        if not sweep.applied:
            return
        logger.warning("reverting %s applied publication flag updates", len(sweep.applied))

        def revert(kind: RecordKind, parent_id: UUID):
            if kind is RecordKind.EXHIBIT and value and exhibit is not None:
                return self.store.revert_exhibit_publication(
                    parent_id, exhibit.is_preview, exhibit.last_published_at
                )
            return self.store.set_published(kind, parent_id, not value)

        await settle_labeled(
            "compensate",
            ((f"{kind.value} under {parent_id}", revert(kind, parent_id)) for kind, parent_id in sweep.applied),
        )

    # -- exhibit transitions ----------------------------------------------

    async def publish(self, exhibit_id: UUID | str, compensate: bool | None = None) -> OperationResult:
        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        exhibit = await self.store.get_exhibit(exhibit_uuid)
        total = await self.store.count_first_level(exhibit_uuid)
        if total == 0:
            logger.info("exhibit %s has no items; publish skipped", exhibit_uuid)
            return OperationResult(
                status="no_items",
                message="Exhibit must contain at least one item to publish",
                data={"uuid": str(exhibit_uuid)},
            )

        sweep = await self._sweep_tree(exhibit_uuid, True)
        if not sweep.report.ok:
            should_compensate = self.compensate_on_failure if compensate is None else compensate
            if should_compensate:
                await self._compensate(sweep, True, exhibit)
            logger.error("unable to publish exhibit %s: %s", exhibit_uuid, sweep.report.failed)
            return OperationResult(
                status="error",
                message="Unable to publish exhibit",
                data=_failure_data(exhibit_uuid, sweep.report, compensated=bool(should_compensate)),
            )

        exhibit_document = await self.indexer.exhibit_document(exhibit_uuid)
        if not await self.indexer.upsert(exhibit_document):
            return OperationResult(
                status="error",
                message="Unable to index exhibit",
                data={"uuid": str(exhibit_uuid)},
            )

        components = await self.indexer.index_components(exhibit_uuid)
        if not components.ok:
            return OperationResult(
                status="partial_failure",
                message=f"{len(components.failed)} of {components.total} components failed to index",
                data=_failure_data(exhibit_uuid, components),
            )
        logger.info("exhibit %s published with %s components", exhibit_uuid, components.total)
        return OperationResult(
            status="ok",
            message="Exhibit published",
            data={"uuid": str(exhibit_uuid), "components": components.total},
        )

    async def suppress(self, exhibit_id: UUID | str) -> OperationResult:
        """Unpublish the tree and remove its documents; removal proceeds even if flags fail."""

        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        await self.store.get_exhibit(exhibit_uuid)
        sweep = await self._sweep_tree(exhibit_uuid, False)

        component_ids: list[str] = []
        for kind in FIRST_LEVEL_KINDS:
            try:
                records = await self.store.get_by_parent(kind, exhibit_uuid)
            except StoreError as exc:
                logger.error("could not list %ss of exhibit %s: %s", kind.value, exhibit_uuid, exc.message)
                sweep.report.failed.append({"target": f"{kind.value}s", "reason": exc.message})
                continue
            component_ids.extend(str(record.id) for record in records)

        removed = FanOutReport()
        if not await self.indexer.remove(exhibit_uuid):
            removed.failed.append({"target": str(exhibit_uuid), "reason": "index delete failed"})
        else:
            removed.succeeded.append(str(exhibit_uuid))
        removed.merge(await self.indexer.remove_documents(component_ids))

        if not sweep.report.ok:
            logger.error("unable to suppress exhibit %s: %s", exhibit_uuid, sweep.report.failed)
            return OperationResult(
                status="error",
                message="Unable to suppress exhibit",
                data=_failure_data(exhibit_uuid, sweep.report, index_failed=removed.failed),
            )
        if not removed.ok:
            return OperationResult(
                status="partial_failure",
                message=f"{len(removed.failed)} of {removed.total} index documents could not be removed",
                data=_failure_data(exhibit_uuid, removed),
            )
        return OperationResult(
            status="ok",
            message="Exhibit suppressed",
            data={"uuid": str(exhibit_uuid), "removed": removed.total},
        )

    async def preview(self, exhibit_id: UUID | str) -> OperationResult:
        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        exhibit = await self.store.get_exhibit(exhibit_uuid)
        if exhibit.is_published:
            return OperationResult(
                status="published",
                message="Exhibit is published; preview not built",
                data={"uuid": str(exhibit_uuid)},
            )
        if not await self.store.set_preview(exhibit_uuid, True):
            return OperationResult(
                status="error",
                message="Unable to preview exhibit",
                data={"uuid": str(exhibit_uuid)},
            )
        document = await self.indexer.preview_document(exhibit_uuid)
        if not await self.indexer.upsert(document):
            return OperationResult(
                status="error",
                message="Unable to index exhibit preview",
                data={"uuid": str(exhibit_uuid)},
            )
        return OperationResult(
            status="ok",
            message="Exhibit preview built",
            data={"uuid": str(exhibit_uuid), "components": len(document["items"])},
        )

    async def unpreview(self, exhibit_id: UUID | str) -> OperationResult:
        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        exhibit = await self.store.get_exhibit(exhibit_uuid)
        if exhibit.is_published:
            return OperationResult(
                status="published",
                message="Exhibit is published; public document left in place",
                data={"uuid": str(exhibit_uuid)},
            )
        flag_cleared = await self.store.set_preview(exhibit_uuid, False)
        result = await self.indexer.delete(exhibit_uuid)
        if not flag_cleared or result is IndexResult.FAILED:
            return OperationResult(
                status="error",
                message="Unable to delete exhibit preview",
                data={"uuid": str(exhibit_uuid), "index": result.value},
            )
        return OperationResult(
            status="ok",
            message="Exhibit preview deleted",
            data={"uuid": str(exhibit_uuid), "index": result.value},
        )

    async def has_preview(self, exhibit_id: UUID | str) -> bool:
        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        try:
            document = await self.indexer.get(exhibit_uuid)
        except NotFound:
            return False
        return document.get("is_preview") == 1

    async def _delete_component(self, exhibit_id: UUID, kind: RecordKind, record: Any) -> bool:
        child_kind = KIND_SPECS[kind].child_kind
        children_deleted = True
        if child_kind is not None:
            children_deleted = await self.store.soft_delete_children(child_kind, record.id)
        record_deleted = await self.store.soft_delete(kind, exhibit_id, record.id)
        return children_deleted and record_deleted

    async def delete(self, exhibit_id: UUID | str) -> OperationResult:
        """Soft-delete the tree children first, then the exhibit, then its documents."""

        exhibit_uuid = validate_uuid(exhibit_id, "exhibit_id")
        await self.store.get_exhibit(exhibit_uuid)
        listings = await asyncio.gather(
            *(self.store.get_by_parent(kind, exhibit_uuid) for kind in FIRST_LEVEL_KINDS)
        )
        components = [
            (kind, record) for kind, records in zip(FIRST_LEVEL_KINDS, listings) for record in records
        ]

        deleted = await settle_labeled(
            "delete component",
            (
                (str(record.id), self._delete_component(exhibit_uuid, kind, record))
                for kind, record in components
            ),
        )
        exhibit_deleted = await self.store.soft_delete(RecordKind.EXHIBIT, exhibit_uuid, exhibit_uuid)
        removed = await self.indexer.remove_documents(
            [str(exhibit_uuid)] + [str(record.id) for _, record in components]
        )

        data = {
            "uuid": str(exhibit_uuid),
            "components": len(components),
            "failed": deleted.failed,
            "index_failed": removed.failed,
        }
        if not exhibit_deleted:
            return OperationResult(status="error", message="Unable to delete exhibit", data=data)
        if not deleted.ok:
            return OperationResult(
                status="partial_failure",
                message=f"{len(deleted.failed)} of {deleted.total} components failed to delete",
                data=data,
            )
        if not removed.ok:
            return OperationResult(
                status="partial_failure",
                message=f"{len(removed.failed)} of {removed.total} index documents could not be removed",
                data=data,
            )
        return OperationResult(status="ok", message="Exhibit deleted", data=data)

    # -- single records ---------------------------------------------------

    async def _require_published_parent(self, kind: RecordKind, parent_id: UUID) -> OperationResult | None:
        spec = KIND_SPECS[kind]
        parent = await self.store.find(spec.parent_kind, parent_id)
        if parent.is_published:
            return None
        return OperationResult(
            status="invalid",
            message=f"{spec.parent_kind.value.capitalize()} must be published first",
            data={"parent_id": str(parent_id)},
        )

    async def publish_record(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str
    ) -> OperationResult:
        """Publish one component; the parent chain must already be public."""

        kind = RecordKind.parse(kind)
        if kind is RecordKind.EXHIBIT:
            raise ValidationError("Use publish to publish an exhibit")
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        record = await self.store.get_one(kind, parent_uuid, record_uuid)
        refused = await self._require_published_parent(kind, parent_uuid)
        if refused is not None:
            return refused
        data = {"uuid": str(record_uuid), "kind": kind.value}

        if kind in FIRST_LEVEL_KINDS:
            flagged = await self.store.set_record_published(kind, parent_uuid, record_uuid, True)
            child_kind = KIND_SPECS[kind].child_kind
            if flagged and child_kind is not None:
                flagged = await self.store.set_published(child_kind, record_uuid, True)
            if not flagged:
                return OperationResult(status="error", message=f"Unable to publish {kind.value}", data=data)
            record = await self.store.get_one(kind, parent_uuid, record_uuid)
            document = await self.indexer.component_document(kind, record)
            if not await self.indexer.upsert(document):
                return OperationResult(status="error", message=f"Unable to index {kind.value}", data=data)
            return OperationResult(status="ok", message=f"{kind.value} published", data=data)

        # Container items live inside their parent's document: patch first, then record the flag.
        record.is_published = True
        document = self.indexer.build_document(kind, record)
        try:
            patched = await self.indexer.patch_append_child(parent_uuid, document)
        except (NotFound, SearchIndexError) as exc:
            logger.error("unable to index %s %s: %s", kind.value, record_uuid, exc.message)
            patched = False
        if not patched:
            return OperationResult(status="error", message=f"Unable to index {kind.value}", data=data)
        if not await self.store.set_record_published(kind, parent_uuid, record_uuid, True):
            return OperationResult(
                status="error",
                message=f"{kind.value} indexed but its published flag was not saved",
                data=data,
            )
        return OperationResult(status="ok", message=f"{kind.value} published", data=data)

    async def suppress_record(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str
    ) -> OperationResult:
        kind = RecordKind.parse(kind)
        if kind is RecordKind.EXHIBIT:
            raise ValidationError("Use suppress to suppress an exhibit")
        parent_uuid = validate_uuid(parent_id, "parent_id")
        record_uuid = validate_uuid(record_id)
        await self.store.get_one(kind, parent_uuid, record_uuid)
        data = {"uuid": str(record_uuid), "kind": kind.value}

        if kind in FIRST_LEVEL_KINDS:
            flagged = await self.store.set_record_published(kind, parent_uuid, record_uuid, False)
            child_kind = KIND_SPECS[kind].child_kind
            if child_kind is not None:
                flagged = await self.store.set_published(child_kind, record_uuid, False) and flagged
            result = await self.indexer.delete(record_uuid)
            data["index"] = result.value
            if not flagged or result is IndexResult.FAILED:
                return OperationResult(status="error", message=f"Unable to suppress {kind.value}", data=data)
            return OperationResult(status="ok", message=f"{kind.value} suppressed", data=data)

        try:
            removed = await self.indexer.patch_remove_child(parent_uuid, record_uuid)
        except NotFound:
            removed = True
        except SearchIndexError as exc:
            logger.error("unable to remove %s %s from index: %s", kind.value, record_uuid, exc.message)
            removed = False
        flagged = await self.store.set_record_published(kind, parent_uuid, record_uuid, False)
        if not removed or not flagged:
            return OperationResult(status="error", message=f"Unable to suppress {kind.value}", data=data)
        return OperationResult(status="ok", message=f"{kind.value} suppressed", data=data)
