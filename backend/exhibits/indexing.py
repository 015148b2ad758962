"""Index Synchronizer: keeps search index documents in step with the content store."""

from __future__ import annotations

import asyncio
import logging
import os
import weakref
from enum import Enum
from typing import Any, Callable, Iterable, Optional
from uuid import UUID

from . import documents
from .errors import IndexConflict, NotFound, SearchIndexError
from .fanout import FanOutReport, settle_labeled
from .kinds import FIRST_LEVEL_KINDS, KIND_SPECS, RecordKind
from .search import SearchIndex
from .store import ContentStore

# purpose: build, upsert, delete, and patch index documents for exhibits and their components
# inputs: store records, search index backend
# outputs: ack booleans, IndexResult values, FanOutReport for multi-document batches
# status: pilot

logger = logging.getLogger(__name__)

PATCH_ATTEMPTS = int(os.getenv("EXHIBITS_INDEX_PATCH_ATTEMPTS", "5"))


class IndexResult(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class IndexSynchronizer:
    """Writes projections of store records to a ``SearchIndex``.

    Nested grid/timeline documents are patched with read-modify-write cycles.
    Within a process, patches of one parent run under that parent's lock;
    across processes, each write is conditional on the version that was read
    and a lost race is retried from a fresh read.
    """

    def __init__(self, index: SearchIndex, store: ContentStore, patch_attempts: int = PATCH_ATTEMPTS) -> None:
        self.index = index
        self.store = store
        self.patch_attempts = patch_attempts
        self._parent_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # -- single documents -------------------------------------------------

    def build_document(
        self, kind: RecordKind | str, record: Any, children: Iterable[Any] | None = None
    ) -> dict[str, Any]:
        return documents.build_document(kind, record, children)

    async def upsert(self, document: dict[str, Any], version: Any = None) -> bool:
        """Write ``document``; ``False`` on failure.

        A conditional write (``version`` set) that loses a race raises
        ``IndexConflict`` so the caller can retry from a fresh read.
        """

        doc_id = document["uuid"]
        try:
            acknowledged = await self.index.index(doc_id, document, version=version)
        except IndexConflict:
            raise
        except SearchIndexError as exc:
            logger.error("index upsert failed for %s: %s", doc_id, exc.message)
            return False
        if not acknowledged:
            logger.error("index upsert for %s was not acknowledged", doc_id)
        return acknowledged

    async def delete(self, doc_id: UUID | str) -> IndexResult:
        doc_id = str(doc_id)
        try:
            found = await self.index.delete(doc_id)
        except SearchIndexError as exc:
            logger.error("index delete failed for %s: %s", doc_id, exc.message)
            return IndexResult.FAILED
        if not found:
            logger.info("index document %s not found; nothing to delete", doc_id)
            return IndexResult.NOT_FOUND
        return IndexResult.DELETED

    async def remove(self, doc_id: UUID | str) -> bool:
        """Delete where a missing document counts as success."""

        return await self.delete(doc_id) is not IndexResult.FAILED

    async def get(self, doc_id: UUID | str) -> dict[str, Any]:
        document = await self.index.get(str(doc_id))
        if document is None:
            raise NotFound(f"index document {doc_id} not found")
        return document

    async def exists(self, doc_id: UUID | str) -> bool:
        return await self.index.get(str(doc_id)) is not None

    # -- nested patches ---------------------------------------------------

    def _lock_for(self, parent_id: str) -> asyncio.Lock:
        lock = self._parent_locks.get(parent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._parent_locks[parent_id] = lock
        return lock

    async def _patch_items(
        self,
        parent_id: str,
        change: Callable[[list[dict[str, Any]]], Optional[list[dict[str, Any]]]],
    ) -> bool:
        """Apply ``change`` to the parent's ``items``; ``None`` from it means nothing to write."""

        lock = self._lock_for(parent_id)
        async with lock:
            for attempt in range(1, self.patch_attempts + 1):
                fetched = await self.index.get_versioned(parent_id)
                if fetched is None:
                    raise NotFound(f"index document {parent_id} not found")
                parent, version = fetched
                items = change(parent.get("items", []))
                if items is None:
                    return True
                parent["items"] = items
                try:
                    return await self.upsert(parent, version=version)
                except IndexConflict:
                    logger.info("patch of %s lost a concurrent write (attempt %s)", parent_id, attempt)
            logger.error("patch of %s abandoned after %s conflicting writes", parent_id, self.patch_attempts)
            return False

    async def patch_append_child(self, parent_id: UUID | str, child: dict[str, Any]) -> bool:
        """Insert or replace ``child`` in the parent's ``items`` and re-upsert the parent."""

        def append(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
            kept = [item for item in items if item.get("uuid") != child["uuid"]]
            kept.append(child)
            return documents.sort_items(kept)

        return await self._patch_items(str(parent_id), append)

    async def patch_remove_child(self, parent_id: UUID | str, child_id: UUID | str) -> bool:
        child_id = str(child_id)

        def remove(items: list[dict[str, Any]]) -> Optional[list[dict[str, Any]]]:
            remaining = [item for item in items if item.get("uuid") != child_id]
            if len(remaining) == len(items):
                return None
            return remaining

        return await self._patch_items(str(parent_id), remove)

    # -- tree projections -------------------------------------------------

    async def component_document(self, kind: RecordKind, record: Any) -> dict[str, Any]:
        """Document for a first-level record, with live children for grids/timelines."""

        child_kind = KIND_SPECS[kind].child_kind
        children = None
        if child_kind is not None:
            children = await self.store.get_by_parent(child_kind, record.id)
        return documents.build_document(kind, record, children)

    async def component_documents(self, exhibit_id: UUID | str) -> list[tuple[RecordKind, dict[str, Any]]]:
        """Documents for every live heading, item, grid, and timeline of an exhibit."""

        listings = await asyncio.gather(
            *(self.store.get_by_parent(kind, exhibit_id) for kind in FIRST_LEVEL_KINDS)
        )
        pending = [
            (kind, self.component_document(kind, record))
            for kind, records in zip(FIRST_LEVEL_KINDS, listings)
            for record in records
        ]
        built = await asyncio.gather(*(coroutine for _, coroutine in pending))
        return [(kind, document) for (kind, _), document in zip(pending, built)]

    async def exhibit_document(self, exhibit_id: UUID | str) -> dict[str, Any]:
        exhibit = await self.store.get_exhibit(exhibit_id)
        return documents.build_document(RecordKind.EXHIBIT, exhibit)

    async def preview_document(self, exhibit_id: UUID | str) -> dict[str, Any]:
        exhibit = await self.store.get_exhibit(exhibit_id)
        components = await self.component_documents(exhibit_id)
        return documents.build_preview_document(exhibit, (document for _, document in components))

    async def index_components(self, exhibit_id: UUID | str) -> FanOutReport:
        """Upsert every component document of an exhibit, settle-all."""

        components = await self.component_documents(exhibit_id)
        return await settle_labeled(
            "index component",
            ((document["uuid"], self.upsert(document)) for _, document in components),
        )

    async def remove_documents(self, doc_ids: Iterable[UUID | str]) -> FanOutReport:
        return await settle_labeled(
            "remove index document",
            ((str(doc_id), self.remove(doc_id)) for doc_id in doc_ids),
        )
