"""Sibling ordering for exhibit content."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping
from uuid import UUID

import pydantic

from .errors import ExhibitError
from .fanout import settle_labeled
from .kinds import FIRST_LEVEL_KINDS, RecordKind
from .schemas import ReorderEntry, ReorderReport
from .store import ContentStore

# purpose: append-order assignment and independent positional updates among siblings
# inputs: record kind, parent id, (kind, parent_id, id, order) batches
# outputs: next order values, per-entry reorder outcomes
# status: pilot

logger = logging.getLogger(__name__)


class OrderManager:
    def __init__(self, store: ContentStore) -> None:
        self.store = store

    async def next_order(self, kind: RecordKind | str, parent_id: UUID | str | None = None) -> int:
        """Order for a record appended after its live siblings.

        Headings, items, grids, and timelines share one sequence per exhibit.
        """

        kind = RecordKind.parse(kind)
        if kind is RecordKind.EXHIBIT:
            return len(await self.store.list_exhibits())
        if kind in FIRST_LEVEL_KINDS:
            return await self.store.count_first_level(parent_id)
        return await self.store.count(kind, parent_id)

    async def reorder(
        self, kind: RecordKind | str, parent_id: UUID | str, record_id: UUID | str, new_order: int
    ) -> bool:
        return await self.store.set_order(kind, parent_id, record_id, new_order)

    async def apply(self, batch: Iterable[ReorderEntry | Mapping[str, Any]]) -> ReorderReport:
        """Apply each entry independently; failures are reported, never rolled back."""

        report = ReorderReport()
        labeled = []
        for raw in batch:
            try:
                entry = raw if isinstance(raw, ReorderEntry) else ReorderEntry.model_validate(raw)
                kind = RecordKind.parse(entry.kind)
            except (pydantic.ValidationError, ExhibitError) as exc:
                label = str(raw.get("id")) if isinstance(raw, Mapping) else str(raw)
                report.failed.append({"id": label, "reason": str(exc)})
                continue
            labeled.append((entry.id, self.reorder(kind, entry.parent_id, entry.id, entry.order)))

        settled = await settle_labeled("reorder", labeled)
        report.updated.extend(settled.succeeded)
        report.failed.extend(
            {"id": failure["target"], "reason": failure["reason"]} for failure in settled.failed
        )
        return report

    async def compact(self, exhibit_id: UUID | str) -> int:
        """Renumber live first-level siblings 0..N-1 keeping their current sequence."""

        siblings = []
        for kind in FIRST_LEVEL_KINDS:
            for record in await self.store.get_by_parent(kind, exhibit_id):
                siblings.append((kind, record))
        siblings.sort(key=lambda pair: (pair[1].order, pair[1].created, str(pair[1].id)))
        changed = 0
        for position, (kind, record) in enumerate(siblings):
            if record.order == position:
                continue
            if await self.store.set_order(kind, exhibit_id, record.id, position):
                changed += 1
        logger.info("compacted %s sibling positions under exhibit %s", changed, exhibit_id)
        return changed
