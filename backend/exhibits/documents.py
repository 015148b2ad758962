"""Projections from store records to search index documents."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from .kinds import RecordKind

# purpose: single source of truth for the public index document shape of every record kind
# inputs: detached ORM records (and live children for grids/timelines)
# outputs: JSON-serialisable dictionaries keyed by record uuid
# status: pilot

EXHIBIT_FIELDS = (
    "type",
    "title",
    "subtitle",
    "banner_template",
    "about_the_curators",
    "alert_text",
    "hero_image",
    "thumbnail",
    "description",
    "page_layout",
    "exhibit_template",
    "styles",
    "order",
)

HEADING_FIELDS = ("type", "text", "subtext", "styles", "order")

ITEM_FIELDS = (
    "type",
    "date",
    "title",
    "description",
    "caption",
    "template",
    "item_type",
    "media",
    "thumbnail",
    "url",
    "text",
    "layout",
    "media_width",
    "wrap_text",
    "styles",
    "order",
)

GRID_FIELDS = ("type", "title", "text", "columns", "styles", "order")

TIMELINE_FIELDS = ("type", "title", "text", "description", "styles", "order")

_FIELDS: dict[RecordKind, tuple[str, ...]] = {
    RecordKind.EXHIBIT: EXHIBIT_FIELDS,
    RecordKind.HEADING: HEADING_FIELDS,
    RecordKind.ITEM: ITEM_FIELDS + ("columns",),
    RecordKind.GRID: GRID_FIELDS,
    RecordKind.GRID_ITEM: ITEM_FIELDS,
    RecordKind.TIMELINE: TIMELINE_FIELDS,
    RecordKind.TIMELINE_ITEM: ITEM_FIELDS,
}

_MEMBERSHIP_FIELDS = ("is_member_of_exhibit", "is_member_of_grid", "is_member_of_timeline")


def _serialise(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _flag(value: Any) -> int:
    return 1 if value else 0


def _sort_key(document: dict[str, Any]) -> tuple[int, str]:
    return (document.get("order") or 0, document.get("created") or "")


def sort_items(items: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(items, key=_sort_key)


def build_document(
    kind: RecordKind | str,
    record: Any,
    children: Iterable[Any] | None = None,
) -> dict[str, Any]:
    """Project ``record`` into its index document.

    Grid and timeline documents embed an ``items`` array built with the same
    item projection used for top-level items; soft-deleted children are
    dropped and the rest are sorted by ``order``.
    """

    kind = RecordKind.parse(kind)
    document: dict[str, Any] = {"uuid": str(record.id)}
    for field in _MEMBERSHIP_FIELDS:
        if hasattr(record, field):
            document[field] = str(getattr(record, field))
    for field in _FIELDS[kind]:
        document[field] = _serialise(getattr(record, field, None))
    document["is_published"] = _flag(record.is_published)
    document["created"] = _serialise(record.created)
    if kind is RecordKind.EXHIBIT:
        document["is_featured"] = _flag(record.is_featured)
        document["is_student_curated"] = _flag(record.is_student_curated)
        document["is_preview"] = _flag(record.is_preview)
    if kind in (RecordKind.GRID, RecordKind.TIMELINE):
        child_kind = RecordKind.GRID_ITEM if kind is RecordKind.GRID else RecordKind.TIMELINE_ITEM
        document["items"] = sort_items(
            build_document(child_kind, child)
            for child in (children or [])
            if not child.is_deleted
        )
    return document


def build_preview_document(
    exhibit: Any,
    components: Iterable[dict[str, Any]],
) -> dict[str, Any]:
    """Exhibit document tagged for reviewers with its first-level tree embedded."""

    document = build_document(RecordKind.EXHIBIT, exhibit)
    document["is_preview"] = 1
    document["items"] = sort_items(components)
    return document
