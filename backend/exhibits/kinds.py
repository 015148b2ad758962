"""Closed set of exhibit record kinds and their table/parent wiring."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Type

from . import models
from .errors import ValidationError

# purpose: single dispatch table so store, ordering, and publication code share one notion of a kind
# inputs: RecordKind members
# outputs: ORM model, parent column name, parent kind, nested child kind
# status: pilot


class RecordKind(str, Enum):
    EXHIBIT = "exhibit"
    HEADING = "heading"
    ITEM = "item"
    GRID = "grid"
    GRID_ITEM = "grid_item"
    TIMELINE = "timeline"
    TIMELINE_ITEM = "timeline_item"

    @classmethod
    def parse(cls, value: "RecordKind | str") -> "RecordKind":
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower().replace("-", "_")
        aliases = {"griditem": "grid_item", "timelineitem": "timeline_item"}
        try:
            return cls(aliases.get(normalized, normalized))
        except ValueError as exc:
            raise ValidationError(f"Unknown record kind: {value!r}") from exc


@dataclass(frozen=True)
class KindSpec:
    kind: RecordKind
    model: Type[models.Base]
    parent_field: str | None
    parent_kind: RecordKind | None
    child_kind: RecordKind | None = None


KIND_SPECS: dict[RecordKind, KindSpec] = {
    RecordKind.EXHIBIT: KindSpec(RecordKind.EXHIBIT, models.Exhibit, None, None),
    RecordKind.HEADING: KindSpec(
        RecordKind.HEADING, models.Heading, "is_member_of_exhibit", RecordKind.EXHIBIT
    ),
    RecordKind.ITEM: KindSpec(
        RecordKind.ITEM, models.Item, "is_member_of_exhibit", RecordKind.EXHIBIT
    ),
    RecordKind.GRID: KindSpec(
        RecordKind.GRID,
        models.Grid,
        "is_member_of_exhibit",
        RecordKind.EXHIBIT,
        child_kind=RecordKind.GRID_ITEM,
    ),
    RecordKind.GRID_ITEM: KindSpec(
        RecordKind.GRID_ITEM, models.GridItem, "is_member_of_grid", RecordKind.GRID
    ),
    RecordKind.TIMELINE: KindSpec(
        RecordKind.TIMELINE,
        models.Timeline,
        "is_member_of_exhibit",
        RecordKind.EXHIBIT,
        child_kind=RecordKind.TIMELINE_ITEM,
    ),
    RecordKind.TIMELINE_ITEM: KindSpec(
        RecordKind.TIMELINE_ITEM,
        models.TimelineItem,
        "is_member_of_timeline",
        RecordKind.TIMELINE,
    ),
}

# Direct children of an exhibit; they share one order sequence.
FIRST_LEVEL_KINDS: tuple[RecordKind, ...] = (
    RecordKind.HEADING,
    RecordKind.ITEM,
    RecordKind.GRID,
    RecordKind.TIMELINE,
)

# Kinds whose live children are nested into their index document.
CONTAINER_KINDS: tuple[RecordKind, ...] = (RecordKind.GRID, RecordKind.TIMELINE)

PUBLISHABLE_KINDS: tuple[RecordKind, ...] = (RecordKind.EXHIBIT,) + FIRST_LEVEL_KINDS
