import asyncio
import time
import uuid

import pytest

from exhibits import models
from exhibits.errors import NotFound, StoreError, ValidationError
from exhibits.kinds import RecordKind
from exhibits.store import ContentStore

from conftest import make_exhibit, make_tree


async def test_create_returns_read_back_record(store):
    exhibit = await make_exhibit(store, subtitle="Lighthouses of the coast")
    assert exhibit.id is not None
    assert exhibit.subtitle == "Lighthouses of the coast"
    assert exhibit.is_published is False
    assert exhibit.is_deleted is False
    assert exhibit.styles == {}


async def test_create_rejects_unknown_fields(store):
    with pytest.raises(ValidationError):
        await store.create(RecordKind.EXHIBIT, {"title": "A", "colour": "red"})


async def test_create_requires_live_parent(store):
    with pytest.raises(NotFound):
        await store.create(RecordKind.HEADING, {"is_member_of_exhibit": uuid.uuid4(), "text": "Orphan"})


async def test_container_items_must_share_the_exhibit(store):
    tree = await make_tree(store)
    other = await make_exhibit(store, title="Other")
    with pytest.raises(ValidationError):
        await store.create(
            RecordKind.GRID_ITEM,
            {"is_member_of_grid": tree["grid"].id, "is_member_of_exhibit": other.id, "title": "Stray"},
        )


async def test_get_by_parent_is_ordered_and_skips_deleted(store):
    tree = await make_tree(store)
    grid = tree["grid"]
    first, second = tree["grid_items"]
    await store.set_order(RecordKind.GRID_ITEM, grid.id, first.id, 5)
    await store.soft_delete(RecordKind.GRID_ITEM, grid.id, second.id)
    late = await store.create(
        RecordKind.GRID_ITEM,
        {"is_member_of_grid": grid.id, "is_member_of_exhibit": tree["exhibit"].id, "order": 1},
    )

    listed = await store.get_by_parent(RecordKind.GRID_ITEM, grid.id)
    assert [record.id for record in listed] == [late.id, first.id]


async def test_get_one_is_scoped_by_parent(store):
    tree = await make_tree(store)
    other = await make_exhibit(store, title="Other")
    heading = tree["heading"]
    found = await store.get_one(RecordKind.HEADING, tree["exhibit"].id, heading.id)
    assert found.text == "Introduction"
    with pytest.raises(NotFound):
        await store.get_one(RecordKind.HEADING, other.id, heading.id)


async def test_invalid_identifier_fails_before_io(store):
    with pytest.raises(ValidationError):
        await store.get_by_parent(RecordKind.ITEM, "not-a-uuid")


async def test_update_applies_patch_and_protects_parent(store):
    tree = await make_tree(store)
    exhibit_id = tree["exhibit"].id
    item = tree["item"]
    assert await store.update(RecordKind.ITEM, exhibit_id, item.id, {"caption": "Drawn 1850"})
    refreshed = await store.get_one(RecordKind.ITEM, exhibit_id, item.id)
    assert refreshed.caption == "Drawn 1850"

    with pytest.raises(ValidationError):
        await store.update(RecordKind.ITEM, exhibit_id, item.id, {"is_member_of_exhibit": str(uuid.uuid4())})


async def test_update_of_missing_record_returns_false(store):
    exhibit = await make_exhibit(store)
    assert await store.update(RecordKind.HEADING, exhibit.id, uuid.uuid4(), {"text": "x"}) is False


async def test_set_published_flips_every_live_child(store):
    tree = await make_tree(store)
    exhibit_id = tree["exhibit"].id
    assert await store.set_published(RecordKind.GRID_ITEM, tree["grid"].id, True)
    items = await store.get_by_parent(RecordKind.GRID_ITEM, tree["grid"].id)
    assert all(record.is_published for record in items)

    assert await store.set_published(RecordKind.EXHIBIT, exhibit_id, True)
    exhibit = await store.get_exhibit(exhibit_id)
    assert exhibit.is_published and exhibit.last_published_at is not None
    assert await store.set_published(RecordKind.EXHIBIT, uuid.uuid4(), True) is False


async def test_count_first_level_spans_kinds(store):
    tree = await make_tree(store)
    assert await store.count_first_level(tree["exhibit"].id) == 4
    await store.soft_delete(RecordKind.HEADING, tree["exhibit"].id, tree["heading"].id)
    assert await store.count_first_level(tree["exhibit"].id) == 3


async def test_query_timeout_surfaces_as_store_error(session_factory):
    slow = ContentStore(session_factory, query_timeout=0.01)

    def stall(db):
        time.sleep(0.2)

    with pytest.raises(StoreError):
        await slow._run("stall", stall)


async def test_timed_out_write_is_not_committed_later(store, session_factory):
    exhibit = await make_exhibit(store)
    slow = ContentStore(session_factory, query_timeout=0.05)

    def slow_rename(db):
        time.sleep(0.2)
        db.query(models.Exhibit).filter(models.Exhibit.id == exhibit.id).update(
            {"title": "Renamed"}, synchronize_session=False
        )
        db.commit()

    with pytest.raises(StoreError):
        await slow._run("rename", slow_rename)
    await asyncio.sleep(0.4)

    assert (await store.get_exhibit(exhibit.id)).title == "Harbor Lights"
