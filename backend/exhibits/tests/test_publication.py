from exhibits.indexing import IndexSynchronizer
from exhibits.kinds import RecordKind
from exhibits.publication import ExhibitState, PublicationStateMachine, derive_state
from exhibits.store import ContentStore

from conftest import make_exhibit, make_tree
from test_indexing import FlakyIndex


class FailingFlagStore(ContentStore):
    """Store whose bulk publication flag update fails for one kind."""

    def __init__(self, session_factory, failing_kind):
        super().__init__(session_factory)
        self.failing_kind = failing_kind

    async def set_published(self, kind, parent_id, value):
        if RecordKind.parse(kind) is self.failing_kind:
            return False
        return await super().set_published(kind, parent_id, value)


async def _flags(store, tree):
    exhibit_id = tree["exhibit"].id
    return {
        "exhibit": (await store.get_exhibit(exhibit_id)).is_published,
        "heading": (await store.find(RecordKind.HEADING, tree["heading"].id)).is_published,
        "item": (await store.find(RecordKind.ITEM, tree["item"].id)).is_published,
        "grid": (await store.find(RecordKind.GRID, tree["grid"].id)).is_published,
        "grid_items": [
            record.is_published for record in await store.get_by_parent(RecordKind.GRID_ITEM, tree["grid"].id)
        ],
        "timeline": (await store.find(RecordKind.TIMELINE, tree["timeline"].id)).is_published,
        "timeline_item": (await store.find(RecordKind.TIMELINE_ITEM, tree["timeline_item"].id)).is_published,
    }


async def test_publish_without_items_changes_nothing(publication, store, search_index):
    exhibit = await make_exhibit(store)
    result = await publication.publish(exhibit.id)
    assert result.status == "no_items"
    assert (await store.get_exhibit(exhibit.id)).is_published is False
    assert search_index.documents == {}


async def test_publish_flags_and_indexes_the_whole_tree(publication, store, search_index):
    tree = await make_tree(store)
    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "ok"
    assert result.data["components"] == 4
    flags = await _flags(store, tree)
    assert flags == {
        "exhibit": True,
        "heading": True,
        "item": True,
        "grid": True,
        "grid_items": [True, True],
        "timeline": True,
        "timeline_item": True,
    }
    exhibit_doc = search_index.documents[str(tree["exhibit"].id)]
    assert exhibit_doc["is_published"] == 1
    assert exhibit_doc["is_preview"] == 0
    grid_doc = search_index.documents[str(tree["grid"].id)]
    assert [item["is_published"] for item in grid_doc["items"]] == [1, 1]
    assert len(search_index.documents) == 5
    assert derive_state(await store.get_exhibit(tree["exhibit"].id)) is ExhibitState.PUBLISHED


async def test_suppress_is_idempotent(publication, store, search_index):
    tree = await make_tree(store)
    await publication.publish(tree["exhibit"].id)

    first = await publication.suppress(tree["exhibit"].id)
    second = await publication.suppress(tree["exhibit"].id)

    assert first.status == "ok"
    assert second.status == "ok"
    assert search_index.documents == {}
    flags = await _flags(store, tree)
    assert not any([flags["exhibit"], flags["heading"], flags["grid"], flags["timeline_item"], *flags["grid_items"]])
    assert derive_state(await store.get_exhibit(tree["exhibit"].id)) is ExhibitState.SUPPRESSED


async def test_flag_failure_without_compensation_leaves_applied_flags(session_factory, search_index):
    store = FailingFlagStore(session_factory, RecordKind.GRID_ITEM)
    publication = PublicationStateMachine(store, IndexSynchronizer(search_index, store))
    tree = await make_tree(store)

    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "error"
    assert result.message == "Unable to publish exhibit"
    assert result.data["compensated"] is False
    flags = await _flags(store, tree)
    assert flags["exhibit"] and flags["grid"] and flags["timeline_item"]
    assert flags["grid_items"] == [False, False]
    assert search_index.documents == {}


async def test_concurrent_flag_failure_keeps_the_other_four(session_factory, search_index):
    store = FailingFlagStore(session_factory, RecordKind.ITEM)
    publication = PublicationStateMachine(store, IndexSynchronizer(search_index, store))
    tree = await make_tree(store)

    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "error"
    assert result.data["compensated"] is False
    assert [failure["target"] for failure in result.data["failed"]] == ["item"]
    flags = await _flags(store, tree)
    assert flags["item"] is False
    assert flags["exhibit"] and flags["heading"] and flags["grid"] and flags["timeline"]
    assert search_index.documents == {}


async def test_flag_failure_with_compensation_reverts(session_factory, search_index):
    store = FailingFlagStore(session_factory, RecordKind.HEADING)
    publication = PublicationStateMachine(store, IndexSynchronizer(search_index, store), compensate_on_failure=True)
    tree = await make_tree(store)

    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "error"
    assert result.data["compensated"] is True
    flags = await _flags(store, tree)
    assert not any([flags["exhibit"], flags["item"], flags["grid"], flags["timeline_item"], *flags["grid_items"]])


async def test_component_index_failure_is_partial(store):
    tree = await make_tree(store)
    index = FlakyIndex(fail_index={str(tree["timeline"].id)})
    publication = PublicationStateMachine(store, IndexSynchronizer(index, store))

    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "partial_failure"
    assert result.message == "1 of 4 components failed to index"
    assert str(tree["exhibit"].id) in index.documents


async def test_exhibit_index_failure_is_error(store):
    tree = await make_tree(store)
    index = FlakyIndex(fail_index={str(tree["exhibit"].id)})
    publication = PublicationStateMachine(store, IndexSynchronizer(index, store))

    result = await publication.publish(tree["exhibit"].id)

    assert result.status == "error"
    assert result.message == "Unable to index exhibit"


async def test_preview_lifecycle(publication, store, search_index):
    tree = await make_tree(store)
    exhibit_id = tree["exhibit"].id

    built = await publication.preview(exhibit_id)
    assert built.status == "ok"
    assert await publication.has_preview(exhibit_id)
    document = search_index.documents[str(exhibit_id)]
    assert document["is_preview"] == 1
    assert len(document["items"]) == 4
    assert derive_state(await store.get_exhibit(exhibit_id)) is ExhibitState.PREVIEW_ONLY

    removed = await publication.unpreview(exhibit_id)
    assert removed.status == "ok"
    assert removed.data["index"] == "deleted"
    assert not await publication.has_preview(exhibit_id)
    again = await publication.unpreview(exhibit_id)
    assert again.status == "ok"
    assert again.data["index"] == "not_found"


async def test_preview_of_published_exhibit_is_refused(publication, store, search_index):
    tree = await make_tree(store)
    await publication.publish(tree["exhibit"].id)
    result = await publication.preview(tree["exhibit"].id)
    assert result.status == "published"
    assert search_index.documents[str(tree["exhibit"].id)]["is_preview"] == 0


async def test_publish_clears_preview(publication, store):
    tree = await make_tree(store)
    await publication.preview(tree["exhibit"].id)
    await publication.publish(tree["exhibit"].id)
    exhibit = await store.get_exhibit(tree["exhibit"].id)
    assert exhibit.is_preview is False
    assert not await publication.has_preview(tree["exhibit"].id)


async def test_delete_cascades_and_removes_documents(publication, store, search_index):
    tree = await make_tree(store)
    await publication.publish(tree["exhibit"].id)

    result = await publication.delete(tree["exhibit"].id)

    assert result.status == "ok"
    assert result.data["components"] == 4
    assert search_index.documents == {}
    trashed = await store.list_trashed()
    assert len(trashed[RecordKind.EXHIBIT]) == 1
    assert len(trashed[RecordKind.GRID_ITEM]) == 2
    assert len(trashed[RecordKind.TIMELINE_ITEM]) == 1
    assert await store.count_first_level(tree["exhibit"].id) == 0


async def test_child_publish_requires_published_parent(publication, store):
    tree = await make_tree(store)
    grid_item = tree["grid_items"][0]
    result = await publication.publish_record(RecordKind.GRID_ITEM, tree["grid"].id, grid_item.id)
    assert result.status == "invalid"
    assert result.message == "Grid must be published first"


async def test_grid_item_suppress_and_republish_patch_the_grid_document(publication, store, search_index):
    tree = await make_tree(store)
    grid_id = str(tree["grid"].id)
    first, second = tree["grid_items"]
    await publication.publish(tree["exhibit"].id)

    suppressed = await publication.suppress_record("griditem", grid_id, first.id)
    assert suppressed.status == "ok"
    assert [item["uuid"] for item in search_index.documents[grid_id]["items"]] == [str(second.id)]
    assert (await store.find(RecordKind.GRID_ITEM, first.id)).is_published is False

    published = await publication.publish_record(RecordKind.GRID_ITEM, grid_id, first.id)
    assert published.status == "ok"
    items = search_index.documents[grid_id]["items"]
    assert [item["uuid"] for item in items] == [str(first.id), str(second.id)]
    assert items[0]["is_published"] == 1
    assert (await store.find(RecordKind.GRID_ITEM, first.id)).is_published is True


async def test_first_level_record_suppress_and_publish(publication, store, search_index):
    tree = await make_tree(store)
    exhibit_id = tree["exhibit"].id
    timeline_id = tree["timeline"].id
    await publication.publish(exhibit_id)

    suppressed = await publication.suppress_record(RecordKind.TIMELINE, exhibit_id, timeline_id)
    assert suppressed.status == "ok"
    assert str(timeline_id) not in search_index.documents
    assert (await store.find(RecordKind.TIMELINE_ITEM, tree["timeline_item"].id)).is_published is False

    published = await publication.publish_record(RecordKind.TIMELINE, exhibit_id, timeline_id)
    assert published.status == "ok"
    document = search_index.documents[str(timeline_id)]
    assert document["is_published"] == 1
    assert document["items"][0]["is_published"] == 1


async def test_compensation_restores_draft_and_preview_state(session_factory, search_index):
    store = FailingFlagStore(session_factory, RecordKind.HEADING)
    publication = PublicationStateMachine(store, IndexSynchronizer(search_index, store), compensate_on_failure=True)
    draft = await make_tree(store)
    previewed = await make_tree(store)
    assert (await publication.preview(previewed["exhibit"].id)).status == "ok"

    assert (await publication.publish(draft["exhibit"].id)).data["compensated"] is True
    assert (await publication.publish(previewed["exhibit"].id)).data["compensated"] is True

    draft_exhibit = await store.get_exhibit(draft["exhibit"].id)
    assert draft_exhibit.last_published_at is None
    assert derive_state(draft_exhibit) is ExhibitState.DRAFT
    previewed_exhibit = await store.get_exhibit(previewed["exhibit"].id)
    assert previewed_exhibit.is_preview is True
    assert derive_state(previewed_exhibit) is ExhibitState.PREVIEW_ONLY
