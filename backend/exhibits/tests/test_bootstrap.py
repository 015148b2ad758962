from exhibits.bootstrap import build_orchestrator
from exhibits.scheduling import DeferredTaskQueue
from exhibits.search import InMemorySearchIndex

from conftest import make_tree


async def test_default_wiring_republishes_an_edited_exhibit(session_factory):
    search_index = InMemorySearchIndex()
    orchestrator = build_orchestrator(session_factory, search_index, events=None, republish_delay=0.05)
    assert isinstance(orchestrator.scheduler, DeferredTaskQueue)
    tree = await make_tree(orchestrator.store)
    exhibit_id = tree["exhibit"].id
    assert (await orchestrator.publish_exhibit(exhibit_id)).status == "ok"

    edited = await orchestrator.update_exhibit(exhibit_id, {"title": "Edited"})

    assert edited.data["republish"]["action"] == "republish"
    assert str(exhibit_id) not in search_index.documents
    await orchestrator.scheduler.join()
    assert (await orchestrator.store.get_exhibit(exhibit_id)).is_published is True
    assert search_index.documents[str(exhibit_id)]["title"] == "Edited"
    assert orchestrator.scheduler.pending() == []


async def test_default_wiring_drops_republish_of_deleted_exhibit(session_factory):
    search_index = InMemorySearchIndex()
    orchestrator = build_orchestrator(session_factory, search_index, events=None, republish_delay=0.05)
    tree = await make_tree(orchestrator.store)
    exhibit_id = tree["exhibit"].id
    await orchestrator.publish_exhibit(exhibit_id)
    await orchestrator.update_exhibit(exhibit_id, {"title": "Edited"})

    assert (await orchestrator.delete_exhibit(exhibit_id)).status == "ok"
    await orchestrator.scheduler.join()

    assert search_index.documents == {}
    assert orchestrator.scheduler.pending() == []


def test_explicit_scheduler_is_not_driven(session_factory):
    queue = DeferredTaskQueue()
    build_orchestrator(session_factory, InMemorySearchIndex(), scheduler=queue, events=None)
    assert queue.runner is None
