import os
os.environ["TESTING"] = "1"
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
from datetime import datetime, timedelta, timezone

import pytest

from exhibits import pubsub
from exhibits.database import Base, build_engine, build_session_factory
from exhibits.indexing import IndexSynchronizer
from exhibits.kinds import RecordKind
from exhibits.locks import LockManager
from exhibits.orchestrator import ExhibitOrchestrator
from exhibits.ordering import OrderManager
from exhibits.publication import PublicationStateMachine
from exhibits.scheduling import DeferredTaskQueue
from exhibits.search import InMemorySearchIndex
from exhibits.store import ContentStore


class FakeClock:
    """Settable clock for lock leases and deferred task due times."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'exhibits.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return ContentStore(session_factory)


@pytest.fixture
def search_index():
    return InMemorySearchIndex()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def indexer(search_index, store):
    return IndexSynchronizer(search_index, store)


@pytest.fixture
def publication(store, indexer):
    return PublicationStateMachine(store, indexer)


@pytest.fixture
def locks(store, clock):
    return LockManager(store, ttl_minutes=20, clock=clock)


@pytest.fixture
def ordering(store):
    return OrderManager(store)


@pytest.fixture
def scheduler(clock):
    return DeferredTaskQueue(clock=clock)


@pytest.fixture
def events():
    published = []

    async def record(exhibit_id, event):
        published.append((str(exhibit_id), event))

    record.published = published
    return record


@pytest.fixture
def orchestrator(store, locks, ordering, indexer, publication, scheduler, events, session_factory):
    return ExhibitOrchestrator(
        store=store,
        locks=locks,
        ordering=ordering,
        indexer=indexer,
        publication=publication,
        scheduler=scheduler,
        events=events,
        audit_sessions=session_factory,
        republish_delay=3,
    )


@pytest.fixture(autouse=True)
def reset_redis():
    pubsub._redis = None
    yield
    pubsub._redis = None


async def make_exhibit(store, title="Harbor Lights", **extra):
    return await store.create(RecordKind.EXHIBIT, {"title": title, **extra})


async def make_tree(store):
    """Exhibit with one heading, one item, a grid with two items, and a timeline with one item."""

    exhibit = await make_exhibit(store)
    heading = await store.create(
        RecordKind.HEADING, {"is_member_of_exhibit": exhibit.id, "text": "Introduction", "order": 0}
    )
    item = await store.create(
        RecordKind.ITEM, {"is_member_of_exhibit": exhibit.id, "title": "Map of the harbor", "order": 1}
    )
    grid = await store.create(
        RecordKind.GRID, {"is_member_of_exhibit": exhibit.id, "title": "Ships", "order": 2}
    )
    grid_items = [
        await store.create(
            RecordKind.GRID_ITEM,
            {
                "is_member_of_grid": grid.id,
                "is_member_of_exhibit": exhibit.id,
                "title": f"Ship {position}",
                "order": position,
            },
        )
        for position in range(2)
    ]
    timeline = await store.create(
        RecordKind.TIMELINE, {"is_member_of_exhibit": exhibit.id, "title": "Construction", "order": 3}
    )
    timeline_item = await store.create(
        RecordKind.TIMELINE_ITEM,
        {
            "is_member_of_timeline": timeline.id,
            "is_member_of_exhibit": exhibit.id,
            "title": "Lighthouse lit",
            "date": "1871",
        },
    )
    return {
        "exhibit": exhibit,
        "heading": heading,
        "item": item,
        "grid": grid,
        "grid_items": grid_items,
        "timeline": timeline,
        "timeline_item": timeline_item,
    }
