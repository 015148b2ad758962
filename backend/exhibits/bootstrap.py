"""Wire production collaborators into an ExhibitOrchestrator."""

from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from . import pubsub
from .database import Base, SessionLocal, engine
from .indexing import IndexSynchronizer
from .locks import LockManager
from .orchestrator import EventPublisher, ExhibitOrchestrator
from .ordering import OrderManager
from .publication import PublicationStateMachine
from .scheduling import REPUBLISH_DELAY_SECONDS, CeleryRepublishScheduler, DeferredScheduler, DeferredTaskQueue
from .search import SearchIndex, build_search_index
from .store import ContentStore
from .tasks import celery_app

_DEFAULT_EVENTS = object()


def build_scheduler() -> DeferredScheduler:
    if celery_app.conf.task_always_eager:
        return DeferredTaskQueue()
    return CeleryRepublishScheduler()


def build_orchestrator(
    session_factory: sessionmaker | None = None,
    search_index: SearchIndex | None = None,
    scheduler: DeferredScheduler | None = None,
    events: EventPublisher | None | object = _DEFAULT_EVENTS,
    republish_delay: float = REPUBLISH_DELAY_SECONDS,
) -> ExhibitOrchestrator:
    """Construct the facade; any collaborator can be swapped for tests or workers.

    When no scheduler is given and Celery runs eagerly, deferred republishes
    are driven in-process by the orchestrator itself.
    """

    session_factory = session_factory or SessionLocal
    store = ContentStore(session_factory)
    indexer = IndexSynchronizer(search_index or build_search_index(), store)
    drive_in_process = scheduler is None
    scheduler = scheduler or build_scheduler()
    orchestrator = ExhibitOrchestrator(
        store=store,
        locks=LockManager(store),
        ordering=OrderManager(store),
        indexer=indexer,
        publication=PublicationStateMachine(store, indexer),
        scheduler=scheduler,
        events=pubsub.publish_exhibit_event if events is _DEFAULT_EVENTS else events,
        audit_sessions=session_factory,
        republish_delay=republish_delay,
    )
    if drive_in_process and isinstance(scheduler, DeferredTaskQueue):
        scheduler.runner = orchestrator.execute_deferred
    return orchestrator


def init_db(bind=None) -> None:
    Base.metadata.create_all(bind=bind or engine)
