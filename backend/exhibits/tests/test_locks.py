import asyncio

import pytest

from exhibits.errors import NotFound, ValidationError
from exhibits.kinds import RecordKind
from exhibits.locks import LockManager

from conftest import make_exhibit, make_tree


async def test_acquire_then_reacquire_by_same_user(locks, store):
    exhibit = await make_exhibit(store)
    first = await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
    assert first.state == "acquired"
    assert first.granted

    again = await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
    assert again.state == "already_locked_by_self"
    assert again.locked_by_user == "ada"


async def test_second_user_is_refused(locks, store):
    exhibit = await make_exhibit(store)
    await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
    other = await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "grace")
    assert other.state == "already_locked_by_other"
    assert other.locked_by_user == "ada"
    assert not other.granted


async def test_concurrent_acquire_grants_exactly_one(locks, store):
    tree = await make_tree(store)
    results = await asyncio.gather(
        *(locks.acquire(RecordKind.ITEM, tree["item"].id, user) for user in ("ada", "grace", "alan"))
    )
    acquired = [result for result in results if result.state == "acquired"]
    assert len(acquired) == 1
    holder = acquired[0].locked_by_user
    assert all(result.locked_by_user == holder for result in results)


async def test_release_rules(locks, store):
    exhibit = await make_exhibit(store)
    await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")

    assert await locks.release(RecordKind.EXHIBIT, exhibit.id, "grace") is False
    assert await locks.release(RecordKind.EXHIBIT, exhibit.id, "grace", force=True) is True
    record = await store.get_exhibit(exhibit.id)
    assert record.is_locked is False
    assert record.locked_by_user is None
    # Releasing an unlocked record is a no-op success.
    assert await locks.release(RecordKind.EXHIBIT, exhibit.id, "ada") is True


async def test_expired_lease_can_be_taken_over(locks, store, clock):
    exhibit = await make_exhibit(store)
    await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
    clock.advance(minutes=21)
    taken = await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "grace")
    assert taken.state == "acquired"
    assert taken.locked_by_user == "grace"


async def test_lease_disabled_keeps_locks(store, clock):
    manager = LockManager(store, ttl_minutes=0, clock=clock)
    exhibit = await make_exhibit(store)
    await manager.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
    clock.advance(days=3)
    assert (await manager.acquire(RecordKind.EXHIBIT, exhibit.id, "grace")).state == "already_locked_by_other"
    assert await manager.release_expired() == 0


async def test_release_expired_sweeps_every_kind(locks, store, clock):
    tree = await make_tree(store)
    await locks.acquire(RecordKind.HEADING, tree["heading"].id, "ada")
    await locks.acquire(RecordKind.GRID_ITEM, tree["grid_items"][0].id, "ada")
    clock.advance(minutes=10)
    await locks.acquire(RecordKind.ITEM, tree["item"].id, "grace")
    clock.advance(minutes=15)

    assert await locks.release_expired() == 2
    item = await store.find(RecordKind.ITEM, tree["item"].id)
    assert item.locked_by_user == "grace"


async def test_lock_requires_user_and_live_record(locks, store):
    exhibit = await make_exhibit(store)
    with pytest.raises(ValidationError):
        await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "  ")
    await store.soft_delete(RecordKind.EXHIBIT, exhibit.id, exhibit.id)
    with pytest.raises(NotFound):
        await locks.acquire(RecordKind.EXHIBIT, exhibit.id, "ada")
