"""Seat reservation against the database."""
import anyio
import pytest

from boxoffice.errors import InsufficientInventory, NotFound
from boxoffice.model.inventory import EVENT, InventoryLedger, ItemRef

pytestmark = pytest.mark.anyio


async def _reserve(sessions, item, seats):
    async with sessions() as db:
        async with db.begin():
            await InventoryLedger(db).reserve(item, seats)


async def test_reserve_all_then_one_more(database, make_event, seats_left):
    sessions, _ = database
    item = ItemRef(EVENT, await make_event(seats=5))

    await _reserve(sessions, item, 5)
    assert await seats_left(EVENT, item.id) == 0

    with pytest.raises(InsufficientInventory) as e:
        await _reserve(sessions, item, 1)
    assert e.value.available == 0
    assert await seats_left(EVENT, item.id) == 0


async def test_unknown_item(database):
    sessions, _ = database
    with pytest.raises(NotFound):
        await _reserve(sessions, ItemRef(EVENT, 9999), 1)


async def test_rolled_back_reservation_returns_seats(database, make_event,
                                                     seats_left):
    sessions, _ = database
    item = ItemRef(EVENT, await make_event(seats=3))

    with pytest.raises(RuntimeError):
        async with sessions() as db:
            async with db.begin():
                await InventoryLedger(db).reserve(item, 2)
                raise RuntimeError("insert failed")

    assert await seats_left(EVENT, item.id) == 3


async def test_release(database, make_event, seats_left):
    sessions, _ = database
    item = ItemRef(EVENT, await make_event(seats=4))
    await _reserve(sessions, item, 3)
    async with sessions() as db:
        async with db.begin():
            await InventoryLedger(db).release(item, 2)
    assert await seats_left(EVENT, item.id) == 3


async def test_concurrent_reservations_never_oversell(database, make_event,
                                                      seats_left):
    sessions, _ = database
    item = ItemRef(EVENT, await make_event(seats=5))
    won, lost = [], []

    async def attempt(n):
        try:
            await _reserve(sessions, item, 1)
            won.append(n)
        except InsufficientInventory:
            lost.append(n)

    async with anyio.create_task_group() as tg:
        for n in range(8):
            tg.start_soon(attempt, n)

    assert len(won) == 5
    assert len(lost) == 3
    assert await seats_left(EVENT, item.id) == 0


async def test_item_kind_is_checked():
    with pytest.raises(ValueError):
        ItemRef("concert", 1)
