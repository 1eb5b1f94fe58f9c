"""
Seat inventory for sellable items (scheduled events and generated links).

The ledger never opens a transaction itself: the caller owns the unit of
work, so a reservation and the order insert that depends on it commit or
roll back together.

Each mutation is a single conditional UPDATE, which makes the
check-and-decrement atomic in the database:

    UPDATE events SET available_seats = available_seats - :n
    WHERE id = :id AND available_seats >= :n

Zero affected rows means "not enough seats" (or the item is gone), and no
application-level read-then-write ever happens on the hot path.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import InsufficientInventory, NotFound

EVENT = "event"
LINK = "link"

_TABLES = {EVENT: "events", LINK: "generated_links"}


@dataclass(frozen=True)
class ItemRef:
    kind: str  # 'event' | 'link'
    id: int

    def __post_init__(self):
        if self.kind not in _TABLES:
            raise ValueError(f"unknown sellable item kind: {self.kind!r}")

    @property
    def table(self) -> str:
        return _TABLES[self.kind]


class InventoryLedger:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def available(self, item: ItemRef) -> Optional[int]:
        row = (await self.db.execute(
            text(f"SELECT available_seats FROM {item.table} WHERE id=:id"),
            {"id": item.id},
        )).first()
        return None if row is None else int(row[0])

    async def reserve(self, item: ItemRef, seats: int) -> None:
        """
        Take `seats` from the item's availability.

        Raises InsufficientInventory when fewer seats remain (nothing is
        changed), NotFound when the item does not exist.
        """
        if seats < 1:
            raise ValueError("seats must be positive")
        res = await self.db.execute(text(f"""
            UPDATE {item.table}
            SET available_seats = available_seats - :n
            WHERE id = :id AND available_seats >= :n
        """), {"id": item.id, "n": seats})
        if res.rowcount == 1:
            return

        left = await self.available(item)
        if left is None:
            raise NotFound(f"{item.kind} {item.id} not found")
        raise InsufficientInventory(seats, left)

    async def release(self, item: ItemRef, seats: int) -> None:
        if seats < 1:
            raise ValueError("seats must be positive")
        res = await self.db.execute(text(f"""
            UPDATE {item.table}
            SET available_seats = available_seats + :n
            WHERE id = :id
        """), {"id": item.id, "n": seats})
        if res.rowcount != 1:
            raise NotFound(f"{item.kind} {item.id} not found")
