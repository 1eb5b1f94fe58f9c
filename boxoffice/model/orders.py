from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import bindparam, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from .db import AdminMessage, Order, PENDING, PAYMENT_PENDING
from .inventory import ItemRef, EVENT, LINK


@dataclass
class OrderDraft:
    item: ItemRef
    customer_name: str
    customer_phone: str
    seats_count: int
    total_price: int
    customer_email: Optional[str] = None
    event_template_id: Optional[int] = None
    admin_id: Optional[str] = None


@dataclass(frozen=True)
class MessageRef:
    chat_id: str
    message_id: int
    has_media: bool = False


def item_of(order: Order) -> ItemRef:
    if order.event_id is not None:
        return ItemRef(EVENT, order.event_id)
    return ItemRef(LINK, order.link_id)


class OrderStore:
    """
    Durable order records. Reads always hit the database (the session's
    identity map is bypassed), so decisions are never made on stale state.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, draft: OrderDraft, order_code: str) -> Order:
        order = Order(
            order_code=order_code,
            event_id=draft.item.id if draft.item.kind == EVENT else None,
            link_id=draft.item.id if draft.item.kind == LINK else None,
            event_template_id=draft.event_template_id,
            admin_id=draft.admin_id,
            customer_name=draft.customer_name,
            customer_phone=draft.customer_phone,
            customer_email=draft.customer_email,
            seats_count=draft.seats_count,
            total_price=draft.total_price,
            status=PENDING,
            payment_status=PAYMENT_PENDING,
            created_at=now_ts(),
        )
        self.db.add(order)
        await self.db.flush()
        return order

    async def _one(self, *where) -> Optional[Order]:
        stmt = (
            select(Order).where(*where)
            .execution_options(populate_existing=True)
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def get(self, code: str) -> Optional[Order]:
        return await self._one(Order.order_code == code)

    async def get_by_id(self, order_id: int) -> Optional[Order]:
        return await self._one(Order.id == order_id)

    async def list_recent(self, limit: int = 200) -> Sequence[Order]:
        stmt = (
            select(Order).order_by(Order.created_at.desc(), Order.id.desc())
            .limit(limit)
        )
        return (await self.db.execute(stmt)).scalars().all()

    async def set_lifecycle_state(
        self, order_id: int, new_state: str, from_states: Sequence[str],
        **extra,
    ) -> bool:
        """
        Conditional transition: only rows whose current status is in
        `from_states` are touched. Returns True if this call won.
        """
        assigns = ", ".join(["status = :new"] + [f"{k} = :{k}" for k in extra])
        stmt = text(f"""
            UPDATE orders SET {assigns}
            WHERE id = :id AND status IN :allowed
        """).bindparams(bindparam("allowed", expanding=True))
        res = await self.db.execute(stmt, {
            "id": order_id,
            "new": new_state,
            "allowed": list(from_states),
            **extra,
        })
        return res.rowcount == 1

    async def set_payment_state(self, order_id: int, new_state: str) -> None:
        await self.db.execute(
            text("UPDATE orders SET payment_status = :p WHERE id = :id"),
            {"p": new_state, "id": order_id},
        )

    # ---
    # admin message bookkeeping
    # ---
    async def record_admin_message(
        self, order_id: int, ref: MessageRef
    ) -> None:
        await self.db.execute(text("""
            INSERT INTO admin_messages(
                chat_id, message_id, order_id, has_media, created_at
            ) VALUES (:chat_id, :message_id, :order_id, :has_media, :ts)
            ON CONFLICT (chat_id, message_id) DO NOTHING
        """), {
            "chat_id": str(ref.chat_id),
            "message_id": int(ref.message_id),
            "order_id": order_id,
            "has_media": bool(ref.has_media),
            "ts": now_ts(),
        })

    async def admin_messages(self, order_id: int) -> list[MessageRef]:
        rows = (await self.db.execute(
            select(AdminMessage)
            .where(AdminMessage.order_id == order_id)
            .order_by(AdminMessage.id)
        )).scalars().all()
        return [
            MessageRef(r.chat_id, r.message_id, r.has_media) for r in rows
        ]

    async def order_id_for_message(self, ref: MessageRef) -> Optional[int]:
        row = (await self.db.execute(text("""
            SELECT order_id FROM admin_messages
            WHERE chat_id = :chat_id AND message_id = :message_id
        """), {
            "chat_id": str(ref.chat_id), "message_id": int(ref.message_id)
        })).first()
        return None if row is None else int(row[0])
