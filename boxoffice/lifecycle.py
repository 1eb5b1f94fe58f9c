"""
Order lifecycle: the only place that changes order state or seat counts.

    pending --mark_paid--> waiting_confirmation
    pending | waiting_confirmation --confirm--> confirmed   (terminal)
    pending | waiting_confirmation --reject---> rejected    (terminal)

Every transition is a conditional UPDATE guarded by the allowed source
states, so when two admins race, exactly one write lands and the other
caller gets the already-final order back with ``applied=False``.

Notifications are scheduled as background tasks after the transaction has
committed. They can neither block the caller nor roll anything back.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .errors import BoxOfficeError, NotFound, PersistenceFault, ValidationFailed
from .helpers import is_valid_email, new_order_code, now_ts
from .infra.sql import Gated
from .model.catalogue import CatalogueStore, OrderView
from .model.db import (
    CONFIRMED, OPEN_STATES, PAYMENT_CONFIRMED, PENDING, REJECTED,
    WAITING_CONFIRMATION,
)
from .model.inventory import InventoryLedger, LINK
from .model.orders import MessageRef, OrderDraft, OrderStore, item_of
from .notify import dispatcher as notify

logger = logging.getLogger(__name__)

MIN_SEATS = 1
MAX_SEATS = 10


@dataclass
class OrderRequest:
    customer_name: str
    customer_phone: str
    seats_count: int
    event_id: Optional[int] = None
    event_slug: Optional[str] = None
    link_code: Optional[str] = None
    customer_email: Optional[str] = None
    total_price: Optional[int] = None


@dataclass
class Transition:
    order: OrderView
    applied: bool  # False: the order was already past this point


def validate(req: OrderRequest) -> OrderRequest:
    """Return a trimmed copy of `req` or raise ValidationFailed."""
    refs = [r for r in (req.event_id, req.event_slug, req.link_code)
            if r not in (None, "")]
    if len(refs) != 1:
        raise ValidationFailed("specify exactly one event or link")

    name = (req.customer_name or "").strip()
    if len(name) < 2:
        raise ValidationFailed("name must be at least 2 characters")
    phone = (req.customer_phone or "").strip()
    if len(phone) < 5:
        raise ValidationFailed("phone must be at least 5 characters")

    try:
        seats = int(req.seats_count)
    except (TypeError, ValueError):
        raise ValidationFailed("seat count must be a number")
    if not MIN_SEATS <= seats <= MAX_SEATS:
        raise ValidationFailed(
            f"seat count must be between {MIN_SEATS} and {MAX_SEATS}"
        )

    email = (req.customer_email or "").strip() or None
    if email is not None and not is_valid_email(email):
        raise ValidationFailed("invalid email address")

    if req.total_price is not None and req.total_price < 0:
        raise ValidationFailed("total price must not be negative")

    return OrderRequest(
        customer_name=name,
        customer_phone=phone,
        seats_count=seats,
        event_id=req.event_id,
        event_slug=req.event_slug or None,
        link_code=(req.link_code or "").strip() or None,
        customer_email=email,
        total_price=req.total_price,
    )


class OrderLifecycle:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        gated: Gated,
        dispatcher: notify.NotificationDispatcher,
        *,
        release_on_reject: bool = False,
    ) -> None:
        self.sessions = sessions
        self.gated = gated
        self.dispatcher = dispatcher
        self.release_on_reject = release_on_reject
        self._tasks: Set[asyncio.Task] = set()

    # ---
    # background notifications
    # ---
    def _spawn(self, coro: Awaitable) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("notification task failed",
                         exc_info=task.exception())

    async def drain(self) -> None:
        """Wait for every scheduled notification to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _remember(self, order_id: int,
                        ref: Optional[MessageRef]) -> None:
        if ref is None:
            return
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        await OrderStore(db).record_admin_message(
                            order_id, ref
                        )
        except SQLAlchemyError:
            # the buttons still carry the order id
            logger.exception("could not record admin message for order %s",
                             order_id)

    async def _announce_new_order(self, view: OrderView) -> None:
        ref, _ = await asyncio.gather(
            self.dispatcher.notify_admin_new_order(view),
            self.dispatcher.notify_channel(notify.CREATED, view),
        )
        await self._remember(view.id, ref)

    async def _announce_payment(self, view: OrderView,
                                proof: Optional[str]) -> None:
        ref, _ = await asyncio.gather(
            self.dispatcher.notify_admin_payment(view, proof),
            self.dispatcher.notify_channel(notify.PAID, view),
        )
        await self._remember(view.id, ref)

    # ---
    # operations
    # ---
    async def create_order(self, req: OrderRequest) -> OrderView:
        """
        Reserve seats and persist a pending order in one transaction.

        Raises ValidationFailed, NotFound, InsufficientInventory or
        PersistenceFault. In every failure case no seats are taken.
        """
        req = validate(req)
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        catalogue = CatalogueStore(db)
                        item = await catalogue.resolve(
                            event_id=req.event_id,
                            event_slug=req.event_slug,
                            link_code=req.link_code,
                        )
                        total = (
                            req.total_price if req.total_price is not None
                            else item.unit_price * req.seats_count
                        )
                        await InventoryLedger(db).reserve(
                            item.ref, req.seats_count
                        )
                        order = await OrderStore(db).create(
                            OrderDraft(
                                item=item.ref,
                                customer_name=req.customer_name,
                                customer_phone=req.customer_phone,
                                customer_email=req.customer_email,
                                seats_count=req.seats_count,
                                total_price=total,
                                event_template_id=item.event_template_id,
                                admin_id=item.admin_id,
                            ),
                            new_order_code(item.ref.kind == LINK),
                        )
                        view = await catalogue.describe(order)
        except BoxOfficeError:
            raise
        except SQLAlchemyError as e:
            # the transaction rolled back, reservation included
            logger.exception("order could not be stored")
            raise PersistenceFault("order could not be stored") from e

        logger.info("order %s created: %s seats, total %s",
                    view.order_code, view.seats_count, view.total_price)
        self._spawn(self._announce_new_order(view))
        return view

    async def get_order(self, order_code: str) -> OrderView:
        async with self.gated():
            async with self.sessions() as db:
                order = await OrderStore(db).get(order_code)
                if order is None:
                    raise NotFound("order not found")
                return await CatalogueStore(db).describe(order)

    async def mark_paid(self, order_code: str,
                        proof: Optional[str] = None) -> Transition:
        """
        Buyer says the transfer is done. Only a pending order moves; a
        waiting one gets the new proof forwarded again; a final one is
        left alone.
        """
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        store = OrderStore(db)
                        order = await store.get(order_code)
                        if order is None:
                            raise NotFound("order not found")
                        applied = await store.set_lifecycle_state(
                            order.id, WAITING_CONFIRMATION, [PENDING],
                            paid_at=now_ts(),
                        )
                        order = await store.get_by_id(order.id)
                        view = await CatalogueStore(db).describe(order)
        except BoxOfficeError:
            raise
        except SQLAlchemyError as e:
            logger.exception("mark-paid failed for %s", order_code)
            raise PersistenceFault("order could not be updated") from e

        if view.status == WAITING_CONFIRMATION:
            logger.info("order %s waiting for confirmation", order_code)
            self._spawn(self._announce_payment(view, proof))
        else:
            logger.info("mark-paid ignored, order %s is %s",
                        order_code, view.status)
        return Transition(view, applied)

    async def _decide(self, order_id: int, target: str,
                      actor: Optional[str]) -> Transition:
        try:
            async with self.gated():
                async with self.sessions() as db:
                    async with db.begin():
                        store = OrderStore(db)
                        order = await store.get_by_id(order_id)
                        if order is None:
                            raise NotFound("order not found")
                        applied = await store.set_lifecycle_state(
                            order_id, target, OPEN_STATES,
                            decided_by=actor, decided_at=now_ts(),
                        )
                        if applied and target == CONFIRMED:
                            await store.set_payment_state(
                                order_id, PAYMENT_CONFIRMED
                            )
                        if (applied and target == REJECTED
                                and self.release_on_reject):
                            await InventoryLedger(db).release(
                                item_of(order), order.seats_count
                            )
                        order = await store.get_by_id(order_id)
                        view = await CatalogueStore(db).describe(order)
        except BoxOfficeError:
            raise
        except SQLAlchemyError as e:
            logger.exception("%s failed for order %s", target, order_id)
            raise PersistenceFault("order could not be updated") from e

        if applied:
            logger.info("order %s %s by %s", view.order_code, target, actor)
        else:
            logger.info("order %s already %s, %s ignored",
                        view.order_code, view.status, target)
        return Transition(view, applied)

    async def confirm(self, order_id: int,
                      actor: Optional[str] = None) -> Transition:
        return await self._decide(order_id, CONFIRMED, actor)

    async def reject(self, order_id: int,
                     actor: Optional[str] = None) -> Transition:
        return await self._decide(order_id, REJECTED, actor)

    # ---
    # admin message lookups for the gateway
    # ---
    async def admin_messages(self, order_id: int) -> list[MessageRef]:
        async with self.gated():
            async with self.sessions() as db:
                return await OrderStore(db).admin_messages(order_id)

    async def order_id_for_message(self, ref: MessageRef) -> Optional[int]:
        async with self.gated():
            async with self.sessions() as db:
                return await OrderStore(db).order_id_for_message(ref)
