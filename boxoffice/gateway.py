"""
Inbound admin taps on the confirm/reject buttons.

Every callback query is answered, whatever happens, so the admin's client
never sits on a spinner. State changes go through OrderLifecycle only.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from .errors import BoxOfficeError, NotFound
from .lifecycle import OrderLifecycle
from .model.db import CONFIRMED
from .model.orders import MessageRef
from .notify import dispatcher as notify

logger = logging.getLogger(__name__)

CONFIRM = "confirm"
REJECT = "reject"
ACTIONS = (CONFIRM, REJECT)

TOAST_CONFIRMED = "✅ Payment confirmed!"
TOAST_REJECTED = "❌ Order rejected"
TOAST_ALREADY = "ℹ️ Order already {status}"
TOAST_BAD_ACTION = "❌ Unknown action"
TOAST_BAD_ORDER = "❌ Error: invalid order id"
TOAST_NOT_FOUND = "❌ Order not found"
TOAST_FAILED = "❌ Something went wrong, try again"


class SeenStore(Protocol):
    async def mark_seen(self, interaction_id: Optional[str]) -> bool: ...


@dataclass
class Interaction:
    interaction_id: str
    action: Optional[str]
    order_id: Optional[int]
    source: Optional[MessageRef]
    actor: str


@dataclass
class Ack:
    handled: bool
    text: str = ""
    applied: bool = False


def actor_of(user: Dict[str, Any]) -> str:
    if user.get("username"):
        return f"@{user['username']}"
    name = " ".join(
        p for p in (user.get("first_name"), user.get("last_name")) if p
    )
    return name or str(user.get("id", "unknown"))


def _as_id(value: Any) -> Optional[int]:
    # ASCII only: str.isdigit() also accepts things like '²'
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isascii() and value.isdigit():
        return int(value)
    return None


def parse_interaction(update: Dict[str, Any]) -> Optional[Interaction]:
    """Pull an Interaction out of a Telegram update; None if there is none."""
    cq = update.get("callback_query")
    if not isinstance(cq, dict) or not cq.get("id"):
        return None

    action, order_id = None, None
    data = cq.get("data")
    if isinstance(data, str) and "_" in data:
        tag, _, raw_id = data.partition("_")
        action = tag if tag in ACTIONS else None
        order_id = _as_id(raw_id)

    source = None
    msg = cq.get("message")
    if not isinstance(msg, dict):
        msg = {}
    chat = msg.get("chat")
    chat_id = chat.get("id") if isinstance(chat, dict) else None
    message_id = _as_id(msg.get("message_id"))
    if chat_id is not None and message_id is not None:
        source = MessageRef(
            chat_id=str(chat_id),
            message_id=message_id,
            has_media=bool(msg.get("photo")),
        )

    user = cq.get("from")

    return Interaction(
        interaction_id=str(cq["id"]),
        action=action,
        order_id=order_id,
        source=source,
        actor=actor_of(user if isinstance(user, dict) else {}),
    )


class ConfirmationGateway:
    def __init__(self, lifecycle: OrderLifecycle,
                 dispatcher: notify.NotificationDispatcher,
                 seen: SeenStore) -> None:
        self.lifecycle = lifecycle
        self.dispatcher = dispatcher
        self.seen = seen

    async def _answer(self, it: Interaction, text: str,
                      applied: bool = False) -> Ack:
        await self.dispatcher.answer_interaction(it.interaction_id, text)
        return Ack(handled=True, text=text, applied=applied)

    async def handle_interaction(self, update: Dict[str, Any]) -> Ack:
        try:
            it = parse_interaction(update)
            if it is None:
                return Ack(handled=False)
            return await self._process(it)
        except Exception:
            cq = update.get("callback_query")
            cq_id = cq.get("id") if isinstance(cq, dict) else None
            logger.exception("callback %s crashed", cq_id)
            if not cq_id:
                return Ack(handled=False)
            await self.dispatcher.answer_interaction(str(cq_id), TOAST_FAILED)
            return Ack(handled=True, text=TOAST_FAILED)

    async def _process(self, it: Interaction) -> Ack:
        if it.action is None:
            logger.warning("unknown callback action from %s", it.actor)
            return await self._answer(it, TOAST_BAD_ACTION)

        order_id = it.order_id
        if order_id is None and it.source is not None:
            order_id = await self.lifecycle.order_id_for_message(it.source)
        if order_id is None:
            return await self._answer(it, TOAST_BAD_ORDER)

        if not await self.seen.mark_seen(it.interaction_id):
            logger.info("callback %s redelivered, skipping",
                        it.interaction_id)
            return Ack(handled=True)

        try:
            if it.action == CONFIRM:
                result = await self.lifecycle.confirm(order_id, it.actor)
            else:
                result = await self.lifecycle.reject(order_id, it.actor)
        except NotFound:
            return await self._answer(it, TOAST_NOT_FOUND)
        except BoxOfficeError as e:
            logger.error("callback %s on order %s failed: %s",
                         it.action, order_id, e.message)
            return await self._answer(it, TOAST_FAILED)

        order = result.order
        text = self.dispatcher.final_status_text(order)
        refs = await self.lifecycle.admin_messages(order.id)
        known = {(r.chat_id, r.message_id) for r in refs}
        if (it.source is not None
                and (it.source.chat_id, it.source.message_id) not in known):
            refs.append(it.source)

        sends = [self.dispatcher.edit_admin_message(r, text) for r in refs]
        if result.applied:
            kind = (
                notify.CONFIRMED_EVT if order.status == CONFIRMED
                else notify.REJECTED_EVT
            )
            sends.append(self.dispatcher.notify_channel(kind, order))
        await asyncio.gather(*sends)

        if not result.applied:
            toast = TOAST_ALREADY.format(status=order.status)
        elif order.status == CONFIRMED:
            toast = TOAST_CONFIRMED
        else:
            toast = TOAST_REJECTED
        return await self._answer(it, toast, applied=result.applied)
