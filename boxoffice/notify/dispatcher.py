"""
Human-readable notifications for the admin chat and the broadcast channel.

All sends are best-effort: failures are logged and reported as a None/False
return value, never raised, so a dead bot can not hold up or undo an order
transition.
"""
from __future__ import annotations
import base64
import binascii
import logging
import re
from typing import Any, Dict, Optional, Protocol

from ..errors import DeliveryFailed
from ..helpers import now_ts, to_local
from ..model.catalogue import OrderView
from ..model.db import CONFIRMED, REJECTED
from ..model.orders import MessageRef

logger = logging.getLogger(__name__)

# channel event kinds
CREATED = "created"
PAID = "paid"
CONFIRMED_EVT = "confirmed"
REJECTED_EVT = "rejected"

_MD_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")


def escape_md(value: Any) -> str:
    """Escape MarkdownV2 control characters."""
    return _MD_SPECIAL.sub(r"\\\1", str(value))


def code_md(value: Any) -> str:
    s = str(value).replace("\\", "\\\\").replace("`", "\\`")
    return f"`{s}`"


def decode_proof(proof: str) -> bytes | str:
    """
    Payment screenshots arrive as data URLs, bare base64, or links.
    Links are passed to Telegram as-is, everything else is decoded.
    """
    proof = proof.strip()
    if proof.startswith(("http://", "https://")):
        return proof
    if proof.startswith("data:"):
        _, _, proof = proof.partition(",")
    try:
        return base64.b64decode(proof, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("payment proof is not valid base64") from e


class Transport(Protocol):
    async def send(self, chat_id: str, text: str,
                   markup: Optional[Dict[str, Any]] = None
                   ) -> MessageRef: ...

    async def send_photo(self, chat_id: str, photo: bytes | str,
                         caption: str,
                         markup: Optional[Dict[str, Any]] = None
                         ) -> MessageRef: ...

    async def edit(self, ref: MessageRef, text: str) -> None: ...

    async def ack(self, interaction_id: str, text: str) -> None: ...


def decision_keyboard(order_id: int) -> Dict[str, Any]:
    return {"inline_keyboard": [[
        {"text": "✅ Confirm payment", "callback_data": f"confirm_{order_id}"},
        {"text": "❌ Reject", "callback_data": f"reject_{order_id}"},
    ]]}


class NotificationDispatcher:
    def __init__(self, transport: Optional[Transport], *,
                 admin_chat_id: str, channel_id: str = "",
                 currency: str = "RUB", tz: str = "Europe/Moscow") -> None:
        self.transport = transport
        self.admin_chat_id = admin_chat_id
        self.channel_id = channel_id
        self.currency = currency
        self.tz = tz

    # ---
    # formatting
    # ---
    def _details(self, o: OrderView) -> str:
        lines = [
            f"📋 *Order:* {code_md(o.order_code)}",
            "",
            f"🎭 *Event:* {escape_md(o.event_name)}",
            f"📍 *City:* {escape_md(o.city_name or '-')}",
            f"📅 *Date:* {escape_md(o.event_date or '-')}",
            f"⏰ *Time:* {escape_md(o.event_time or '-')}",
            "",
            f"👤 *Buyer:* {escape_md(o.customer_name)}",
            f"📞 *Phone:* {escape_md(o.customer_phone)}",
        ]
        if o.customer_email:
            lines.append(f"📧 *Email:* {escape_md(o.customer_email)}")
        lines += [
            "",
            f"🎟 *Seats:* {o.seats_count}",
            f"💰 *Total:* {escape_md(o.total_price)} {escape_md(self.currency)}",
        ]
        return "\n".join(lines)

    def new_order_text(self, o: OrderView) -> str:
        return (
            "🎫 *New order, buyer is on the payment page*\n\n"
            f"{self._details(o)}\n\n"
            "⏳ *Status:* choosing a payment method"
        )

    def payment_text(self, o: OrderView, with_proof: bool) -> str:
        proof = (
            "📎 Screenshot attached" if with_proof
            else "⚠️ No screenshot was uploaded"
        )
        return (
            "💳 *Buyer reports the transfer as sent*\n\n"
            f"{self._details(o)}\n\n"
            f"{escape_md(proof)}\n"
            "⏳ *Status:* waiting for confirmation"
        )

    def channel_text(self, kind: str, o: OrderView) -> str:
        headline = {
            CREATED: "🆕 *New order*",
            PAID: "💳 *Payment pending confirmation*",
            CONFIRMED_EVT: "✅ *Payment confirmed*",
            REJECTED_EVT: "❌ *Order rejected*",
        }[kind]
        return (
            f"{headline}\n\n"
            f"📋 {code_md(o.order_code)}\n"
            f"🎭 {escape_md(o.event_name)}\n"
            f"🎟 {o.seats_count} × 💰 "
            f"{escape_md(o.total_price)} {escape_md(self.currency)}"
        )

    def final_status_text(self, o: OrderView) -> str:
        if o.status == CONFIRMED:
            head = "✅ *PAYMENT CONFIRMED*"
        elif o.status == REJECTED:
            head = "❌ *ORDER REJECTED*"
        else:
            raise ValueError(f"order {o.order_code} is not final")
        when = to_local(o.decided_at or now_ts(), self.tz)
        lines = [
            head,
            "",
            f"📋 *Order:* {code_md(o.order_code)}",
            f"📅 *Processed:* {escape_md(when)}",
        ]
        if o.decided_by:
            lines.append(f"👤 *By:* {escape_md(o.decided_by)}")
        return "\n".join(lines)

    # ---
    # delivery
    # ---
    def _ready(self, what: str, target: str) -> bool:
        if self.transport is None:
            logger.error("bot not configured, dropping %s", what)
            return False
        if not target:
            logger.error("no chat configured for %s", what)
            return False
        return True

    async def notify_admin_new_order(
        self, o: OrderView
    ) -> Optional[MessageRef]:
        if not self._ready("admin notification", self.admin_chat_id):
            return None
        try:
            ref = await self.transport.send(
                self.admin_chat_id, self.new_order_text(o),
                decision_keyboard(o.id),
            )
        except DeliveryFailed as e:
            logger.warning("admin notification failed for %s: %s",
                           o.order_code, e.message)
            return None
        except Exception:
            logger.exception("admin notification crashed for %s",
                             o.order_code)
            return None
        logger.info("admin notified of %s", o.order_code)
        return ref

    async def notify_admin_payment(
        self, o: OrderView, proof: Optional[str] = None
    ) -> Optional[MessageRef]:
        if not self._ready("payment notification", self.admin_chat_id):
            return None
        markup = decision_keyboard(o.id)
        photo = None
        if proof:
            try:
                photo = decode_proof(proof)
            except ValueError:
                logger.warning("unreadable payment proof for %s, "
                               "sending text only", o.order_code)
        try:
            if photo is not None:
                ref = await self.transport.send_photo(
                    self.admin_chat_id, photo,
                    self.payment_text(o, True), markup,
                )
            else:
                ref = await self.transport.send(
                    self.admin_chat_id, self.payment_text(o, False), markup,
                )
        except DeliveryFailed as e:
            logger.warning("payment notification failed for %s: %s",
                           o.order_code, e.message)
            return None
        except Exception:
            logger.exception("payment notification crashed for %s",
                             o.order_code)
            return None
        return ref

    async def notify_channel(self, kind: str, o: OrderView) -> bool:
        if not self.channel_id:
            # channel is optional
            return False
        if not self._ready(f"channel event {kind}", self.channel_id):
            return False
        try:
            await self.transport.send(self.channel_id,
                                      self.channel_text(kind, o))
        except DeliveryFailed as e:
            logger.warning("channel event %s failed for %s: %s",
                           kind, o.order_code, e.message)
            return False
        except Exception:
            logger.exception("channel event %s crashed for %s",
                             kind, o.order_code)
            return False
        return True

    async def edit_admin_message(self, ref: MessageRef, text: str) -> bool:
        if self.transport is None:
            return False
        try:
            await self.transport.edit(ref, text)
        except DeliveryFailed as e:
            logger.warning("edit of message %s/%s failed: %s",
                           ref.chat_id, ref.message_id, e.message)
            return False
        except Exception:
            logger.exception("edit of message %s/%s crashed",
                             ref.chat_id, ref.message_id)
            return False
        return True

    async def answer_interaction(self, interaction_id: str,
                                 text: str) -> bool:
        if self.transport is None:
            return False
        try:
            await self.transport.ack(interaction_id, text)
        except DeliveryFailed as e:
            logger.warning("callback answer failed: %s", e.message)
            return False
        except Exception:
            logger.exception("callback answer crashed")
            return False
        return True
