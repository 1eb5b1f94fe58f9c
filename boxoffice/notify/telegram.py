"""
Minimal Telegram Bot API client over a shared httpx.AsyncClient.

Constructed once at startup and reused for every send. Every failure,
whether network, HTTP or an ``ok: false`` reply, surfaces as
DeliveryFailed.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import DeliveryFailed
from ..model.orders import MessageRef

logger = logging.getLogger(__name__)

PARSE_MODE = "MarkdownV2"


class TelegramTransport:
    def __init__(self, token: str, http: httpx.AsyncClient,
                 api_url: str = "https://api.telegram.org") -> None:
        if not token:
            raise ValueError("bot token is required")
        self.http = http
        self._base = f"{api_url.rstrip('/')}/bot{token}"

    async def _call(self, method: str, data: Dict[str, Any],
                    files: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self._base}/{method}"
        try:
            if files:
                # multipart: nested values must be JSON strings
                form = {
                    k: v if isinstance(v, str) else json.dumps(v)
                    for k, v in data.items()
                }
                r = await self.http.post(url, data=form, files=files)
            else:
                r = await self.http.post(url, json=data)
        except httpx.HTTPError as e:
            raise DeliveryFailed(
                f"{method}: {e.__class__.__name__}: {e}"
            ) from e

        try:
            body = r.json()
        except ValueError:
            raise DeliveryFailed(
                f"{method}: HTTP {r.status_code}, non-JSON reply"
            )
        if not body.get("ok"):
            raise DeliveryFailed(
                f"{method}: {body.get('description') or r.status_code}"
            )
        return body.get("result")

    @staticmethod
    def _ref(result: Dict[str, Any], has_media: bool) -> MessageRef:
        return MessageRef(
            chat_id=str(result["chat"]["id"]),
            message_id=int(result["message_id"]),
            has_media=has_media,
        )

    async def send(self, chat_id: str, text: str,
                   markup: Optional[Dict[str, Any]] = None) -> MessageRef:
        data = {"chat_id": chat_id, "text": text, "parse_mode": PARSE_MODE}
        if markup:
            data["reply_markup"] = markup
        return self._ref(await self._call("sendMessage", data), False)

    async def send_photo(self, chat_id: str, photo: bytes | str,
                         caption: str,
                         markup: Optional[Dict[str, Any]] = None
                         ) -> MessageRef:
        data: Dict[str, Any] = {
            "chat_id": chat_id, "caption": caption, "parse_mode": PARSE_MODE,
        }
        if markup:
            data["reply_markup"] = markup
        if isinstance(photo, bytes):
            files = {"photo": ("payment.jpg", photo, "image/jpeg")}
            result = await self._call("sendPhoto", data, files=files)
        else:
            data["photo"] = photo
            result = await self._call("sendPhoto", data)
        return self._ref(result, True)

    async def edit(self, ref: MessageRef, text: str) -> None:
        # no reply_markup: Telegram drops the inline keyboard
        data: Dict[str, Any] = {
            "chat_id": ref.chat_id,
            "message_id": ref.message_id,
            "parse_mode": PARSE_MODE,
        }
        if ref.has_media:
            method = "editMessageCaption"
            data["caption"] = text
        else:
            method = "editMessageText"
            data["text"] = text
        try:
            await self._call(method, data)
        except DeliveryFailed as e:
            # repeated taps re-render identical text
            if "message is not modified" in str(e):
                return
            raise

    async def ack(self, interaction_id: str, text: str) -> None:
        await self._call("answerCallbackQuery", {
            "callback_query_id": interaction_id, "text": text,
        })

    async def set_webhook(self, url: str, secret_token: str = "") -> None:
        data: Dict[str, Any] = {
            "url": url, "allowed_updates": ["callback_query", "message"],
        }
        if secret_token:
            data["secret_token"] = secret_token
        await self._call("setWebhook", data)
        logger.info("telegram webhook registered", extra={"url": url})
