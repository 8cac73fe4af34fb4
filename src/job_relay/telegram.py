from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from job_relay.models import ChannelMessage, DeliveryResult

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"
# some boards refuse image requests without a browser user-agent
IMAGE_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"


class TelegramChannel:
    """Bot API delivery. Transport problems come back as unsuccessful results, never as exceptions."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        bot_token: str,
        *,
        api_url: str = TELEGRAM_API_URL,
        alert_title: str = "Job Relay Alert",
    ):
        self.client = client
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")
        self.alert_title = alert_title

    def _method_url(self, method: str) -> str:
        return f"{self.api_url}/bot{self.bot_token}/{method}"

    async def _call(
        self,
        method: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        try:
            response = await self.client.post(self._method_url(method), json=json, data=data, files=files)
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("telegram %s failed: %s", method, exc)
            return None
        if not isinstance(payload, dict) or not payload.get("ok"):
            description = payload.get("description") if isinstance(payload, dict) else payload
            logger.warning("telegram %s error: %s", method, description)
            return None
        return payload

    @staticmethod
    def _message_id(payload: dict[str, Any]) -> int | None:
        result = payload.get("result")
        if isinstance(result, dict) and isinstance(result.get("message_id"), int):
            return result["message_id"]
        return None

    async def send_text(self, chat_id: str, text: str, *, disable_preview: bool = False) -> DeliveryResult:
        payload = await self._call(
            "sendMessage",
            json={
                "chat_id": chat_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": disable_preview,
            },
        )
        if payload is None:
            return DeliveryResult(success=False)
        return DeliveryResult(success=True, message_id=self._message_id(payload))

    async def _fetch_image(self, image_url: str) -> bytes | None:
        try:
            response = await self.client.get(
                image_url,
                headers={"User-Agent": IMAGE_USER_AGENT},
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            logger.warning("image fetch failed for %s: %s", image_url, exc)
            return None
        if response.status_code >= 400:
            logger.warning("image fetch for %s returned %s", image_url, response.status_code)
            return None
        return response.content

    async def send_photo(self, chat_id: str, image_url: str, caption: str) -> DeliveryResult:
        image = await self._fetch_image(image_url)
        if image is None:
            return await self.send_text(chat_id, caption)

        payload = await self._call(
            "sendPhoto",
            data={"chat_id": chat_id, "caption": caption, "parse_mode": "HTML"},
            files={"photo": ("photo.jpg", image, "image/jpeg")},
        )
        if payload is None:
            logger.warning("photo send failed for %s, falling back to text", image_url)
            return await self.send_text(chat_id, caption)
        return DeliveryResult(success=True, message_id=self._message_id(payload))

    async def deliver(self, chat_id: str, message: ChannelMessage) -> DeliveryResult:
        if message.image_url:
            return await self.send_photo(chat_id, message.image_url, message.text)
        return await self.send_text(chat_id, message.text)

    async def send_with_id(self, chat_id: str, text: str) -> int | None:
        result = await self.send_text(chat_id, text, disable_preview=True)
        return result.message_id if result.success else None

    async def edit_message(self, chat_id: str, message_id: int, text: str) -> bool:
        payload = await self._call(
            "editMessageText",
            json={
                "chat_id": chat_id,
                "message_id": message_id,
                "text": text,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
        return payload is not None

    async def answer_callback_query(self, callback_query_id: str, text: str | None = None) -> bool:
        body: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            body["text"] = text
        return await self._call("answerCallbackQuery", json=body) is not None

    async def send_alert(self, admin_chat_id: str | None, message: str) -> None:
        if not admin_chat_id:
            return
        timestamp = datetime.now(timezone.utc).isoformat()
        text = f"⚠️ <b>{self.alert_title}</b>\n\n{message}\n\n<i>{timestamp}</i>"
        await self.send_text(admin_chat_id, text, disable_preview=True)
