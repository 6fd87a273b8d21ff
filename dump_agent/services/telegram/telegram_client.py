import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import httpx

from ...config import Settings
from ...core.exceptions import Canceled, DeliveryFailed
from ...models import UpdatesResponse

ChatId = Union[int, str]

# Local safety margin on top of the server-side long-poll wait
POLL_SAFETY_MARGIN_SECONDS = 5.0


def render_caption(settings: Settings, display_name: str, now: Optional[datetime] = None) -> str:
    """Markdown caption attached to an uploaded backup."""
    now = now or datetime.now()
    return (
        "📊 *MySQL Backup*\n\n"
        f"🗃 Database: `{settings.mysql_db}`\n"
        f"📋 Tables: `{settings.backup_tables}`\n"
        f"📅 Time: {now.strftime('%Y-%m-%d %H:%M:%S')}\n"
        f"📁 File: `{display_name}`"
    )


class TelegramClient:
    """
    Thin async wrapper around the three Bot API methods the agent uses:
    getUpdates, sendMessage and sendDocument.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings
        self._base_url = f"{settings.telegram_api_base.rstrip('/')}/bot{settings.telegram_bot_token}"
        self._client = httpx.AsyncClient(transport=transport, timeout=30.0)

        logging.info("TelegramClient initialiseret")

    def _url(self, method: str) -> str:
        return f"{self._base_url}/{method}"

    async def get_updates(self, offset: int, timeout: int) -> UpdatesResponse:
        """
        Long-poll for new updates starting at offset.

        Raises:
            DeliveryFailed: transport error, non-2xx status or undecodable body.
        """
        try:
            response = await self._client.post(
                self._url("getUpdates"),
                data={"offset": str(offset), "timeout": str(timeout)},
                timeout=timeout + POLL_SAFETY_MARGIN_SECONDS,
            )
        except httpx.HTTPError as e:
            raise DeliveryFailed(f"getUpdates request failed: {e}")

        if response.status_code >= 300:
            raise DeliveryFailed("getUpdates rejected", response.status_code, response.text)

        try:
            payload = UpdatesResponse.model_validate(response.json())
        except ValueError as e:
            raise DeliveryFailed(f"getUpdates returned an undecodable body: {e}")

        if not payload.ok:
            raise DeliveryFailed(
                "getUpdates answered ok=false", response.status_code, payload.description or ""
            )
        return payload

    async def send_text(
        self, chat_id: ChatId, text: str, parse_mode: Optional[str] = "Markdown"
    ) -> bool:
        """
        Send a short notice. Never raises - a lost acknowledgment must not
        abort the operation that triggered it.
        """
        data = {"chat_id": str(chat_id), "text": text}
        if parse_mode:
            data["parse_mode"] = parse_mode

        try:
            response = await self._client.post(
                self._url("sendMessage"),
                data=data,
                timeout=self._settings.send_text_timeout_seconds,
            )
        except httpx.HTTPError as e:
            logging.warning(f"Error sending message to chat {chat_id}: {e}")
            return False

        if response.status_code >= 300:
            logging.warning(
                f"sendMessage to chat {chat_id} rejected (status {response.status_code}): {response.text}"
            )
            return False
        return True

    async def send_document(
        self,
        path: Path,
        display_name: str,
        chat_id: ChatId,
        caption: Optional[str] = None,
    ) -> None:
        """
        Upload a file as a document. The file is streamed from disk.

        Raises:
            DeliveryFailed: file unreadable, transport error or non-2xx status.
            Canceled: the upload exceeded the configured upload timeout.
        """
        data = {
            "chat_id": str(chat_id),
            "disable_content_type_detection": "true",
            "parse_mode": "Markdown",
        }
        if caption:
            data["caption"] = caption

        try:
            # httpx multipart needs a sync file object, aiofiles handles do not fit here
            with open(path, "rb") as document:
                response = await self._client.post(
                    self._url("sendDocument"),
                    data=data,
                    files={"document": (display_name, document, "application/gzip")},
                    timeout=self._settings.upload_timeout_seconds,
                )
        except httpx.TimeoutException as e:
            raise Canceled(
                f"Upload of {display_name} exceeded {self._settings.upload_timeout_seconds:.0f}s: {e}"
            )
        except httpx.HTTPError as e:
            raise DeliveryFailed(f"sendDocument request failed: {e}")
        except OSError as e:
            raise DeliveryFailed(f"Cannot open file {path}: {e}")

        if response.status_code >= 300:
            raise DeliveryFailed("Telegram API error", response.status_code, response.text)

        logging.info(f"Document {display_name} sent to chat {chat_id}")

    async def aclose(self) -> None:
        await self._client.aclose()
