import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, List, Set

from ...config import Settings
from ...core.exceptions import DeliveryFailed
from ...models import Message, Update
from .telegram_client import ChatId, TelegramClient

if TYPE_CHECKING:
    from ..backup.backup_operation import BackupOperation


class CommandDispatcher:
    """
    Long-polls getUpdates and reacts to /backup, /chatid and /help.

    The cursor lives only in memory. It moves to update_id + 1 before an
    update is handled, so a failing handler never causes re-delivery.
    /backup runs in its own task; the poll loop never waits for a backup.
    """

    def __init__(
        self,
        settings: Settings,
        telegram_client: TelegramClient,
        backup_operation: "BackupOperation",
    ):
        self._settings = settings
        self._telegram_client = telegram_client
        self._backup_operation = backup_operation

        self.cursor = 0
        self._running = False
        self._backup_tasks: Set[asyncio.Task] = set()

    @property
    def active_backups(self) -> int:
        return len(self._backup_tasks)

    async def run(self) -> None:
        self._running = True
        logging.info("[OK] Bot polling Telegram for commands...")
        while self._running:
            await self.poll_once()

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """
        Stop polling. Outstanding /backup tasks get `drain_timeout` seconds
        to finish before they are cancelled.
        """
        self._running = False
        pending = [t for t in self._backup_tasks if not t.done()]
        if not pending:
            return

        if drain_timeout > 0:
            logging.info(f"Waiting up to {drain_timeout:.0f}s for {len(pending)} running backup(s)")
            _, pending = await asyncio.wait(pending, timeout=drain_timeout)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logging.warning(f"Cancelled {len(pending)} unfinished backup task(s)")

    async def poll_once(self) -> int:
        """
        One getUpdates round trip. Transport failures leave the cursor
        untouched and back off for the fixed retry delay.

        Returns:
            Number of commands handled
        """
        try:
            response = await self._telegram_client.get_updates(
                offset=self.cursor, timeout=self._settings.poll_timeout_seconds
            )
        except DeliveryFailed as e:
            logging.warning(f"Polling error: {e}")
            await asyncio.sleep(self._settings.poll_retry_delay_seconds)
            return 0

        return await self.process_updates(response.result)

    async def process_updates(self, raw_updates: List[Dict[str, Any]]) -> int:
        handled = 0
        for raw in raw_updates:
            update_id = raw.get("update_id") if isinstance(raw, dict) else None
            if not isinstance(update_id, int) or isinstance(update_id, bool):
                logging.warning(f"Skipping update without usable update_id: {raw!r}")
                continue

            self.cursor = max(self.cursor, update_id + 1)

            try:
                update = Update.model_validate(raw)
                if update.message is None:
                    continue
                if await self.handle_message(update.message):
                    handled += 1
            except Exception as e:
                logging.error(f"Error handling update {update_id}: {e}", exc_info=True)

        return handled

    async def handle_message(self, message: Message) -> bool:
        """React to a command. Returns False for text that is not a known command."""
        text = message.text.strip()
        chat_id = message.chat.id

        if text.startswith("/backup"):
            logging.info(f"Backup command received (from {message.sender_label}, chat {chat_id})")
            self.launch_backup(chat_id)
            return True

        if text.startswith("/chatid"):
            await self._telegram_client.send_text(
                chat_id, f"💬 Chat ID: `{chat_id}`\nType: {message.chat.type}"
            )
        elif text.startswith("/help"):
            await self._telegram_client.send_text(chat_id, self.help_text())
        else:
            return False

        return True

    def help_text(self) -> str:
        return (
            "📋 *Available commands:*\n\n"
            "/backup - Back up the configured tables now\n"
            "/chatid - Show this chat's ID\n"
            "/help - Show this help\n\n"
            f"ℹ️ This bot backs up `{self._settings.backup_tables}` "
            f"from database `{self._settings.mysql_db}`"
        )

    def launch_backup(self, reply_chat: ChatId) -> asyncio.Task:
        task = asyncio.create_task(
            self._run_backup_command(reply_chat), name=f"backup-command-{reply_chat}"
        )
        self._backup_tasks.add(task)
        task.add_done_callback(self._backup_tasks.discard)
        return task

    async def _run_backup_command(self, reply_chat: ChatId) -> None:
        # Acknowledgments go to the requesting chat, the document to the target channel
        await self._telegram_client.send_text(
            reply_chat,
            f"🔄 Starting backup of `{self._settings.backup_tables}`... please wait.",
        )

        timeout = self._settings.interactive_backup_timeout_seconds or None
        try:
            result = await self._backup_operation.run(timeout=timeout)
        except Exception as e:
            logging.error(f"Manual backup crashed: {e}", exc_info=True)
            await self._telegram_client.send_text(
                reply_chat, f"❌ Backup failed: {e}", parse_mode=None
            )
            return

        if result.success:
            logging.info("[OK] Manual backup succeeded")
            await self._telegram_client.send_text(
                reply_chat, "✅ Backup finished and sent to the group."
            )
        else:
            logging.error(f"Manual backup failed: {result.describe()}")
            await self._telegram_client.send_text(
                reply_chat, f"❌ Backup failed: {result.describe()}", parse_mode=None
            )
