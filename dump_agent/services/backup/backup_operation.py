import asyncio
import logging
from typing import Optional

from ...config import Settings
from ...core.exceptions import BackupAlreadyRunning, BackupError, Canceled
from ...models import BackupResult, BackupStage
from ..dump.artifact_producer import ArtifactProducer
from ..telegram.telegram_client import TelegramClient, render_caption


class BackupOperation:
    """
    One end-to-end dump-and-send: ArtifactProducer -> TelegramClient.

    Shared by the scheduler and the /backup command. The artifact stays on
    disk whatever happens to the upload; retention cleans it up later.
    """

    def __init__(
        self,
        settings: Settings,
        producer: ArtifactProducer,
        telegram_client: TelegramClient,
    ):
        self._settings = settings
        self._producer = producer
        self._telegram_client = telegram_client
        self._in_flight = 0

        # Single-slot guard, only when EXCLUSIVE_BACKUPS is enabled
        self._guard: Optional[asyncio.Lock] = (
            asyncio.Lock() if settings.exclusive_backups else None
        )

        logging.info(
            f"BackupOperation initialiseret (exclusive={settings.exclusive_backups})"
        )

    @property
    def is_running(self) -> bool:
        return self._in_flight > 0

    async def run(self, timeout: Optional[float] = None) -> BackupResult:
        """
        Dump, compress and deliver one backup.

        Args:
            timeout: Bound in seconds for dump + upload together, None = unbounded.
        """
        if self._guard is None:
            return await self._run(timeout)

        if self._guard.locked():
            logging.warning("Backup requested while another backup is running - rejected")
            return BackupResult(stage=BackupStage.GUARD, error=BackupAlreadyRunning())

        async with self._guard:
            return await self._run(timeout)

    async def _run(self, timeout: Optional[float]) -> BackupResult:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout else None

        self._in_flight += 1
        try:
            try:
                artifact = await self._producer.produce(timeout=self._remaining(deadline))
            except BackupError as e:
                logging.error(f"Backup dump failed: {e}")
                return BackupResult(stage=BackupStage.DUMP, error=e)

            # Documents always land in the configured target channel
            target_chat = self._settings.telegram_chat_id
            upload = self._telegram_client.send_document(
                artifact.path,
                artifact.name,
                target_chat,
                caption=render_caption(self._settings, artifact.name),
            )
            try:
                remaining = self._remaining(deadline)
                if remaining is None:
                    await upload
                else:
                    await asyncio.wait_for(upload, timeout=remaining)
            except asyncio.TimeoutError:
                error = Canceled(f"Backup time bound elapsed while uploading {artifact.name}")
                logging.error(f"{error} - file kept at {artifact.path}")
                return BackupResult(stage=BackupStage.DELIVERY, artifact=artifact, error=error)
            except BackupError as e:
                logging.error(f"Failed to send {artifact.name} to Telegram: {e} - file kept at {artifact.path}")
                return BackupResult(stage=BackupStage.DELIVERY, artifact=artifact, error=e)

            logging.info(f"[OK] Backup {artifact.name} sent to Telegram (chat {target_chat})")
            return BackupResult(stage=BackupStage.COMPLETED, artifact=artifact)
        finally:
            self._in_flight -= 1

    @staticmethod
    def _remaining(deadline: Optional[float]) -> Optional[float]:
        if deadline is None:
            return None
        return max(deadline - asyncio.get_running_loop().time(), 0.0)
