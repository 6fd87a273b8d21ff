"""
BackupScheduler - fires the backup operation on a cron schedule.

Each fire runs as its own asyncio task with a hard time bound, then runs
the retention sweep whether or not the backup succeeded. A failed scheduled
backup is reported to the target channel, since nobody watches the logs at
2 a.m. Successful runs send nothing beyond the document itself.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Set

from croniter import croniter

from ...config import Settings
from ...core.exceptions import ConfigError, RetentionWarning
from ...models import BackupResult, BackupStage
from ..backup.backup_operation import BackupOperation
from ..backup.retention_sweeper import RetentionSweeper
from ..telegram.telegram_client import TelegramClient

# Upper bound for one sleep, so wall-clock jumps are picked up
MAX_SLEEP_SECONDS = 60.0


class BackupScheduler:
    def __init__(
        self,
        settings: Settings,
        backup_operation: BackupOperation,
        retention_sweeper: RetentionSweeper,
        telegram_client: TelegramClient,
        cron_expr: Optional[str] = None,
    ):
        expr = (cron_expr if cron_expr is not None else settings.cron_expr).strip()
        if not self.is_valid_expression(expr):
            raise ConfigError(f"Invalid CRON expression: {expr!r}")

        self._settings = settings
        self._cron_expr = expr
        self._backup_operation = backup_operation
        self._retention_sweeper = retention_sweeper
        self._telegram_client = telegram_client
        self._timeout = settings.scheduled_backup_timeout_seconds

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._fire_tasks: Set[asyncio.Task] = set()
        self._last_fire: Optional[datetime] = None

    @property
    def cron_expr(self) -> str:
        return self._cron_expr

    @staticmethod
    def is_valid_expression(expr: str) -> bool:
        """Five-field cron syntax (minute resolution) or an @daily style alias."""
        expr = expr.strip()
        if not expr:
            return False
        if not expr.startswith("@") and len(expr.split()) != 5:
            return False
        return croniter.is_valid(expr)

    def next_fire_time(self, after: Optional[datetime] = None) -> datetime:
        """Next matching local wall-clock instant strictly after `after`."""
        base = after or datetime.now()
        return croniter(self._cron_expr, base).get_next(datetime)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            logging.warning("Scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name="backup-scheduler")
        logging.info(
            f"[OK] Scheduler active with CRON_EXPR: {self._cron_expr} "
            f"(next run {self.next_fire_time().strftime('%Y-%m-%d %H:%M')})"
        )

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        tasks = [t for t in [self._task, *self._fire_tasks] if t and not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self._fire_tasks.clear()
        logging.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Internal loop
    # ------------------------------------------------------------------

    async def _loop(self) -> None:
        try:
            while self._running:
                now = datetime.now()
                after = max(now, self._last_fire) if self._last_fire else now
                next_run = self.next_fire_time(after)

                while self._running:
                    remaining = (next_run - datetime.now()).total_seconds()
                    if remaining <= 0:
                        break
                    await asyncio.sleep(min(remaining, MAX_SLEEP_SECONDS))

                if not self._running:
                    break

                self._last_fire = next_run
                task = asyncio.create_task(self.fire(), name=f"scheduled-backup-{next_run:%H%M}")
                self._fire_tasks.add(task)
                task.add_done_callback(self._fire_tasks.discard)

        except asyncio.CancelledError:
            logging.debug("Scheduler loop cancelled")
            raise

    async def fire(self) -> Optional[BackupResult]:
        """Run one scheduled backup followed by the retention sweep."""
        logging.info(f"Running scheduled backup at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")

        result: Optional[BackupResult] = None
        try:
            result = await self._backup_operation.run(timeout=self._timeout)
            if result.success:
                logging.info("[OK] Scheduled backup succeeded")
            else:
                logging.error(f"Scheduled backup failed: {result.describe()}")
                await self._notify_failure(result)
        except Exception as e:
            logging.error(f"Scheduled backup crashed: {e}", exc_info=True)
            await self._telegram_client.send_text(
                self._settings.telegram_chat_id,
                f"❌ Scheduled backup failed: {e}",
                parse_mode=None,
            )
        finally:
            # Retention is never skipped because a backup failed
            try:
                await self._retention_sweeper.sweep()
            except RetentionWarning as e:
                logging.warning(f"Retention error: {e}")

        return result

    async def _notify_failure(self, result: BackupResult) -> None:
        if result.stage == BackupStage.GUARD:
            text = f"⚠️ Scheduled backup skipped: {result.describe()}"
        else:
            text = f"❌ Scheduled backup failed: {result.describe()}"
        # Plain text: error output routinely contains Markdown control characters
        await self._telegram_client.send_text(
            self._settings.telegram_chat_id, text, parse_mode=None
        )
