import asyncio
import logging
import signal
import sys
from pathlib import Path

from .config import Settings
from .core.exceptions import ConfigError, RetentionWarning
from .dependencies import (
    get_backup_operation,
    get_backup_scheduler,
    get_command_dispatcher,
    get_retention_sweeper,
    get_settings,
    get_telegram_client,
)
from .logging_config import setup_logging


async def run_once(settings: Settings) -> int:
    """One backup + retention sweep. Exit code 1 if the backup failed."""
    logging.info("Run-once mode active, performing a single backup...")
    telegram_client = get_telegram_client()
    try:
        result = await get_backup_operation().run()
        if not result.success:
            logging.error(f"[ERR] Backup failed: {result.describe()}")
            return 1

        try:
            await get_retention_sweeper().sweep()
        except RetentionWarning as e:
            logging.warning(f"Retention error: {e}")

        logging.info("[OK] Backup finished")
        return 0
    finally:
        await telegram_client.aclose()


async def serve(settings: Settings) -> int:
    """Scheduler (if configured) plus the Telegram command loop, until SIGINT/SIGTERM."""
    telegram_client = get_telegram_client()

    scheduler = None
    if settings.scheduler_enabled:
        try:
            scheduler = get_backup_scheduler()
        except ConfigError as e:
            logging.error(f"[ERR] {e}")
            await telegram_client.aclose()
            return 1
        await scheduler.start()
    else:
        logging.info("CRON_EXPR not set - scheduled backups disabled, commands only")

    dispatcher = get_command_dispatcher()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    poll_task = asyncio.create_task(dispatcher.run(), name="telegram-poller")
    stop_task = asyncio.create_task(stop_event.wait(), name="shutdown-signal")

    exit_code = 0
    try:
        await asyncio.wait({poll_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        if poll_task.done() and not poll_task.cancelled() and poll_task.exception():
            logging.error(f"Polling loop crashed: {poll_task.exception()}")
            exit_code = 1
    finally:
        logging.info("Dump agent shutting down...")
        for task in (poll_task, stop_task):
            task.cancel()
        await asyncio.gather(poll_task, stop_task, return_exceptions=True)

        await dispatcher.stop(drain_timeout=settings.shutdown_drain_seconds)
        if scheduler:
            await scheduler.stop()
        await telegram_client.aclose()
        logging.info("Alle background tasks stoppet")

    return exit_code


def main() -> None:
    try:
        settings = get_settings()
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
        logging.error(f"[ERR] {e}")
        sys.exit(1)

    setup_logging(settings)

    try:
        Path(settings.backup_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logging.error(f"[ERR] Failed to create backup directory {settings.backup_dir}: {e}")
        sys.exit(1)

    logging.info(
        f"Backups will cover tables {settings.backup_tables} "
        f"of database {settings.mysql_db} -> {settings.backup_dir}"
    )

    if settings.run_once:
        sys.exit(asyncio.run(run_once(settings)))

    try:
        sys.exit(asyncio.run(serve(settings)))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
