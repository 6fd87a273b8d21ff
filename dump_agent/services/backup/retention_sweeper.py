import logging
import stat
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import aiofiles.os

from ...config import Settings
from ...core.exceptions import RetentionWarning
from ...models import ARTIFACT_SUFFIX


class RetentionSweeper:
    """
    Deletes backup artifacts older than the retention window.

    The directory is the only source of truth - every sweep lists it again.
    Only files ending in .sql.gz are ever touched.
    """

    def __init__(self, settings: Settings):
        self._backup_dir = Path(settings.backup_dir)
        self._retention_days = settings.retention_days

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Remove expired artifacts.

        Returns:
            Number of files deleted

        Raises:
            RetentionWarning: the backup directory could not be listed.
        """
        if self._retention_days <= 0:
            logging.info("Retention disabled (RETENTION_DAYS <= 0)")
            return 0

        cutoff = (now or datetime.now()) - timedelta(days=self._retention_days)
        logging.info(
            f"Cleaning up backups older than {self._retention_days} days "
            f"(before {cutoff.strftime('%Y-%m-%d %H:%M:%S')})"
        )

        try:
            entries = await aiofiles.os.listdir(self._backup_dir)
        except OSError as e:
            raise RetentionWarning(f"Cannot read backup directory {self._backup_dir}: {e}") from e

        cutoff_ts = cutoff.timestamp()
        deleted = 0
        for entry in sorted(entries):
            if not entry.endswith(ARTIFACT_SUFFIX):
                continue

            path = self._backup_dir / entry
            try:
                stat_result = await aiofiles.os.stat(path)
            except OSError as e:
                logging.warning(f"Cannot stat file {entry}: {e}")
                continue

            if not stat.S_ISREG(stat_result.st_mode):
                continue
            if stat_result.st_mtime >= cutoff_ts:
                continue

            # One locked file must not block cleanup of the rest
            try:
                await aiofiles.os.remove(path)
            except OSError as e:
                logging.warning(f"Cannot delete {entry}: {e}")
                continue

            logging.info(f"Deleted old backup: {entry}")
            deleted += 1

        logging.info(f"Retention done, {deleted} file(s) deleted")
        return deleted
