import asyncio
import logging
import os
import signal
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiofiles.os

from ...config import Settings
from ...core.exceptions import Canceled, DumpFailed
from ...models import Artifact
from .command_builder import build_artifact_name, build_dump_pipeline, claim_artifact_path


class ArtifactProducer:
    """
    Runs `mysqldump ... | gzip -c > file` and returns the resulting Artifact.

    One call = one artifact file in the backup directory. A failed or
    timed out run removes its partial file again.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._backup_dir = Path(settings.backup_dir)

        logging.info(
            f"ArtifactProducer initialiseret: {settings.mysql_db} "
            f"({settings.backup_tables}) -> {self._backup_dir}"
        )

    async def produce(self, timeout: Optional[float] = None) -> Artifact:
        """
        Produce one artifact.

        Args:
            timeout: Upper bound in seconds for the whole pipeline, None = unbounded.

        Raises:
            DumpFailed: pipeline exited non-zero or left no usable file.
            Canceled: the timeout elapsed and the pipeline was killed.
        """
        started_at = datetime.now()
        name = build_artifact_name(
            self._settings.mysql_db, self._settings.tables_label, started_at
        )

        try:
            path = await asyncio.to_thread(claim_artifact_path, self._backup_dir, name)
        except OSError as e:
            raise DumpFailed(f"Cannot create backup file in {self._backup_dir}: {e}")

        logging.info(f"Starting backup to file: {path.name}")
        command = build_dump_pipeline(self._settings, path)

        try:
            process = await asyncio.create_subprocess_exec(
                "bash",
                "-o",
                "pipefail",
                "-c",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=self._child_environment(),
                start_new_session=True,
            )
        except OSError as e:
            await self._discard(path)
            raise DumpFailed(f"Cannot start dump pipeline: {e}")

        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            logging.error(f"Dump timed out after {timeout}s, killing pipeline for {path.name}")
            await self._terminate(process)
            await self._discard(path)
            raise Canceled(f"Dump exceeded {timeout:.0f}s and was terminated")
        except asyncio.CancelledError:
            logging.warning(f"Dump cancelled, killing pipeline for {path.name}")
            await self._terminate(process)
            await self._discard(path)
            raise

        output_text = output.decode("utf-8", errors="replace") if output else ""

        if process.returncode != 0:
            await self._discard(path)
            raise DumpFailed("mysqldump pipeline failed", process.returncode, output_text)

        # The pipeline may exit 0 without writing anything (sink failure)
        try:
            stat_result = await aiofiles.os.stat(path)
        except OSError as e:
            raise DumpFailed(f"Cannot read backup file info for {path}: {e}")

        if stat_result.st_size == 0:
            await self._discard(path)
            raise DumpFailed(f"Pipeline produced an empty file: {path.name}", 0, output_text)

        artifact = Artifact(
            path=path,
            name=path.name,
            size_bytes=stat_result.st_size,
            created_at=started_at,
        )
        logging.info(f"Backup done, file size: {artifact.size_mb:.2f} MB ({artifact.name})")
        return artifact

    def _child_environment(self) -> dict:
        env = os.environ.copy()
        if self._settings.mysql_pass:
            env["MYSQL_PWD"] = self._settings.mysql_pass
        return env

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        # bash -c spawns the pipeline stages as children; kill the whole group
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        await process.wait()

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
            logging.debug(f"Removed partial backup file: {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logging.warning(f"Could not remove partial backup file {path}: {e}")
