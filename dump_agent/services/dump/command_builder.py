import os
import shlex
from datetime import datetime
from pathlib import Path

from ...config import Settings
from ...models import ARTIFACT_SUFFIX

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def shell_escape(value: str) -> str:
    """
    Quote a value for a POSIX shell command line.

    Values with whitespace, quotes or other shell metacharacters are wrapped in
    single quotes, embedded single quotes become '"'"'. Plain values pass as-is.
    """
    return shlex.quote(str(value))


def build_artifact_name(database: str, tables_label: str, now: datetime) -> str:
    return f"{database}_{tables_label}_{now.strftime(TIMESTAMP_FORMAT)}{ARTIFACT_SUFFIX}"


def claim_artifact_path(directory: Path, name: str) -> Path:
    """
    Atomically create an empty file for the artifact and return its path.

    Two backups started in the same second would share a name, so the second
    one gets a counter suffix: db_tables_20260101_020000_1.sql.gz
    """
    base_name = name[: -len(ARTIFACT_SUFFIX)] if name.endswith(ARTIFACT_SUFFIX) else name

    counter = 0
    while True:
        candidate_name = name if counter == 0 else f"{base_name}_{counter}{ARTIFACT_SUFFIX}"
        candidate = directory / candidate_name
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            counter += 1
            # Safety check - avoid infinite loop
            if counter > 9999:
                raise RuntimeError(
                    f"Could not resolve name conflict after 9999 attempts: {directory / name}"
                )
            continue
        os.close(fd)
        return candidate


def build_dump_pipeline(settings: Settings, target_path: Path) -> str:
    """
    Shell pipeline: dump utility -> compressor -> artifact file.

    The password is not part of the command line; it travels as MYSQL_PWD
    in the child environment.
    """
    tables = " ".join(shell_escape(t) for t in settings.table_list)
    dump_part = " ".join(
        part
        for part in (
            settings.dump_command,
            "-h",
            shell_escape(settings.mysql_host),
            "-P",
            shell_escape(str(settings.mysql_port)),
            "-u",
            shell_escape(settings.mysql_user),
            settings.dump_options.strip(),
            shell_escape(settings.mysql_db),
            tables,
        )
        if part
    )
    return f"{dump_part} | {settings.compress_command} > {shell_escape(str(target_path))}"
