import re
from pathlib import Path
from typing import List

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.exceptions import ConfigError


class Settings(BaseSettings):
    # MySQL forbindelse
    mysql_host: str = "127.0.0.1"
    mysql_port: int = 3306
    mysql_user: str = "root"
    mysql_pass: str = ""  # empty = no password
    mysql_db: str = Field(min_length=1)

    # Comma or whitespace separated, e.g. "orders,customers"
    backup_tables: str = "klinik_apps"

    # Artifact storage
    backup_dir: str = "/var/backups/mysql"
    retention_days: int = 7  # <= 0 disables retention

    # Scheduling
    cron_expr: str = ""  # e.g. "0 2 * * *" (every day at 02:00)
    run_once: bool = False  # one backup and exit (for OS cron / systemd timers)

    # Telegram
    telegram_bot_token: str = Field(min_length=1)
    telegram_chat_id: str = Field(min_length=1)  # target group / channel
    telegram_api_base: str = "https://api.telegram.org"

    # External commands
    dump_command: str = "mysqldump"
    dump_options: str = (
        "--single-transaction --quick --routines --triggers --events "
        "--set-gtid-purged=OFF"
    )
    compress_command: str = "gzip -c"

    # Timeouts
    poll_timeout_seconds: int = 25
    poll_retry_delay_seconds: float = 3.0
    send_text_timeout_seconds: float = 15.0
    upload_timeout_seconds: float = 600.0  # 10 minutes, large dumps on slow uplinks
    scheduled_backup_timeout_seconds: float = 7200.0  # 2 hours
    interactive_backup_timeout_seconds: float = 0.0  # 0 = no bound
    shutdown_drain_seconds: float = 30.0  # grace period for running /backup tasks

    # Opt-in: reject a second backup while one is in flight
    exclusive_backups: bool = False

    # Logging konfiguration
    log_level: str = "INFO"
    log_file_path: str = "logs/dump_agent.log"
    log_retention_days: int = 30

    model_config = SettingsConfigDict(
        env_file="settings.env",
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    @property
    def table_list(self) -> List[str]:
        """Table names from BACKUP_TABLES, in configured order."""
        return [t for t in re.split(r"[,\s]+", self.backup_tables) if t]

    @property
    def tables_label(self) -> str:
        """Table selector as it appears in artifact names."""
        return self.backup_tables.replace(",", "_")

    @property
    def log_directory(self) -> Path:
        return Path(self.log_file_path).parent

    @property
    def scheduler_enabled(self) -> bool:
        return bool(self.cron_expr.strip())


def load_settings(**overrides) -> Settings:
    """
    Load Settings from the environment (and settings.env if present).

    Raises:
        ConfigError: a mandatory variable is missing/empty or a value is malformed.
    """
    try:
        return Settings(**overrides)
    except ValidationError as e:
        problems = []
        for err in e.errors():
            field = ".".join(str(part) for part in err.get("loc", ())) or "settings"
            problems.append(f"{field.upper()}: {err.get('msg')}")
        raise ConfigError("Invalid configuration - " + "; ".join(problems)) from e
