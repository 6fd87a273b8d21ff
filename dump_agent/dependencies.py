from typing import Any, Dict

from .config import Settings, load_settings
from .services.backup.backup_operation import BackupOperation
from .services.backup.retention_sweeper import RetentionSweeper
from .services.dump.artifact_producer import ArtifactProducer
from .services.scheduler.backup_scheduler import BackupScheduler
from .services.telegram.command_dispatcher import CommandDispatcher
from .services.telegram.telegram_client import TelegramClient

# Global singleton instances
_singletons: Dict[str, Any] = {}


def get_settings() -> Settings:
    """Hent Settings singleton instance. Raises ConfigError on bad config."""
    if "settings" not in _singletons:
        _singletons["settings"] = load_settings()
    return _singletons["settings"]


def get_telegram_client() -> TelegramClient:
    if "telegram_client" not in _singletons:
        _singletons["telegram_client"] = TelegramClient(settings=get_settings())
    return _singletons["telegram_client"]


def get_artifact_producer() -> ArtifactProducer:
    if "artifact_producer" not in _singletons:
        _singletons["artifact_producer"] = ArtifactProducer(settings=get_settings())
    return _singletons["artifact_producer"]


def get_retention_sweeper() -> RetentionSweeper:
    if "retention_sweeper" not in _singletons:
        _singletons["retention_sweeper"] = RetentionSweeper(settings=get_settings())
    return _singletons["retention_sweeper"]


def get_backup_operation() -> BackupOperation:
    if "backup_operation" not in _singletons:
        _singletons["backup_operation"] = BackupOperation(
            settings=get_settings(),
            producer=get_artifact_producer(),
            telegram_client=get_telegram_client(),
        )
    return _singletons["backup_operation"]


def get_backup_scheduler() -> BackupScheduler:
    """Raises ConfigError when CRON_EXPR is not a valid cron expression."""
    if "backup_scheduler" not in _singletons:
        _singletons["backup_scheduler"] = BackupScheduler(
            settings=get_settings(),
            backup_operation=get_backup_operation(),
            retention_sweeper=get_retention_sweeper(),
            telegram_client=get_telegram_client(),
        )
    return _singletons["backup_scheduler"]


def get_command_dispatcher() -> CommandDispatcher:
    if "command_dispatcher" not in _singletons:
        _singletons["command_dispatcher"] = CommandDispatcher(
            settings=get_settings(),
            telegram_client=get_telegram_client(),
            backup_operation=get_backup_operation(),
        )
    return _singletons["command_dispatcher"]


def set_settings(settings: Settings) -> None:
    """Inject an explicit Settings instance (tests, embedding)."""
    _singletons["settings"] = settings


def reset_singletons() -> None:
    """Reset all singletons (for testing)"""
    _singletons.clear()
