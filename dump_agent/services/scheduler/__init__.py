from .backup_scheduler import BackupScheduler

__all__ = ["BackupScheduler"]
