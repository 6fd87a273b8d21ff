from .backup_operation import BackupOperation
from .retention_sweeper import RetentionSweeper

__all__ = ["BackupOperation", "RetentionSweeper"]
