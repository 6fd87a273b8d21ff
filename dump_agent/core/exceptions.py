# dump_agent/core/exceptions.py
from typing import Optional


class ConfigError(Exception):
    """Raised at startup when the configuration cannot be used."""
    pass


class BackupError(Exception):
    """Base exception for backup operation failures."""
    pass


class DumpFailed(BackupError):
    """Raised when the dump pipeline fails or produces no artifact."""
    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        self.returncode = returncode
        self.output = output
        details = message
        if returncode is not None:
            details += f" (exit status {returncode})"
        if output:
            details += f", output: {output.strip()}"
        super().__init__(details)


class DeliveryFailed(BackupError):
    """Raised when the Telegram API rejects a request or cannot be reached."""
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        details = message
        if status_code is not None:
            details += f" (status {status_code})"
        if body:
            details += f": {body}"
        super().__init__(details)


class Canceled(BackupError):
    """Raised when a dump or upload exceeds its time bound."""
    pass


class BackupAlreadyRunning(BackupError):
    """Raised by the single-slot guard when another backup is in flight."""
    def __init__(self):
        super().__init__("A backup is already running")


class RetentionWarning(Exception):
    """Non-fatal retention problem. Callers log it and carry on."""
    pass
