from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .core.exceptions import BackupError

ARTIFACT_SUFFIX = ".sql.gz"


class Chat(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    type: str = ""


class User(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    username: Optional[str] = None


class Message(BaseModel):
    """Incoming Telegram message. Only the fields the bot reacts to."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    message_id: int
    chat: Chat
    text: str = ""
    from_user: Optional[User] = Field(default=None, alias="from")

    @property
    def sender_label(self) -> str:
        if self.from_user and self.from_user.username:
            return f"@{self.from_user.username}"
        if self.from_user:
            return f"user {self.from_user.id}"
        return "unknown sender"


class Update(BaseModel):
    model_config = ConfigDict(extra="ignore")

    update_id: int
    message: Optional[Message] = None


class UpdatesResponse(BaseModel):
    """
    getUpdates envelope.

    Updates are kept raw so that one malformed update cannot
    invalidate the rest of the batch.
    """

    model_config = ConfigDict(extra="ignore")

    ok: bool = False
    result: List[Dict[str, Any]] = Field(default_factory=list)
    description: Optional[str] = None


@dataclass
class Artifact:
    """One compressed dump file on disk."""

    path: Path
    name: str
    size_bytes: int
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


class BackupStage(str, Enum):
    """Where a backup operation stopped."""

    GUARD = "guard"  # rejected, another backup in flight
    DUMP = "dump"  # mysqldump | gzip pipeline
    DELIVERY = "delivery"  # upload to Telegram
    COMPLETED = "completed"


@dataclass
class BackupResult:
    stage: BackupStage
    artifact: Optional[Artifact] = None
    error: Optional[BackupError] = None

    @property
    def success(self) -> bool:
        return self.stage == BackupStage.COMPLETED and self.error is None

    def describe(self) -> str:
        if self.success:
            name = self.artifact.name if self.artifact else "artifact"
            return f"{name} delivered"
        if self.stage == BackupStage.DUMP:
            return f"Dump failed: {self.error}"
        if self.stage == BackupStage.DELIVERY:
            return f"Failed to send to Telegram: {self.error}"
        return str(self.error)
