"""Sync audit log model."""
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from volunteer_sync.timeutil import utcnow


class SyncLog(SQLModel, table=True):
    """Records each sync attempt for audit and debugging. Timestamps are UTC-aware."""

    id: Optional[int] = Field(default=None, primary_key=True)
    started_at: datetime = Field(default_factory=utcnow, sa_type=DateTime(timezone=True))
    finished_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    status: str = "running"  # "running", "success", "partial", "error", "skipped"
    strategy: Optional[str] = None  # "none", "delta", "smart", "full"
    attempts: int = 0
    uploaded: int = 0
    downloaded: int = 0
    conflicts: int = 0
    error_message: Optional[str] = None
