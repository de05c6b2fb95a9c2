"""Persisted change-tracker entries."""
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class ChangeEntry(SQLModel, table=True):
    """
    The latest local mutation of one record, awaiting upload.

    At most one row per (entity_type, record_id): a later change overwrites
    the earlier one in place.
    """

    __table_args__ = (UniqueConstraint("entity_type", "record_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str = Field(index=True)
    record_id: str
    operation: str  # "create", "update", "delete"
    data_json: str = "{}"  # record snapshot at mutation time
    timestamp: str  # ISO-8601 UTC
    synced: bool = Field(default=False, index=True)
    synced_at: Optional[str] = None
