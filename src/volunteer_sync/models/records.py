"""Local record tables: volunteers, events, and attendance check-ins.

Timestamps are stored as ISO-8601 UTC strings exactly as they travel to and
from the remote sheet, so a round trip never reformats them.
"""
from typing import Optional

from sqlmodel import Field, SQLModel


class Volunteer(SQLModel, table=True):
    """One row per registered volunteer."""

    id: str = Field(primary_key=True)
    name: str
    email: str = ""
    committee: str = ""

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    synced_at: Optional[str] = None


class Event(SQLModel, table=True):
    """One row per event (a Sunday service, a workshop, ...)."""

    id: str = Field(primary_key=True)
    name: str
    date: str = Field(index=True)  # YYYY-MM-DD
    start_time: str = ""  # HH:MM
    end_time: str = ""
    status: str = "Active"
    description: str = ""

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    synced_at: Optional[str] = None


class Attendance(SQLModel, table=True):
    """One row per volunteer check-in at an event."""

    id: str = Field(primary_key=True)
    volunteer_id: str = Field(index=True)
    event_id: str = Field(index=True)
    volunteer_name: str = ""
    committee: str = ""
    date: str = ""  # YYYY-MM-DD
    date_time: str = ""  # check-in instant, ISO-8601

    # Local-only scanner metadata, never sent to the sheet
    validation_status: Optional[str] = "ID Found"
    scanner_mode: Optional[str] = "strict"

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    synced_at: Optional[str] = None
