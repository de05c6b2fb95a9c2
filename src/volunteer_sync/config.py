from pathlib import Path
from typing import Optional

from pydantic import BaseModel
from pydantic_settings import BaseSettings

APP_DIR_DEFAULT = Path.home() / ".volunteer_sync"


class SyncThresholds(BaseModel):
    """Data-driven knobs for strategy selection."""

    full_sync_days: float = 7
    delta_threshold: int = 50
    batch_size: int = 100


class Settings(BaseSettings):
    database_url: str = "sqlite:///./volunteers.db"
    spreadsheet_id: str = ""
    credentials_dir: Path = APP_DIR_DEFAULT / "credentials"
    state_dir: Path = APP_DIR_DEFAULT / "state"
    sync_enabled: bool = True

    volunteers_sheet: str = "Volunteers"
    events_sheet: str = "Events"
    attendance_sheet: str = "Attendance"

    full_sync_days: float = 7
    delta_threshold: int = 50
    batch_size: int = 100
    sync_interval_ms: int = 300_000
    delta_sync_interval_ms: int = 30_000

    sync_max_retries: int = 3
    sync_retry_base_delay_ms: int = 5_000
    sync_retry_max_delay_ms: int = 30_000

    change_retention_days: int = 7
    cleanup_hour: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

    def thresholds(self) -> SyncThresholds:
        return SyncThresholds(
            full_sync_days=self.full_sync_days,
            delta_threshold=self.delta_threshold,
            batch_size=self.batch_size,
        )

    def retry_policy(self):
        from volunteer_sync.sync.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self.sync_max_retries,
            base_delay_ms=self.sync_retry_base_delay_ms,
            max_delay_ms=self.sync_retry_max_delay_ms,
        )

    def sheet_names(self) -> dict:
        return {
            "volunteers": self.volunteers_sheet,
            "events": self.events_sheet,
            "attendance": self.attendance_sheet,
        }


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
