"""
Sync error taxonomy.

Every error carries a `retryable` flag that the retry policy reads before
falling back to keyword matching on the message. A flag of None means
"unknown" and defers to the keywords.
"""
from typing import Optional


class SyncError(RuntimeError):
    """Base class for errors raised by the sync engine."""

    retryable: Optional[bool] = None


class AuthenticationError(SyncError):
    """Not authenticated, or the stored credentials were rejected. Re-run setup."""

    retryable = False


class ConnectivityError(SyncError):
    """Remote store unreachable or not configured."""

    retryable = True


class RemoteApiError(SyncError):
    """The remote API answered with an error status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status

    @property
    def retryable(self) -> Optional[bool]:
        # Unknown status: let the retry policy classify by message
        if self.status is None:
            return None
        return self.status == 429 or self.status >= 500


class RecordValidationError(SyncError):
    """A single record failed validation; it is skipped, never retried."""

    retryable = False

    def __init__(self, entity_type: str, record_id: Optional[str], problems):
        self.entity_type = entity_type
        self.record_id = record_id
        self.problems = list(problems)
        super().__init__(
            f"Invalid {entity_type} record {record_id!r}: {'; '.join(self.problems)}"
        )
