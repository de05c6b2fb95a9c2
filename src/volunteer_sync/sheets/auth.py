"""
Google service-account credentials with disk persistence.

The setup wizard stores the service-account key JSON once; every later
start builds google-auth credentials from it. The spreadsheet must be shared
with the key's client_email for reads and writes to succeed.

Key file layout on disk:
    ~/.volunteer_sync/credentials/            (0700)
    ~/.volunteer_sync/credentials/service_account.json   (0600)
"""
import json
import os
import stat
from pathlib import Path
from typing import Any, Dict, Optional

from google.auth.exceptions import GoogleAuthError, RefreshError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from volunteer_sync.config import APP_DIR_DEFAULT
from volunteer_sync.sync.errors import AuthenticationError

# ── Constants ─────────────────────────────────────────────────────────────────

CREDENTIALS_DIR_DEFAULT = APP_DIR_DEFAULT / "credentials"
CREDENTIALS_FILE_NAME = "service_account.json"
SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)
REQUIRED_KEYS = ("type", "client_email", "private_key")


# ── Exceptions ────────────────────────────────────────────────────────────────

class NoCredentialsError(AuthenticationError):
    """Raised when no service-account key has been saved."""


class InvalidCredentialsError(AuthenticationError):
    """Raised when the saved key is malformed or rejected by Google."""


# ── Main class ────────────────────────────────────────────────────────────────

class SheetsAuth:
    """
    Manages the service-account key file and the credentials built from it.

    Usage:
        auth = SheetsAuth()
        if not auth.has_credentials():
            auth.save(json.loads(Path("key.json").read_text()))
        credentials = auth.credentials()
    """

    def __init__(self, credentials_dir: Path = CREDENTIALS_DIR_DEFAULT):
        self._credentials_dir = Path(credentials_dir)
        self._key_file = self._credentials_dir / CREDENTIALS_FILE_NAME
        self._credentials: Optional[service_account.Credentials] = None

    @property
    def key_file(self) -> Path:
        return self._key_file

    # ── Persistence ───────────────────────────────────────────────────────────

    def has_credentials(self) -> bool:
        """Return True if a key file exists on disk."""
        return self._key_file.exists()

    def save(self, key_info: Dict[str, Any]) -> None:
        """
        Validate and persist a service-account key with owner-only permissions.

        Raises:
            InvalidCredentialsError: if the key is not a service-account key.
        """
        missing = [k for k in REQUIRED_KEYS if not key_info.get(k)]
        if missing:
            raise InvalidCredentialsError(
                f"Service-account key is missing: {', '.join(missing)}"
            )
        if key_info.get("type") != "service_account":
            raise InvalidCredentialsError(
                f"Expected a service_account key, got type={key_info.get('type')!r}"
            )

        self._credentials_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(self._credentials_dir, stat.S_IRWXU)  # 0700

        self._key_file.write_text(json.dumps(key_info, indent=2))
        os.chmod(self._key_file, stat.S_IRUSR | stat.S_IWUSR)  # 0600
        self._credentials = None

    def load(self) -> Dict[str, Any]:
        """
        Load the key JSON from disk.

        Raises:
            NoCredentialsError: if no key file exists.
            InvalidCredentialsError: if the file is not valid JSON.
        """
        if not self._key_file.exists():
            raise NoCredentialsError(
                f"No service-account key found at {self._key_file}. "
                "Run `python -m volunteer_sync setup` to configure Google Sheets access."
            )
        try:
            return json.loads(self._key_file.read_text())
        except json.JSONDecodeError as exc:
            raise InvalidCredentialsError(f"Key file {self._key_file} is not valid JSON") from exc

    def clear(self) -> None:
        """Delete the key file (does not raise if already absent)."""
        if self._key_file.exists():
            self._key_file.unlink()
        self._credentials = None

    # ── Auth ──────────────────────────────────────────────────────────────────

    def credentials(self) -> service_account.Credentials:
        """
        Build (once) google-auth credentials from the saved key.

        Raises:
            NoCredentialsError: if no key is saved.
            InvalidCredentialsError: if google-auth rejects the key.
        """
        if self._credentials is None:
            info = self.load()
            try:
                self._credentials = service_account.Credentials.from_service_account_info(
                    info, scopes=list(SCOPES)
                )
            except (ValueError, GoogleAuthError) as exc:
                raise InvalidCredentialsError(f"Service-account key rejected: {exc}") from exc
        return self._credentials

    def is_authenticated(self) -> bool:
        """True when a usable key is saved. Does not touch the network."""
        try:
            self.credentials()
        except AuthenticationError:
            return False
        return True

    def refresh(self) -> None:
        """
        Fetch a fresh access token.

        Raises:
            AuthenticationError: if Google refuses the key.
        """
        creds = self.credentials()
        try:
            creds.refresh(Request())
        except RefreshError as exc:
            raise InvalidCredentialsError(f"Credential refresh failed: {exc}") from exc

    @property
    def service_account_email(self) -> Optional[str]:
        try:
            return self.load().get("client_email")
        except AuthenticationError:
            return None
