"""
Async wrapper around the Google Sheets v4 values API.

google-api-python-client is synchronous; every request is executed in the
default thread pool executor so it doesn't block the asyncio event loop.

Library exceptions never escape this module. They are mapped onto the sync
error taxonomy:
    HttpError 401/403        -> AuthenticationError
    HttpError (other)        -> RemoteApiError(status)
    RefreshError             -> AuthenticationError
    httplib2 / socket errors -> ConnectivityError
"""
import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional, Sequence

import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from volunteer_sync.sheets.auth import InvalidCredentialsError, SheetsAuth
from volunteer_sync.sync.errors import (
    AuthenticationError,
    ConnectivityError,
    RemoteApiError,
)

logger = logging.getLogger(__name__)

_SIMPLE_TITLE_RE = re.compile(r"^[A-Za-z0-9_]+$")


# ── Range helpers ─────────────────────────────────────────────────────────────

def column_letter(index: int) -> str:
    """1-based column number to A1 letters: 1 -> A, 27 -> AA."""
    label = ""
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        label = chr(65 + remainder) + label
    return label


def quote_title(title: str) -> str:
    """Quote a sheet title for A1 notation when it contains spaces etc."""
    if _SIMPLE_TITLE_RE.match(title):
        return title
    return "'" + title.replace("'", "''") + "'"


def data_range(sheet: str, n_columns: int) -> str:
    """All data rows (row 2 onwards) of a sheet."""
    return f"{quote_title(sheet)}!A2:{column_letter(n_columns)}"


def row_range(sheet: str, row_number: int, n_columns: int) -> str:
    """A single row, e.g. Volunteers!A5:G5."""
    return f"{quote_title(sheet)}!A{row_number}:{column_letter(n_columns)}{row_number}"


def header_range(sheet: str, n_columns: int) -> str:
    return row_range(sheet, 1, n_columns)


def column_range(sheet: str, column_index: int) -> str:
    """Data cells of one column (0-based index), row 2 onwards."""
    letter = column_letter(column_index + 1)
    return f"{quote_title(sheet)}!{letter}2:{letter}"


def _http_status(exc: HttpError) -> Optional[int]:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


# ── Client ────────────────────────────────────────────────────────────────────

class SheetsClient:
    """
    Thin async wrapper over the Sheets v4 service.

    Call connect() before any data methods. connect() builds credentials
    from the key saved by SheetsAuth; no secrets live in config or env.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        auth: Optional[SheetsAuth] = None,
        service_factory: Optional[Callable[[Any], Any]] = None,
    ):
        """
        Args:
            spreadsheet_id: Target spreadsheet id (from its URL).
            auth: SheetsAuth instance. Defaults to SheetsAuth() which reads
                  from ~/.volunteer_sync/credentials/.
            service_factory: Builds the discovery service from credentials.
                  Tests pass a MagicMock-returning factory here.
        """
        self.spreadsheet_id = spreadsheet_id
        self._auth = auth or SheetsAuth()
        self._service_factory = service_factory or _build_service
        self._service = None

    @property
    def auth(self) -> SheetsAuth:
        return self._auth

    @property
    def connected(self) -> bool:
        return self._service is not None

    def is_configured(self) -> bool:
        return bool(self.spreadsheet_id and self.spreadsheet_id.strip())

    def is_authenticated(self) -> bool:
        return self._auth.is_authenticated()

    async def connect(self) -> None:
        """
        Build the Sheets service from the saved credentials.

        Raises:
            AuthenticationError: no key saved, or the key was rejected.
            ConnectivityError: the spreadsheet id is not configured.
        """
        if not self.is_configured():
            raise ConnectivityError("No spreadsheet configured (set SPREADSHEET_ID)")
        await self._run(self._connect_sync)

    def _connect_sync(self) -> None:
        credentials = self._auth.credentials()
        self._service = self._service_factory(credentials)

    async def validate(self) -> Dict[str, Any]:
        """Fetch spreadsheet metadata to prove the sheet exists and is shared."""
        return await self._call(
            lambda values, sheets: sheets.get(
                spreadsheetId=self.spreadsheet_id,
                fields="spreadsheetId,properties.title,sheets.properties.title",
            )
        )

    async def read_range(self, range_name: str) -> List[List[str]]:
        """Return the rows of a range as lists of strings (trailing blanks trimmed by the API)."""
        result = await self._call(
            lambda values, sheets: values.get(
                spreadsheetId=self.spreadsheet_id,
                range=range_name,
                majorDimension="ROWS",
            )
        )
        return [[str(cell) for cell in row] for row in result.get("values", [])]

    async def write_range(self, range_name: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        """Overwrite a range with the given rows (RAW, no formula parsing)."""
        return await self._call(
            lambda values, sheets: values.update(
                spreadsheetId=self.spreadsheet_id,
                range=range_name,
                valueInputOption="RAW",
                body={"values": [list(r) for r in rows]},
            )
        )

    async def append_rows(self, range_name: str, rows: Sequence[Sequence[Any]]) -> Dict[str, Any]:
        """Append rows after the last populated row of the range."""
        return await self._call(
            lambda values, sheets: values.append(
                spreadsheetId=self.spreadsheet_id,
                range=range_name,
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": [list(r) for r in rows]},
            )
        )

    async def ensure_header(self, sheet: str, headers: Sequence[str]) -> bool:
        """Write the header row if row 1 is empty. Returns True if written."""
        target = header_range(sheet, len(headers))
        existing = await self.read_range(target)
        if existing and any(cell.strip() for cell in existing[0]):
            return False
        await self.write_range(target, [list(headers)])
        logger.info("Wrote header row to sheet %s", sheet)
        return True

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _call(self, make_request: Callable[[Any, Any], Any]) -> Dict[str, Any]:
        if self._service is None:
            raise ConnectivityError("Sheets client is not connected; call connect() first")

        def execute():
            sheets = self._service.spreadsheets()
            return make_request(sheets.values(), sheets).execute()

        return await self._run(execute)

    async def _run(self, fn):
        """Run a blocking Google API call in the thread pool, mapping errors."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, fn)
        except HttpError as exc:
            status = _http_status(exc)
            reason = exc._get_reason() if hasattr(exc, "_get_reason") else str(exc)
            if status in (401, 403):
                raise AuthenticationError(
                    f"Sheets API refused access ({status}): {reason}. "
                    "Check that the spreadsheet is shared with the service account."
                ) from exc
            raise RemoteApiError(f"Sheets API error {status}: {reason}", status=status) from exc
        except RefreshError as exc:
            raise InvalidCredentialsError(f"Credential refresh failed: {exc}") from exc
        except (httplib2.HttpLib2Error, OSError) as exc:
            raise ConnectivityError(f"Network error talking to Google Sheets: {exc}") from exc


def _build_service(credentials):
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)
