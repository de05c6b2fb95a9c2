"""Tests for the Sheets client: A1 range helpers and error mapping."""
import socket
import threading
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from googleapiclient.errors import HttpError

from volunteer_sync.sheets.client import (
    SheetsClient,
    column_letter,
    column_range,
    data_range,
    header_range,
    quote_title,
    row_range,
)
from volunteer_sync.sync.errors import AuthenticationError, ConnectivityError, RemoteApiError


def _http_error(status: int, message: str = "boom") -> HttpError:
    resp = httplib2.Response({"status": status})
    resp.reason = message
    content = ('{"error": {"code": %d, "message": "%s"}}' % (status, message)).encode()
    return HttpError(resp, content)


@pytest.fixture
def service():
    return MagicMock()


@pytest.fixture
def auth():
    auth = MagicMock()
    auth.is_authenticated.return_value = True
    return auth


@pytest.fixture
def client(service, auth):
    return SheetsClient("sheet-123", auth=auth, service_factory=lambda creds: service)


def _values(service):
    return service.spreadsheets.return_value.values.return_value


# ─── Range helpers ────────────────────────────────────────────────────────────

class TestRangeHelpers:
    @pytest.mark.parametrize("index,expected", [(1, "A"), (7, "G"), (26, "Z"), (27, "AA"), (52, "AZ")])
    def test_column_letter(self, index, expected):
        assert column_letter(index) == expected

    def test_quote_title(self):
        assert quote_title("Volunteers") == "Volunteers"
        assert quote_title("Sign In") == "'Sign In'"
        assert quote_title("Bob's") == "'Bob''s'"

    def test_ranges(self):
        assert data_range("Volunteers", 7) == "Volunteers!A2:G"
        assert row_range("Volunteers", 5, 7) == "Volunteers!A5:G5"
        assert header_range("Events", 10) == "Events!A1:J1"
        assert column_range("Attendance", 8) == "Attendance!I2:I"
        assert data_range("Sign In", 3) == "'Sign In'!A2:C"


# ─── Client ───────────────────────────────────────────────────────────────────

class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_builds_service(self, client, auth):
        assert client.connected is False
        await client.connect()
        assert client.connected is True
        auth.credentials.assert_called_once()

    @pytest.mark.asyncio
    async def test_connect_requires_spreadsheet_id(self, auth):
        client = SheetsClient("  ", auth=auth, service_factory=MagicMock())
        assert client.is_configured() is False
        with pytest.raises(ConnectivityError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_calls_before_connect_raise(self, client):
        with pytest.raises(ConnectivityError):
            await client.read_range("Volunteers!A2:G")


class TestValues:
    @pytest.mark.asyncio
    async def test_read_range_stringifies_cells(self, client, service):
        _values(service).get.return_value.execute.return_value = {"values": [["V1", 42], ["V2"]]}
        await client.connect()
        rows = await client.read_range("Volunteers!A2:G")
        assert rows == [["V1", "42"], ["V2"]]
        _values(service).get.assert_called_with(
            spreadsheetId="sheet-123", range="Volunteers!A2:G", majorDimension="ROWS"
        )

    @pytest.mark.asyncio
    async def test_read_empty_range(self, client, service):
        _values(service).get.return_value.execute.return_value = {"range": "Volunteers!A2:G"}
        await client.connect()
        assert await client.read_range("Volunteers!A2:G") == []

    @pytest.mark.asyncio
    async def test_blocking_call_runs_in_worker_thread_of_running_loop(self, client, service):
        threads = []

        def execute():
            threads.append(threading.current_thread())
            return {"values": [["V1"]]}

        _values(service).get.return_value.execute.side_effect = execute
        await client.connect()
        with patch(
            "volunteer_sync.sheets.client.asyncio.get_event_loop",
            side_effect=RuntimeError("no implicit event loop"),
        ):
            assert await client.read_range("Volunteers!A2:G") == [["V1"]]
        assert threads and threads[0] is not threading.main_thread()

    @pytest.mark.asyncio
    async def test_append_uses_raw_insert_rows(self, client, service):
        _values(service).append.return_value.execute.return_value = {}
        await client.connect()
        await client.append_rows("Volunteers!A2:G", [("V1", "A")])
        _values(service).append.assert_called_once_with(
            spreadsheetId="sheet-123",
            range="Volunteers!A2:G",
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": [["V1", "A"]]},
        )

    @pytest.mark.asyncio
    async def test_ensure_header_writes_when_empty(self, client, service):
        _values(service).get.return_value.execute.return_value = {}
        _values(service).update.return_value.execute.return_value = {}
        await client.connect()
        assert await client.ensure_header("Events", ["ID", "Name"]) is True
        _values(service).update.assert_called_once_with(
            spreadsheetId="sheet-123",
            range="Events!A1:B1",
            valueInputOption="RAW",
            body={"values": [["ID", "Name"]]},
        )

    @pytest.mark.asyncio
    async def test_ensure_header_leaves_existing(self, client, service):
        _values(service).get.return_value.execute.return_value = {"values": [["ID", "Name"]]}
        await client.connect()
        assert await client.ensure_header("Events", ["ID", "Name"]) is False
        _values(service).update.assert_not_called()


class TestErrorMapping:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_access_denied_is_authentication_error(self, client, service, status):
        _values(service).get.return_value.execute.side_effect = _http_error(status, "denied")
        await client.connect()
        with pytest.raises(AuthenticationError):
            await client.read_range("Volunteers!A2:G")

    @pytest.mark.asyncio
    async def test_rate_limit_is_retryable_remote_error(self, client, service):
        _values(service).get.return_value.execute.side_effect = _http_error(429, "quota")
        await client.connect()
        with pytest.raises(RemoteApiError) as exc_info:
            await client.read_range("Volunteers!A2:G")
        assert exc_info.value.status == 429
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_bad_request_is_not_retryable(self, client, service):
        _values(service).get.return_value.execute.side_effect = _http_error(400, "Unable to parse range")
        await client.connect()
        with pytest.raises(RemoteApiError) as exc_info:
            await client.read_range("Nope!A2:G")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        httplib2.ServerNotFoundError("Unable to find the server"),
        socket.timeout("timed out"),
        ConnectionResetError("reset"),
    ])
    async def test_network_failures_are_connectivity_errors(self, client, service, error):
        _values(service).get.return_value.execute.side_effect = error
        await client.connect()
        with pytest.raises(ConnectivityError):
            await client.read_range("Volunteers!A2:G")

    @pytest.mark.asyncio
    async def test_validate_not_shared(self, client, service):
        service.spreadsheets.return_value.get.return_value.execute.side_effect = _http_error(403)
        await client.connect()
        with pytest.raises(AuthenticationError, match="shared"):
            await client.validate()
