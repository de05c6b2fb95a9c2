"""Shared test fixtures."""
import re
from typing import Dict, List, Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from volunteer_sync.models.changes import ChangeEntry  # noqa: F401
from volunteer_sync.models.records import Attendance, Event, Volunteer  # noqa: F401
from volunteer_sync.models.sync import SyncLog  # noqa: F401
from volunteer_sync.store.local import LocalStore
from volunteer_sync.sync.tracker import ChangeTracker

_RANGE_RE = re.compile(
    r"^(?P<sheet>'(?:[^']|'')*'|[^!]+)!(?P<c1>[A-Z]+)(?P<r1>\d+)(?::(?P<c2>[A-Z]+)(?P<r2>\d+)?)?$"
)


def _col_index(letters: str) -> int:
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - 64)
    return n - 1


class FakeSheetsClient:
    """
    In-memory stand-in for SheetsClient.

    self.sheets maps sheet name -> list of rows, row 1 (the header) at index 0.
    Set self.errors[(method, sheet)] to an exception to make that call fail,
    or push exceptions onto self.validate_errors to fail validate() in order.
    """

    def __init__(self):
        self.sheets: Dict[str, List[List[str]]] = {}
        self.calls: List[tuple] = []
        self.errors: Dict[tuple, Exception] = {}
        self.validate_errors: List[Exception] = []
        self.configured = True
        self.authenticated = True
        self.connected = False
        self.on_call = None  # optional hook(method, range_name)

    # ── Seeding helpers ──────────────────────────────────────────────────────

    def seed(self, sheet: str, rows: List[List[str]], header: Optional[List[str]] = None) -> None:
        self.sheets[sheet] = [list(header or ["ID"])] + [list(r) for r in rows]

    def data_rows(self, sheet: str) -> List[List[str]]:
        return [r for r in self.sheets.get(sheet, [])[1:] if any(c != "" for c in r)]

    def count(self, method: str) -> int:
        return sum(1 for c in self.calls if c[0] == method)

    # ── SheetsClient interface ───────────────────────────────────────────────

    def is_configured(self) -> bool:
        return self.configured

    def is_authenticated(self) -> bool:
        return self.authenticated

    async def connect(self) -> None:
        self.connected = True

    async def validate(self):
        self.calls.append(("validate", None))
        if self.validate_errors:
            raise self.validate_errors.pop(0)
        return {"spreadsheetId": "fake", "properties": {"title": "Fake"}}

    async def read_range(self, range_name: str) -> List[List[str]]:
        sheet, c1, r1, c2, r2 = self._parse(range_name)
        self._record("read_range", range_name, sheet)
        rows = self.sheets.get(sheet, [])
        end = len(rows) if r2 is None else min(r2, len(rows))
        out = []
        for row in rows[r1 - 1:end]:
            cells = [str(c) for c in row[c1:c2 + 1]]
            while cells and cells[-1] == "":
                cells.pop()
            out.append(cells)
        while out and not out[-1]:
            out.pop()
        return out

    async def write_range(self, range_name: str, rows) -> dict:
        sheet, c1, r1, _, _ = self._parse(range_name)
        self._record("write_range", range_name, sheet)
        target = self.sheets.setdefault(sheet, [])
        for offset, row in enumerate(rows):
            index = r1 - 1 + offset
            while len(target) <= index:
                target.append([])
            existing = target[index]
            while len(existing) < c1 + len(row):
                existing.append("")
            existing[c1:c1 + len(row)] = [str(c) for c in row]
        return {"updatedRows": len(rows)}

    async def append_rows(self, range_name: str, rows) -> dict:
        sheet, _, _, _, _ = self._parse(range_name)
        self._record("append_rows", range_name, sheet)
        target = self.sheets.setdefault(sheet, [])
        if not target:
            target.append([])
        while len(target) > 1 and not any(c != "" for c in target[-1]):
            target.pop()
        for row in rows:
            target.append([str(c) for c in row])
        return {"updates": {"updatedRows": len(rows)}}

    async def ensure_header(self, sheet: str, headers) -> bool:
        self.calls.append(("ensure_header", sheet))
        rows = self.sheets.setdefault(sheet, [])
        if rows and any(c != "" for c in rows[0]):
            return False
        if rows:
            rows[0] = list(headers)
        else:
            rows.append(list(headers))
        return True

    # ── Internals ────────────────────────────────────────────────────────────

    def _record(self, method: str, range_name: str, sheet: str) -> None:
        self.calls.append((method, range_name))
        if self.on_call is not None:
            self.on_call(method, range_name)
        error = self.errors.get((method, sheet)) or self.errors.get((method, None))
        if error is not None:
            raise error

    @staticmethod
    def _parse(range_name: str):
        match = _RANGE_RE.match(range_name)
        assert match, f"unparsable range {range_name}"
        sheet = match.group("sheet")
        if sheet.startswith("'"):
            sheet = sheet[1:-1].replace("''", "'")
        c1 = _col_index(match.group("c1"))
        r1 = int(match.group("r1"))
        if match.group("c2") is None:
            return sheet, c1, r1, c1, r1
        c2 = _col_index(match.group("c2"))
        r2 = int(match.group("r2")) if match.group("r2") else None
        return sheet, c1, r1, c2, r2


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine):
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture(engine) -> LocalStore:
    return LocalStore(engine)


@pytest.fixture(name="tracker")
def tracker_fixture(engine, store) -> ChangeTracker:
    """Tracker persisted to the test engine and subscribed to the store."""
    tracker = ChangeTracker(engine)
    store.subscribe(tracker.handle_mutation)
    return tracker


@pytest.fixture(name="fake_client")
def fake_client_fixture() -> FakeSheetsClient:
    return FakeSheetsClient()
