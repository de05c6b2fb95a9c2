"""
Bidirectional mapping between local records and sheet rows.

Pure functions only. Column order comes from the entity descriptors in
volunteer_sync.entities; nothing here branches on entity type except the
attendance enrichment helper.

Local -> remote validates first and raises RecordValidationError for a bad
record; the batch variant collects those and carries on. Remote -> local
never raises: missing or malformed cells become safe defaults (empty string,
today's date, or the current timestamp).
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from volunteer_sync.entities import EntityDescriptor, EntityType, descriptor_for
from volunteer_sync.sync.errors import RecordValidationError
from volunteer_sync.timeutil import now_iso, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

MAX_CELL_LENGTH = 1000
UNKNOWN_VOLUNTEER = "Unknown"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class TransformedBatch:
    """Result of a partial-failure tolerant batch transform."""

    items: List[Tuple[Dict[str, Any], List[str]]] = field(default_factory=list)
    skipped: List[RecordValidationError] = field(default_factory=list)

    @property
    def rows(self) -> List[List[str]]:
        return [row for _, row in self.items]


# ─── Cell helpers ─────────────────────────────────────────────────────────────

def sanitize_text(value: Any) -> str:
    """Make a value safe for a single sheet cell.

    Control characters become spaces, runs of whitespace collapse to one
    space, embedded double quotes are doubled, and the result is capped at
    MAX_CELL_LENGTH characters.
    """
    if value is None:
        return ""
    text = _CONTROL_RE.sub(" ", str(value))
    text = _WHITESPACE_RE.sub(" ", text).strip()
    text = text.replace('"', '""')
    return text[:MAX_CELL_LENGTH]


def unescape_text(value: Any) -> str:
    """Reverse sanitize_text's quote escaping."""
    if value is None:
        return ""
    return str(value).replace('""', '"').strip()


def normalize_date(value: Any) -> Optional[str]:
    """Return YYYY-MM-DD for a valid calendar date, else None.

    Full ISO timestamps are accepted and reduced to their date part.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if not DATE_RE.match(text):
        parsed = parse_iso(text)
        return parsed.strftime("%Y-%m-%d") if parsed else None
    try:
        datetime.strptime(text, "%Y-%m-%d")
    except ValueError:
        return None
    return text


def normalize_time(value: Any) -> Optional[str]:
    """Return zero-padded HH:MM for H:MM, HH:MM or HH:MM:SS input, else None."""
    if value is None:
        return None
    match = TIME_RE.match(str(value).strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def normalize_timestamp(value: Any) -> Optional[str]:
    parsed = parse_iso(value)
    return to_iso(parsed) if parsed else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ─── Validation ───────────────────────────────────────────────────────────────

def validate_record(record: Dict[str, Any], entity_type) -> List[str]:
    """Return a list of problems; an empty list means the record is valid."""
    descriptor = descriptor_for(entity_type)
    problems = []

    for name in descriptor.required_fields:
        if _is_blank(record.get(name)):
            problems.append(f"missing required field '{name}'")

    for spec in descriptor.fields:
        value = record.get(spec.name)
        if _is_blank(value):
            continue
        if spec.kind == "email" and not EMAIL_RE.match(str(value).strip()):
            problems.append(f"invalid email '{value}'")
        elif spec.kind == "date" and normalize_date(value) is None:
            problems.append(f"invalid date '{value}' (expected YYYY-MM-DD)")
        elif spec.kind == "time" and normalize_time(value) is None:
            problems.append(f"invalid time '{value}' (expected HH:MM)")
        elif spec.kind == "datetime" and parse_iso(value) is None:
            problems.append(f"invalid timestamp '{value}' for '{spec.name}'")

    return problems


# ─── Local -> remote ──────────────────────────────────────────────────────────

def to_remote_row(
    record: Dict[str, Any],
    entity_type,
    synced_at: Optional[str] = None,
) -> List[str]:
    """
    Convert one local record to an ordered sheet row.

    Raises:
        RecordValidationError: if required fields are missing or a field
            has the wrong format.
    """
    descriptor = descriptor_for(entity_type)
    problems = validate_record(record, entity_type)
    if problems:
        raise RecordValidationError(descriptor.entity_type.value, record.get("id"), problems)

    now = now_iso()
    row = []
    for spec in descriptor.fields:
        value = record.get(spec.name)
        if spec.kind == "id":
            cell = str(value).strip() if value is not None else ""
        elif spec.kind == "email":
            cell = str(value).strip() if value is not None else ""
        elif spec.kind == "date":
            cell = normalize_date(value) or ""
        elif spec.kind == "time":
            cell = normalize_time(value) or ""
        elif spec.kind == "datetime":
            cell = normalize_timestamp(value) or ""
        elif spec.kind == "timestamp":
            if spec.name == "synced_at":
                cell = synced_at or now
            else:
                cell = normalize_timestamp(value) or now
        else:
            cell = sanitize_text(spec.default if _is_blank(value) else value)
        row.append(cell)
    return row


def enrich_attendance(record: Dict[str, Any], volunteers: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Fill volunteer_name / committee from the volunteer lookup when blank."""
    if not _is_blank(record.get("volunteer_name")) and not _is_blank(record.get("committee")):
        return record
    enriched = dict(record)
    volunteer = volunteers.get(record.get("volunteer_id")) or {}
    if _is_blank(enriched.get("volunteer_name")):
        enriched["volunteer_name"] = volunteer.get("name") or UNKNOWN_VOLUNTEER
    if _is_blank(enriched.get("committee")):
        enriched["committee"] = volunteer.get("committee") or ""
    return enriched


def to_remote_rows(
    records: Iterable[Dict[str, Any]],
    entity_type,
    volunteers: Optional[Dict[str, Dict[str, Any]]] = None,
    synced_at: Optional[str] = None,
) -> TransformedBatch:
    """Transform a batch, skipping (and logging) records that fail validation."""
    entity_type = EntityType(entity_type)
    batch = TransformedBatch()
    for record in records:
        if entity_type is EntityType.ATTENDANCE and volunteers is not None:
            record = enrich_attendance(record, volunteers)
        try:
            row = to_remote_row(record, entity_type, synced_at=synced_at)
        except RecordValidationError as exc:
            logger.warning("Skipping record: %s", exc)
            batch.skipped.append(exc)
            continue
        batch.items.append((record, row))
    return batch


# ─── Remote -> local ──────────────────────────────────────────────────────────

def from_remote_row(row: Sequence[Any], entity_type) -> Dict[str, Any]:
    """
    Convert one sheet row to a local record dict.

    Never raises. Short rows are padded; unparsable dates fall back to today
    and unparsable timestamps to now. The substitution is lossy; callers can
    compare against the raw cell to detect it.
    """
    descriptor = descriptor_for(entity_type)
    cells = list(row) + [""] * (len(descriptor.fields) - len(row))
    now = now_iso()
    record: Dict[str, Any] = {}

    for spec, raw in zip(descriptor.fields, cells):
        text = "" if raw is None else str(raw)
        if spec.kind in ("id", "email"):
            value = text.strip()
        elif spec.kind == "date":
            value = normalize_date(text) or utcnow().strftime("%Y-%m-%d")
        elif spec.kind == "time":
            value = normalize_time(text) or ""
        elif spec.kind == "datetime":
            value = normalize_timestamp(text) or (now if text.strip() else "")
        elif spec.kind == "timestamp":
            if spec.name == "synced_at":
                value = normalize_timestamp(text)
            else:
                value = normalize_timestamp(text) or now
        else:
            value = unescape_text(text) or (spec.default or "")
        record[spec.name] = value

    return record


def from_remote_rows(rows: Iterable[Sequence[Any]], entity_type) -> List[Dict[str, Any]]:
    """Transform sheet rows, dropping rows with a blank id cell."""
    records = []
    for index, row in enumerate(rows):
        if not row or _is_blank(row[0]):
            logger.debug("Ignoring %s row %d with no id", EntityType(entity_type).value, index + 2)
            continue
        records.append(from_remote_row(row, entity_type))
    return records


def row_key(row: Sequence[Any], descriptor: EntityDescriptor, ignore: Tuple[str, ...] = ("synced_at",)) -> Tuple[str, ...]:
    """Comparable view of a row, padded and with bookkeeping columns dropped."""
    cells = [("" if c is None else str(c)) for c in row]
    cells += [""] * (len(descriptor.fields) - len(cells))
    return tuple(
        cell for spec, cell in zip(descriptor.fields, cells) if spec.name not in ignore
    )
