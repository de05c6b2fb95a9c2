"""
Generate recurring weekly events (Sunday sessions by default).

Usage:
    python -m volunteer_sync.scripts.recurring_events \
        --start 2025-09-07 --end 2026-05-16 \
        --exclude 2025-11-30 --exclude 2025-12-21

Events are written through the local store, so they are tracked as local
changes and uploaded on the next sync. Ids are E<YYYYMMDD>; dates that
already have an event with that id are left alone.
"""
import argparse
import logging
from datetime import date, timedelta
from typing import Dict, Iterable, List, Tuple

from volunteer_sync.entities import EntityType

logger = logging.getLogger(__name__)

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def generate_weekly_events(
    start: date,
    end: date,
    weekday: int = 6,
    excluded: Iterable[date] = (),
    description: str = "Regular Sunday class session",
) -> List[Dict[str, str]]:
    """
    One event per `weekday` (0=Monday .. 6=Sunday) from start to end inclusive.

    The first event falls on the first matching weekday on or after `start`.
    """
    excluded = set(excluded)
    current = start + timedelta(days=(weekday - start.weekday()) % 7)
    day_name = WEEKDAYS[weekday].capitalize()
    events = []
    while current <= end:
        if current in excluded:
            logger.info("Skipped excluded date: %s", current.isoformat())
        else:
            events.append({
                "id": f"E{current.strftime('%Y%m%d')}",
                "name": f"{day_name}, {MONTH_NAMES[current.month - 1]} {current.day}",
                "date": current.isoformat(),
                "status": "Active",
                "description": description,
            })
        current += timedelta(days=7)
    return events


def create_events(store, events: Iterable[Dict[str, str]]) -> Tuple[int, int]:
    """Add events that don't exist yet. Returns (created, already_present)."""
    collection = store.collection(EntityType.EVENTS)
    created = existing = 0
    for event in events:
        if collection.get(event["id"]) is not None:
            existing += 1
            continue
        collection.add(event)
        created += 1
    return created, existing


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    parser = argparse.ArgumentParser(description="Create recurring weekly events")
    parser.add_argument("--start", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--end", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
    parser.add_argument("--weekday", choices=WEEKDAYS, default="sunday")
    parser.add_argument(
        "--exclude", type=date.fromisoformat, action="append", default=[],
        help="Date to skip (repeatable)",
    )
    parser.add_argument("--description", default="Regular Sunday class session")
    args = parser.parse_args()

    if args.end < args.start:
        parser.error("--end must not be before --start")

    from volunteer_sync.bootstrap import build_services

    services = build_services()
    events = generate_weekly_events(
        args.start,
        args.end,
        weekday=WEEKDAYS.index(args.weekday),
        excluded=args.exclude,
        description=args.description,
    )
    created, existing = create_events(services.store, events)
    logger.info(
        "Generated %d events: %d created, %d already present. Run a sync to upload them.",
        len(events),
        created,
        existing,
    )


if __name__ == "__main__":
    main()
