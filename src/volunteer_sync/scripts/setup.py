"""
Interactive setup wizard for Google Sheets access.

Asks for the path to a Google Cloud service-account key (JSON), validates
it, and saves a copy to ~/.volunteer_sync/credentials/ with owner-only
permissions (0700 dir / 0600 file). If SPREADSHEET_ID is configured, it
then checks that the spreadsheet is reachable and shared with the service
account, and writes any missing header rows.

Usage:
    python -m volunteer_sync setup
    python -m volunteer_sync.scripts.setup   (direct invocation)
"""
import asyncio
import json
import sys
from pathlib import Path

from volunteer_sync.config import get_settings
from volunteer_sync.entities import DESCRIPTORS, resolve_sheet_names
from volunteer_sync.sheets.auth import SheetsAuth
from volunteer_sync.sheets.client import SheetsClient
from volunteer_sync.sync.errors import AuthenticationError, SyncError


async def _check_spreadsheet(client: SheetsClient, sheet_names) -> None:
    await client.connect()
    meta = await client.validate()
    title = meta.get("properties", {}).get("title", client.spreadsheet_id)
    print(f"✅ Spreadsheet reachable: {title}")
    for entity_type, descriptor in DESCRIPTORS.items():
        sheet = sheet_names[entity_type]
        if await client.ensure_header(sheet, descriptor.headers):
            print(f"   Wrote header row to sheet '{sheet}'")


def run_setup() -> None:
    settings = get_settings()
    auth = SheetsAuth(settings.credentials_dir)

    print("\nVolunteer Sync: Google Sheets Setup\n")
    print(f"The service-account key will be stored in: {settings.credentials_dir}\n")

    if auth.has_credentials():
        print("⚠️  An existing key was found.")
        overwrite = input("Replace it with a new key? [y/N] ").strip().lower()
        if overwrite != "y":
            print("Setup cancelled. Existing key unchanged.")
            sys.exit(0)

    key_path = input("Path to service-account key JSON: ").strip()
    if not key_path:
        print("Error: path cannot be empty.")
        sys.exit(1)

    try:
        key_info = json.loads(Path(key_path).expanduser().read_text())
    except (OSError, json.JSONDecodeError) as exc:
        print(f"\n❌ Could not read key file: {exc}")
        sys.exit(1)

    try:
        auth.save(key_info)
    except AuthenticationError as exc:
        print(f"\n❌ {exc}")
        sys.exit(1)

    print(f"\n✅ Key saved to {auth.key_file}")
    print(f"   Share your spreadsheet with: {auth.service_account_email}")

    if not settings.spreadsheet_id:
        print("\nSPREADSHEET_ID is not set. Add it to .env, then run:")
        print("  python -m volunteer_sync sync --full\n")
        return

    client = SheetsClient(settings.spreadsheet_id, auth=auth)
    try:
        asyncio.run(_check_spreadsheet(client, resolve_sheet_names(settings.sheet_names())))
    except SyncError as exc:
        print(f"\n❌ Spreadsheet check failed: {exc}")
        print("Make sure the sheet is shared with the service account and try again.")
        sys.exit(1)

    print("\nSetup complete. Run `python -m volunteer_sync` to start syncing.\n")


if __name__ == "__main__":
    run_setup()
