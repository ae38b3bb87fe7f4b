#!/usr/bin/env python3
"""
Import a users / population / health-history spreadsheet into mHealth Admin.

Used by program staff to load spreadsheets (.xlsx or .csv) without the
dashboard. Authenticates with a service JWT signed with SERVICE_AUTH_SECRET.

The import process:
1. Preview: every row is classified as create, update or error
2. Import (unless --preview-only): matched rows are updated, new rows are
   created with the next ID, new non-admin users get a welcome SMS

Usage:
    python scripts/import_spreadsheet.py users users.xlsx --url http://localhost:8000
    python scripts/import_spreadsheet.py health_history records.csv --preview-only -v

Requirements:
    - SERVICE_AUTH_SECRET set to the API's service auth secret
"""

import argparse
import base64
import sys
from pathlib import Path
from typing import Any

import httpx

from src.core.auth import create_service_token

KINDS = ("users", "population", "health_history")


def post_file(
    url: str, token: str, path: str, file_path: Path, timeout: float = 120.0
) -> dict[str, Any]:
    """POST a spreadsheet to an import endpoint."""
    payload = {
        "filename": file_path.name,
        "data": base64.b64encode(file_path.read_bytes()).decode("utf-8"),
    }
    response = httpx.post(
        f"{url.rstrip('/')}{path}",
        headers={"Authorization": f"Bearer {token}"},
        json=payload,
        timeout=timeout,
    )
    response.raise_for_status()
    result: dict[str, Any] = response.json()
    return result


def print_preview(preview: dict[str, Any], verbose: bool) -> None:
    print(f"  Rows: {preview.get('total_rows', 0)}")
    print(f"  To create: {preview.get('to_create', 0)}")
    print(f"  To update: {preview.get('to_update', 0)}")
    print(f"  Errors: {preview.get('errors', 0)}")

    if verbose:
        for row in preview.get("rows", []):
            line = f"    Row {row['row_number']}: {row['action']}"
            if row.get("record_id") is not None:
                line += f" -> {row['record_id']}"
            if row.get("reason"):
                line += f" ({row['reason']})"
            if row.get("error"):
                line += f" - {row['error']}"
            print(line)


def print_summary(result: dict[str, Any], verbose: bool) -> None:
    counts = result.get("counts", {})
    print("\nImport complete!")
    print(f"  Created: {counts.get('created', 0)}")
    print(f"  Updated: {counts.get('updated', 0)}")
    print(f"  Failed: {counts.get('failed', 0)}")

    errors = result.get("errors", []) if verbose else result.get("error_preview", [])
    for error in errors:
        print(f"    - {error}")

    if result.get("warnings"):
        print(f"  Warnings: {len(result['warnings'])}")
        if verbose:
            for warning in result["warnings"]:
                print(f"    - {warning}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Import a spreadsheet into mHealth Admin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Preview then import users
    python scripts/import_spreadsheet.py users users.xlsx

    # Only show how rows would be matched
    python scripts/import_spreadsheet.py health_history records.csv --preview-only -v
        """,
    )
    parser.add_argument("kind", choices=KINDS, help="Table to import into")
    parser.add_argument("file_path", type=Path, help="Spreadsheet (.xlsx or .csv)")
    parser.add_argument(
        "--url",
        default="http://localhost:8000",
        help="mHealth Admin API URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--preview-only",
        action="store_true",
        help="Classify rows without importing",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose output",
    )
    args = parser.parse_args()

    if not args.file_path.exists():
        print(f"Error: File not found: {args.file_path}", file=sys.stderr)
        sys.exit(1)

    if args.file_path.suffix.lower() not in (".xlsx", ".csv"):
        print(f"Error: Expected .xlsx or .csv, got: {args.file_path}", file=sys.stderr)
        sys.exit(1)

    token = create_service_token("mhealth-cli", expires_hours=1)

    try:
        print(f"Previewing {args.file_path} ({args.kind})...")
        preview = post_file(args.url, token, f"/import/{args.kind}/preview", args.file_path)
        print_preview(preview, args.verbose)

        if args.preview_only:
            sys.exit(0)

        print(f"Importing {args.file_path}...")
        result = post_file(args.url, token, f"/import/{args.kind}", args.file_path)
        print_summary(result, args.verbose)

    except httpx.HTTPStatusError as e:
        print(
            f"Error: Request failed with status {e.response.status_code}",
            file=sys.stderr,
        )
        try:
            error_detail = e.response.json()
            print(
                f"  Detail: {error_detail.get('detail', e.response.text)}",
                file=sys.stderr,
            )
        except ValueError:
            print(f"  Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except httpx.HTTPError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
