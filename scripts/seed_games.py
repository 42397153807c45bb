#!/usr/bin/env python3
"""Import a JSON array of fixtures into the games table under stable ids."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path

from poolteam.db import ensure_schema
from poolteam.errors import ValidationError
from poolteam.fixtures import import_fixtures, parse_fixture_payload
from poolteam.settings import load_settings


def _env_flag(key: str) -> bool:
    return os.getenv(key, "").strip().lower() in ("1", "true")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed fixtures from a JSON file.")
    parser.add_argument("path", type=Path, help="JSON file holding an array of fixtures.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=_env_flag("DRY_RUN"),
        help="Report what would change without writing (or set DRY_RUN=1).",
    )
    parser.add_argument(
        "--overwrite",
        action="store_true",
        default=_env_flag("OVERWRITE"),
        help="Replace fixtures that already exist (or set OVERWRITE=1).",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    try:
        rows = parse_fixture_payload(args.path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as exc:
        parser.error(f"Could not read fixtures from {args.path}: {exc}")

    settings = load_settings()
    ensure_schema(settings.database_url)
    counts = import_fixtures(settings.database_url, rows, overwrite=args.overwrite, dry_run=args.dry_run)
    prefix = "[dry run] " if args.dry_run else ""
    print(
        f"{prefix}Created {counts['created']}, updated {counts['updated']}, "
        f"skipped {counts['skipped']}."
    )


if __name__ == "__main__":
    main()
