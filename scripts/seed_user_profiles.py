#!/usr/bin/env python3
"""Create or refresh one user profile per roster entry."""

from __future__ import annotations

import argparse
import logging

from poolteam.db import ensure_schema
from poolteam.profiles import seed_user_profiles
from poolteam.settings import load_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed user profiles from the roster.")
    parser.add_argument("--overwrite", action="store_true", help="Rewrite profiles that already exist.")
    parser.add_argument("--no-link", action="store_true", help="Do not link roster and player rows back.")
    parser.add_argument("--dry-run", action="store_true", help="Count the changes without writing.")
    parser.add_argument(
        "--assigned-only",
        action="store_true",
        help="Skip roster entries that have no assigned account or matching profile.",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    settings = load_settings()
    ensure_schema(settings.database_url)
    counts = seed_user_profiles(
        settings.database_url,
        overwrite=args.overwrite,
        link_up=not args.no_link,
        dry_run=args.dry_run,
        include_unassigned=not args.assigned_only,
    )
    print(
        f"Profiles: {counts['creates']} created, {counts['updates']} updated, "
        f"{counts['skipped']} skipped, {counts['linked']} linked."
    )


if __name__ == "__main__":
    main()
