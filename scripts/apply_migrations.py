#!/usr/bin/env python3
"""Run pending maintenance migrations, or force one task to run again."""

from __future__ import annotations

import argparse
import logging

from poolteam.db import ensure_schema
from poolteam.migrations import apply_migrations, backfill_player_ids, recompute_profile_totals
from poolteam.settings import load_settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Apply recorded maintenance migrations.")
    parser.add_argument(
        "--backfill-player-ids",
        action="store_true",
        help="Re-derive games.player_ids even if the migration already ran.",
    )
    parser.add_argument(
        "--recompute-totals",
        action="store_true",
        help="Reset profile totals from the match rows even if the migration already ran.",
    )
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO)

    settings = load_settings()
    if args.backfill_player_ids or args.recompute_totals:
        ensure_schema(settings.database_url)
        if args.backfill_player_ids:
            print(f"Backfilled player ids on {backfill_player_ids(settings.database_url)} matches.")
        if args.recompute_totals:
            print(f"Recomputed totals; {recompute_profile_totals(settings.database_url)} profiles changed.")
        return

    applied = apply_migrations(settings.database_url)
    print(f"Applied {len(applied)} migration{'s' if len(applied) != 1 else ''}.")
    for migration_id in applied:
        print(f"  {migration_id}")


if __name__ == "__main__":
    main()
