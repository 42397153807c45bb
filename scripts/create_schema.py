#!/usr/bin/env python3
"""Ensure the league schema exists and echo the DDL for reference."""

from poolteam.db import SCHEMA_STATEMENTS, ensure_schema, sqlite_path
from poolteam.settings import load_settings


def main() -> None:
    settings = load_settings()
    ensure_schema(settings.database_url)
    db_path = sqlite_path(settings.database_url)
    print("Schema ensured.")
    if db_path:
        print(f"Database file: {db_path}")
    else:
        print(f"Database url: {settings.database_url}")

    print("\nSchema DDL dump:")
    for statement in SCHEMA_STATEMENTS:
        print(statement.strip())


if __name__ == "__main__":
    main()
