import json
import logging
import re
from datetime import datetime
from typing import Any

from poolteam import db
from poolteam.errors import ValidationError

logger = logging.getLogger(__name__)

MATCH_START_HOUR = 20


def slugify(value: Any) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(value or "").lower()).strip("-")


def parse_fixture_date(value: Any) -> datetime | None:
    """Read a ``YYYY-MM-DD`` string as that day at the usual 8pm start."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return datetime(parsed.year, parsed.month, parsed.day, MATCH_START_HOUR)


def _text(value: Any) -> str | None:
    return value.strip() if isinstance(value, str) else None


def normalize_import_game(row: dict) -> dict:
    opponent = _text(row.get("opponent"))
    location = _text(row.get("location"))
    notes = _text(row.get("notes")) or None
    home_or_away = "away" if row.get("homeOrAway") == "away" else "home"
    result = row.get("result") if row.get("result") in ("win", "loss") else "pending"
    players = row.get("players") if isinstance(row.get("players"), list) else []
    raw_stats = row.get("playerStats") if isinstance(row.get("playerStats"), list) else []
    player_stats = [entry for entry in raw_stats if isinstance(entry, dict)]
    raw_date = row.get("matchDate")
    match_date = parse_fixture_date(raw_date) if raw_date else parse_fixture_date(notes)
    return {
        "opponent": opponent if opponent is not None else "TBC",
        "location": location or "",
        "home_or_away": home_or_away,
        "match_date": match_date,
        "notes": notes,
        "result": result,
        "players": players,
        "player_stats": player_stats,
    }


def build_stable_match_id(game: dict) -> str:
    match_date = game.get("match_date")
    date_label = game.get("notes") or (match_date.date().isoformat() if match_date else "tbc")
    return f"match-{date_label}-{game.get('home_or_away', 'home')}-{slugify(game.get('opponent'))}"


def parse_fixture_payload(text: str) -> list[dict]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(payload, list):
        raise ValidationError("Input must be a JSON array")
    return payload


def import_fixtures(
    database_url: str,
    rows: list[Any],
    *,
    overwrite: bool = False,
    dry_run: bool = False,
) -> dict[str, int]:
    """Insert each fixture under its stable id; existing ids are skipped unless overwriting."""
    if not isinstance(rows, list):
        raise ValidationError("Input must be a JSON array")

    counts = {"created": 0, "updated": 0, "skipped": 0}
    for row in rows:
        if not isinstance(row, dict):
            counts["skipped"] += 1
            continue
        game = normalize_import_game(row)
        game_id = build_stable_match_id(game)
        if dry_run:
            exists = db.fetch_game(database_url, game_id) is not None
            counts["updated" if exists and overwrite else "skipped" if exists else "created"] += 1
            continue
        if overwrite:
            exists = db.fetch_game(database_url, game_id) is not None
            db.replace_game(database_url, game_id, game)
            counts["updated" if exists else "created"] += 1
        elif db.insert_game_if_absent(database_url, game_id, game):
            counts["created"] += 1
        else:
            counts["skipped"] += 1
    logger.info(
        "Fixture import: %d created, %d updated, %d skipped",
        counts["created"],
        counts["updated"],
        counts["skipped"],
    )
    return counts
