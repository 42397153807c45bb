import logging
from typing import Callable, Tuple

from poolteam import db
from poolteam.stats import PlayerStatRow

logger = logging.getLogger(__name__)

MigrationTask = Tuple[str, str, Callable[[db.Session], int]]


def _stat_player_ids(player_stats: list) -> list[str]:
    ids = [
        str(entry.get("playerId")).strip()
        for entry in player_stats
        if isinstance(entry, dict) and str(entry.get("playerId") or "").strip()
    ]
    return list(dict.fromkeys(ids))


def _backfill_player_ids(session: db.Session) -> int:
    updated = 0
    for game_id, player_stats, player_ids in db.all_game_stats(session):
        wanted = _stat_player_ids(player_stats)
        if wanted == player_ids:
            continue
        db.write_game_player_ids(session, game_id, wanted)
        updated += 1
    return updated


def _recompute_profile_totals(session: db.Session) -> int:
    totals: dict[str, list[int]] = {}
    for _game_id, player_stats, _player_ids in db.all_game_stats(session):
        for entry in player_stats:
            if not isinstance(entry, dict) or not entry.get("playerId"):
                continue
            row = PlayerStatRow.from_document(entry)
            counts = totals.setdefault(row.player_id, [0, 0])
            counts[0] += row.wins
            counts[1] += row.losses

    changed = 0
    for profile_id in db.profile_ids(session):
        wins, losses = totals.get(profile_id, (0, 0))
        if db.set_profile_totals(session, profile_id, wins, losses):
            changed += 1
    return changed


def backfill_player_ids(database_url: str) -> int:
    """Derive each match's ``player_ids`` from its stat rows; returns matches touched."""
    with db.transaction(database_url) as session:
        updated = _backfill_player_ids(session)
    logger.info("Backfilled player ids on %d matches", updated)
    return updated


def recompute_profile_totals(database_url: str) -> int:
    """Reset every profile's counters to the sums over all stored matches."""
    with db.transaction(database_url) as session:
        changed = _recompute_profile_totals(session)
    logger.info("Recomputed totals; %d profiles changed", changed)
    return changed


def _ensure_migrations_table(session: db.Session) -> None:
    session.modify(
        """
        create table if not exists schema_migrations (
            id text primary key,
            description text not null,
            applied_at text not null
        );
        """
    )


MIGRATIONS: list[MigrationTask] = [
    (
        "20240912_games_player_ids",
        "Backfill games.player_ids from the stored player stats",
        _backfill_player_ids,
    ),
    (
        "20241003_profile_totals",
        "Recompute profile win/loss totals from every match",
        _recompute_profile_totals,
    ),
]


def apply_migrations(database_url: str) -> list[str]:
    db.ensure_schema(database_url)
    with db.connect(database_url) as session:
        _ensure_migrations_table(session)

    applied: list[str] = []
    for migration_id, description, task in MIGRATIONS:
        with db.transaction(database_url) as session:
            if session.fetchone("select 1 from schema_migrations where id = %s;", (migration_id,)):
                continue
            touched = task(session)
            session.modify(
                """
                insert into schema_migrations (id, description, applied_at)
                values (%s, %s, %s);
                """,
                (migration_id, description, db.utcnow().isoformat()),
            )
        logger.info("Applied migration %s (%d rows)", migration_id, touched)
        applied.append(migration_id)
    return applied


if __name__ == "__main__":
    from poolteam.settings import load_settings

    logging.basicConfig(level=logging.INFO)
    apply_migrations(load_settings().database_url)
