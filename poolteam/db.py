import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

import psycopg
from psycopg import errors as pg_errors

from poolteam.errors import NotFound, TransactionConflict

logger = logging.getLogger(__name__)

DATABASE_ERRORS = (sqlite3.Error, psycopg.Error)

SCHEMA_STATEMENTS = [
    """
    create table if not exists games (
        id text primary key,
        opponent text not null,
        location text not null default '',
        home_or_away text not null default 'home',
        match_date text,
        notes text,
        result text not null default 'pending',
        players text not null default '[]',
        player_stats text not null default '[]',
        player_ids text not null default '[]',
        created_at text,
        updated_at text
    );
    """,
    """
    create table if not exists user_profiles (
        id text primary key,
        uid text,
        display_name text not null default '',
        role text not null default 'player',
        linked_roster_id text,
        linked_player_id text,
        total_wins integer not null default 0,
        total_losses integer not null default 0,
        subs_status text not null default 'due',
        created_at text,
        updated_at text
    );
    """,
    """
    create table if not exists users (
        id text primary key,
        display_name text not null,
        role text not null default 'player',
        assigned_uid text,
        assigned_email text,
        assigned_at text,
        linked_profile_uid text,
        created_at text
    );
    """,
    """
    create table if not exists players (
        id text primary key,
        display_name text not null,
        wins integer not null default 0,
        losses integer not null default 0,
        subs_status text not null default 'due',
        linked_profile_uid text,
        created_at text,
        updated_at text,
        subs_updated_at text
    );
    """,
]

GAME_COLUMNS = """
    id,
    opponent,
    location,
    home_or_away,
    match_date,
    notes,
    result,
    players,
    player_stats,
    player_ids,
    created_at,
    updated_at
"""
PROFILE_COLUMNS = """
    id,
    uid,
    display_name,
    role,
    linked_roster_id,
    linked_player_id,
    total_wins,
    total_losses,
    subs_status,
    created_at,
    updated_at
"""
GAME_DETAIL_FIELDS = ("opponent", "location", "home_or_away", "match_date", "notes")
PROFILE_FIELDS = (
    "uid",
    "display_name",
    "role",
    "linked_roster_id",
    "linked_player_id",
    "total_wins",
    "total_losses",
    "subs_status",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _load_list(value: Any) -> list:
    if not value:
        return []
    if isinstance(value, list):
        return value
    try:
        loaded = json.loads(value)
    except (TypeError, ValueError):
        return []
    return loaded if isinstance(loaded, list) else []


def sqlite_path(database_url: str) -> str | None:
    for prefix in ("sqlite:///", "sqlite://", "sqlite:"):
        if database_url.startswith(prefix):
            return database_url[len(prefix):]
    return None


class Session:
    """A single connection; queries are written with ``%s`` placeholders."""

    def __init__(self, conn: Any, sqlite: bool):
        self.conn = conn
        self.sqlite = sqlite

    def execute(self, query: str, params: tuple = ()) -> Any:
        if self.sqlite:
            query = query.replace("%s", "?")
        cursor = self.conn.cursor()
        cursor.execute(query, params)
        return cursor

    def fetchone(self, query: str, params: tuple = ()) -> Optional[tuple]:
        cursor = self.execute(query, params)
        try:
            return cursor.fetchone()
        finally:
            cursor.close()

    def fetchall(self, query: str, params: tuple = ()) -> list[tuple]:
        cursor = self.execute(query, params)
        try:
            return list(cursor.fetchall())
        finally:
            cursor.close()

    def modify(self, query: str, params: tuple = ()) -> int:
        cursor = self.execute(query, params)
        try:
            return cursor.rowcount
        finally:
            cursor.close()

    @property
    def lock_clause(self) -> str:
        # sqlite holds the whole database from "begin immediate" onwards
        return "" if self.sqlite else " for update"

    @contextmanager
    def savepoint(self, name: str) -> Iterator[None]:
        if not self.sqlite:
            with self.conn.transaction():
                yield
            return
        self.conn.execute(f"savepoint {name}")
        try:
            yield
        except BaseException:
            self.conn.execute(f"rollback to {name}")
            self.conn.execute(f"release {name}")
            raise
        self.conn.execute(f"release {name}")


@contextmanager
def connect(database_url: str) -> Iterator[Session]:
    path = sqlite_path(database_url)
    if path is None:
        with psycopg.connect(database_url, autocommit=True) as conn:
            yield Session(conn, sqlite=False)
        return

    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, timeout=30.0, isolation_level=None)
    try:
        conn.execute("pragma busy_timeout = 30000")
        yield Session(conn, sqlite=True)
    finally:
        conn.close()


def _is_conflict(exc: Exception) -> bool:
    if isinstance(exc, (pg_errors.SerializationFailure, pg_errors.DeadlockDetected)):
        return True
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return "locked" in message or "busy" in message
    return False


@contextmanager
def transaction(database_url: str) -> Iterator[Session]:
    """Run the body atomically; conflicting writers surface as TransactionConflict."""
    try:
        with connect(database_url) as session:
            if not session.sqlite:
                with session.conn.transaction():
                    yield session
                return
            session.conn.execute("begin immediate")
            try:
                yield session
            except BaseException:
                session.conn.execute("rollback")
                raise
            session.conn.execute("commit")
    except DATABASE_ERRORS as exc:
        if _is_conflict(exc):
            raise TransactionConflict("The match was changed by someone else. Please retry.") from exc
        raise


def ensure_schema(database_url: str) -> None:
    with connect(database_url) as session:
        for statement in SCHEMA_STATEMENTS:
            session.modify(statement)


def _row_to_game(row: tuple) -> dict:
    return {
        "id": row[0],
        "opponent": row[1],
        "location": row[2] or "",
        "home_or_away": "away" if row[3] == "away" else "home",
        "match_date": parse_timestamp(row[4]),
        "notes": row[5],
        "result": row[6] if row[6] in ("win", "loss") else "pending",
        "players": _load_list(row[7]),
        "player_stats": _load_list(row[8]),
        "player_ids": _load_list(row[9]),
        "created_at": parse_timestamp(row[10]),
        "updated_at": parse_timestamp(row[11]),
    }


def _row_to_profile(row: tuple) -> dict:
    return {
        "id": row[0],
        "uid": row[1],
        "display_name": row[2] or "",
        "role": row[3] or "player",
        "linked_roster_id": row[4],
        "linked_player_id": row[5],
        "total_wins": int(row[6] or 0),
        "total_losses": int(row[7] or 0),
        "subs_status": "paid" if row[8] == "paid" else "due",
        "created_at": parse_timestamp(row[9]),
        "updated_at": parse_timestamp(row[10]),
    }


def fetch_games(database_url: str) -> list[dict]:
    with connect(database_url) as session:
        rows = session.fetchall(f"select {GAME_COLUMNS} from games order by id;")
    return [_row_to_game(row) for row in rows]


def fetch_game(database_url: str, game_id: str) -> dict | None:
    with connect(database_url) as session:
        row = session.fetchone(f"select {GAME_COLUMNS} from games where id = %s;", (game_id,))
    return _row_to_game(row) if row else None


def _game_params(game_id: str, game: dict, now: datetime) -> tuple:
    stats = [entry for entry in game.get("player_stats") or [] if isinstance(entry, dict)]
    player_ids = game.get("player_ids")
    if player_ids is None:
        player_ids = list(dict.fromkeys(s.get("playerId") for s in stats if s.get("playerId")))
    return (
        game_id,
        game.get("opponent") or "TBC",
        game.get("location") or "",
        game.get("home_or_away") or "home",
        _to_text(game.get("match_date")),
        game.get("notes"),
        game.get("result") or "pending",
        json.dumps(list(game.get("players") or [])),
        json.dumps(list(stats)),
        json.dumps(list(player_ids)),
        _to_text(now),
        _to_text(now),
    )


_INSERT_GAME = f"""
    insert into games ({GAME_COLUMNS})
    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
"""


def insert_game(database_url: str, game: dict, game_id: str | None = None) -> str:
    game_id = game_id or uuid.uuid4().hex
    with connect(database_url) as session:
        session.modify(_INSERT_GAME + ";", _game_params(game_id, game, utcnow()))
    return game_id


def insert_game_if_absent(database_url: str, game_id: str, game: dict) -> bool:
    with connect(database_url) as session:
        inserted = session.modify(
            _INSERT_GAME + "on conflict (id) do nothing;",
            _game_params(game_id, game, utcnow()),
        )
    return inserted > 0


def replace_game(database_url: str, game_id: str, game: dict) -> None:
    with connect(database_url) as session:
        session.modify(
            _INSERT_GAME
            + """
            on conflict (id) do update
                set opponent = excluded.opponent,
                    location = excluded.location,
                    home_or_away = excluded.home_or_away,
                    match_date = excluded.match_date,
                    notes = excluded.notes,
                    result = excluded.result,
                    players = excluded.players,
                    player_stats = excluded.player_stats,
                    player_ids = excluded.player_ids,
                    updated_at = excluded.updated_at;
            """,
            _game_params(game_id, game, utcnow()),
        )


def update_game_details(database_url: str, game_id: str, fields: dict) -> None:
    assignments = []
    params: list = []
    for key in GAME_DETAIL_FIELDS:
        if key not in fields:
            continue
        value = fields[key]
        assignments.append(f"{key} = %s")
        params.append(_to_text(value) if key == "match_date" else value)
    assignments.append("updated_at = %s")
    params.extend([_to_text(utcnow()), game_id])
    with connect(database_url) as session:
        updated = session.modify(
            f"update games set {', '.join(assignments)} where id = %s;",
            tuple(params),
        )
    if not updated:
        raise NotFound("Match not found")


def count_decided_games(database_url: str) -> int:
    with connect(database_url) as session:
        row = session.fetchone("select count(*) from games where result in ('win', 'loss');")
    return int(row[0]) if row else 0


def update_game_result(database_url: str, game_id: str, result: str) -> None:
    with connect(database_url) as session:
        updated = session.modify(
            "update games set result = %s, updated_at = %s where id = %s;",
            (result, _to_text(utcnow()), game_id),
        )
    if not updated:
        raise NotFound("Match not found")


def delete_game(database_url: str, game_id: str) -> bool:
    with connect(database_url) as session:
        return session.modify("delete from games where id = %s;", (game_id,)) > 0


def lock_game(session: Session, game_id: str) -> dict | None:
    row = session.fetchone(
        f"select {GAME_COLUMNS} from games where id = %s{session.lock_clause};",
        (game_id,),
    )
    return _row_to_game(row) if row else None


def write_game_stats(
    session: Session,
    game_id: str,
    player_stats: list[dict],
    players: list[str],
    player_ids: list[str],
) -> None:
    session.modify(
        """
        update games
        set player_stats = %s,
            players = %s,
            player_ids = %s,
            updated_at = %s
        where id = %s;
        """,
        (
            json.dumps(player_stats),
            json.dumps(players),
            json.dumps(player_ids),
            _to_text(utcnow()),
            game_id,
        ),
    )


def write_game_player_ids(session: Session, game_id: str, player_ids: list[str]) -> None:
    session.modify(
        "update games set player_ids = %s where id = %s;",
        (json.dumps(player_ids), game_id),
    )


def all_game_stats(session: Session) -> list[tuple[str, list, list]]:
    rows = session.fetchall("select id, player_stats, player_ids from games order by id;")
    return [(row[0], _load_list(row[1]), _load_list(row[2])) for row in rows]


def increment_profile_totals(
    session: Session,
    profile_id: str,
    display_name: str,
    win_diff: int,
    loss_diff: int,
) -> None:
    now = _to_text(utcnow())
    session.modify(
        """
        insert into user_profiles (id, display_name, total_wins, total_losses, created_at, updated_at)
        values (%s, %s, %s, %s, %s, %s)
        on conflict (id) do update
            set total_wins = user_profiles.total_wins + excluded.total_wins,
                total_losses = user_profiles.total_losses + excluded.total_losses,
                updated_at = excluded.updated_at;
        """,
        (profile_id, display_name, win_diff, loss_diff, now, now),
    )


def increment_legacy_player(session: Session, player_id: str, win_diff: int, loss_diff: int) -> bool:
    updated = session.modify(
        """
        update players
        set wins = wins + %s,
            losses = losses + %s,
            updated_at = %s
        where id = %s
           or linked_profile_uid = %s;
        """,
        (win_diff, loss_diff, _to_text(utcnow()), player_id, player_id),
    )
    return updated > 0


def set_profile_totals(session: Session, profile_id: str, wins: int, losses: int) -> bool:
    updated = session.modify(
        """
        update user_profiles
        set total_wins = %s,
            total_losses = %s,
            updated_at = %s
        where id = %s
          and (total_wins <> %s or total_losses <> %s);
        """,
        (wins, losses, _to_text(utcnow()), profile_id, wins, losses),
    )
    return updated > 0


def profile_ids(session: Session) -> list[str]:
    return [row[0] for row in session.fetchall("select id from user_profiles order by id;")]


def fetch_profiles(database_url: str) -> list[dict]:
    with connect(database_url) as session:
        rows = session.fetchall(
            f"select {PROFILE_COLUMNS} from user_profiles order by display_name, id;"
        )
    return [_row_to_profile(row) for row in rows]


def fetch_profile(database_url: str, profile_id: str) -> dict | None:
    with connect(database_url) as session:
        row = session.fetchone(
            f"select {PROFILE_COLUMNS} from user_profiles where id = %s;", (profile_id,)
        )
    return _row_to_profile(row) if row else None


def fetch_profile_by_uid(database_url: str, uid: str) -> dict | None:
    with connect(database_url) as session:
        row = session.fetchone(
            f"select {PROFILE_COLUMNS} from user_profiles where uid = %s order by id limit 1;",
            (uid,),
        )
    return _row_to_profile(row) if row else None


def insert_profile(database_url: str, profile: dict, profile_id: str | None = None) -> str:
    profile_id = profile_id or uuid.uuid4().hex
    now = _to_text(utcnow())
    with connect(database_url) as session:
        session.modify(
            f"""
            insert into user_profiles ({PROFILE_COLUMNS})
            values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s);
            """,
            (
                profile_id,
                profile.get("uid"),
                profile.get("display_name") or "",
                profile.get("role") or "player",
                profile.get("linked_roster_id"),
                profile.get("linked_player_id"),
                int(profile.get("total_wins") or 0),
                int(profile.get("total_losses") or 0),
                profile.get("subs_status") or "due",
                now,
                now,
            ),
        )
    return profile_id


def update_profile_fields(database_url: str, profile_id: str, fields: dict) -> None:
    assignments = [f"{key} = %s" for key in PROFILE_FIELDS if key in fields]
    params = [fields[key] for key in PROFILE_FIELDS if key in fields]
    assignments.append("updated_at = %s")
    params.extend([_to_text(utcnow()), profile_id])
    with connect(database_url) as session:
        updated = session.modify(
            f"update user_profiles set {', '.join(assignments)} where id = %s;",
            tuple(params),
        )
    if not updated:
        raise NotFound("Profile not found")


def delete_profile(database_url: str, profile_id: str) -> None:
    with connect(database_url) as session:
        session.modify("delete from user_profiles where id = %s;", (profile_id,))


def _row_to_roster(row: tuple) -> dict:
    return {
        "id": row[0],
        "display_name": row[1],
        "role": row[2] or "player",
        "assigned_uid": row[3],
        "assigned_email": row[4],
        "assigned_at": parse_timestamp(row[5]),
        "linked_profile_uid": row[6],
        "created_at": parse_timestamp(row[7]),
    }


def fetch_roster(database_url: str) -> list[dict]:
    with connect(database_url) as session:
        rows = session.fetchall(
            """
            select id, display_name, role, assigned_uid, assigned_email,
                   assigned_at, linked_profile_uid, created_at
            from users
            order by id;
            """
        )
    return [_row_to_roster(row) for row in rows]


def insert_roster_entry(database_url: str, name: str, role: str) -> bool:
    with connect(database_url) as session:
        inserted = session.modify(
            """
            insert into users (id, display_name, role, created_at)
            values (%s, %s, %s, %s)
            on conflict (id) do nothing;
            """,
            (name, name, role, _to_text(utcnow())),
        )
    return inserted > 0


def link_roster_entry(
    database_url: str,
    roster_id: str,
    linked_profile_uid: str,
    assigned_uid: str | None,
    assigned_email: str | None,
    assigned_at: datetime | None,
) -> None:
    with connect(database_url) as session:
        session.modify(
            """
            update users
            set linked_profile_uid = %s,
                assigned_uid = %s,
                assigned_email = %s,
                assigned_at = %s
            where id = %s;
            """,
            (
                linked_profile_uid,
                assigned_uid,
                assigned_email,
                _to_text(assigned_at or utcnow()),
                roster_id,
            ),
        )


def fetch_legacy_player(database_url: str, player_id: str) -> dict | None:
    with connect(database_url) as session:
        row = session.fetchone(
            """
            select id, display_name, wins, losses, subs_status, linked_profile_uid
            from players
            where id = %s;
            """,
            (player_id,),
        )
    if not row:
        return None
    return {
        "id": row[0],
        "display_name": row[1],
        "wins": int(row[2] or 0),
        "losses": int(row[3] or 0),
        "subs_status": "paid" if row[4] == "paid" else "due",
        "linked_profile_uid": row[5],
    }


def upsert_legacy_player(database_url: str, player_id: str, display_name: str, wins: int = 0, losses: int = 0) -> None:
    now = _to_text(utcnow())
    with connect(database_url) as session:
        session.modify(
            """
            insert into players (id, display_name, wins, losses, created_at, updated_at)
            values (%s, %s, %s, %s, %s, %s)
            on conflict (id) do update
                set display_name = excluded.display_name,
                    wins = excluded.wins,
                    losses = excluded.losses,
                    updated_at = excluded.updated_at;
            """,
            (player_id, display_name, wins, losses, now, now),
        )


def link_legacy_player(database_url: str, player_id: str, linked_profile_uid: str, subs_status: str) -> None:
    with connect(database_url) as session:
        session.modify(
            """
            update players
            set linked_profile_uid = %s,
                subs_status = %s,
                updated_at = %s
            where id = %s;
            """,
            (linked_profile_uid, subs_status, _to_text(utcnow()), player_id),
        )


def set_legacy_subs_status(database_url: str, profile_id: str, subs_status: str) -> int:
    now = _to_text(utcnow())
    with connect(database_url) as session:
        return session.modify(
            """
            update players
            set subs_status = %s,
                subs_updated_at = %s,
                updated_at = %s
            where linked_profile_uid = %s;
            """,
            (subs_status, now, now, profile_id),
        )
