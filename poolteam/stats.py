"""Per-match player statistics and their season-long profile counters.

Match rows are authoritative; ``user_profiles.total_wins`` and
``total_losses`` are running sums over every match.  Saving a match's stat
grid therefore never writes absolute totals: it diffs the proposed rows
against the stored ones and applies signed increments to each affected
profile in the same transaction as the match write.
"""

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from poolteam import db
from poolteam.errors import (
    CapacityExceeded,
    NotFound,
    PermissionDenied,
    TransactionConflict,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAX_SINGLES = 2
MAX_DOUBLES = 1
# 5 players x 2 singles frames
TEAM_SINGLES_FRAMES = 10
# 3 doubles matches x 2 players; each doubles frame counts once per player
TEAM_DOUBLES_CREDITS = 6

MANAGER_ROLES = ("captain", "viceCaptain")
ROLES = ("captain", "viceCaptain", "player")


def is_manager_role(role: Any) -> bool:
    return isinstance(role, str) and role in MANAGER_ROLES


def ensure_role(role: Any) -> str:
    return role if isinstance(role, str) and role in ROLES else "player"


def clamp(value: Any, maximum: int) -> int:
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, min(maximum, number))


@dataclass(frozen=True)
class PlayerStatRow:
    player_id: str
    display_name: str
    singles_wins: int = 0
    singles_losses: int = 0
    doubles_wins: int = 0
    doubles_losses: int = 0
    subs_paid: bool = False

    @property
    def wins(self) -> int:
        return self.singles_wins + self.doubles_wins

    @property
    def losses(self) -> int:
        return self.singles_losses + self.doubles_losses

    def to_document(self) -> dict:
        return {
            "playerId": self.player_id,
            "displayName": self.display_name,
            "singlesWins": self.singles_wins,
            "singlesLosses": self.singles_losses,
            "doublesWins": self.doubles_wins,
            "doublesLosses": self.doubles_losses,
            "subsPaid": self.subs_paid,
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "PlayerStatRow":
        """Read a stored row as-is; counts are coerced to ints but not clamped."""

        def _count(key: str) -> int:
            try:
                return int(data.get(key) or 0)
            except (TypeError, ValueError):
                return 0

        player_id = str(data.get("playerId") or "")
        return cls(
            player_id=player_id,
            display_name=str(data.get("displayName") or player_id),
            singles_wins=_count("singlesWins"),
            singles_losses=_count("singlesLosses"),
            doubles_wins=_count("doublesWins"),
            doubles_losses=_count("doublesLosses"),
            subs_paid=bool(data.get("subsPaid")),
        )


@dataclass(frozen=True)
class ProfileDelta:
    player_id: str
    display_name: str
    win_diff: int
    loss_diff: int


def _fit(wins: Any, losses: Any, cap: int) -> tuple[int, int]:
    wins = clamp(wins, cap)
    losses = min(clamp(losses, cap), cap - wins)
    return wins, losses


def clamp_row(row: Mapping[str, Any], display_name: str) -> PlayerStatRow:
    singles_wins, singles_losses = _fit(row.get("singles_wins"), row.get("singles_losses"), MAX_SINGLES)
    doubles_wins, doubles_losses = _fit(row.get("doubles_wins"), row.get("doubles_losses"), MAX_DOUBLES)
    return PlayerStatRow(
        player_id=str(row.get("player_id") or "").strip(),
        display_name=display_name,
        singles_wins=singles_wins,
        singles_losses=singles_losses,
        doubles_wins=doubles_wins,
        doubles_losses=doubles_losses,
        subs_paid=bool(row.get("subs_paid")),
    )


def compute_team_totals(rows: Iterable[PlayerStatRow]) -> dict[str, int]:
    totals = {"singles_wins": 0, "singles_losses": 0, "doubles_wins": 0, "doubles_losses": 0}
    for row in rows:
        totals["singles_wins"] += row.singles_wins
        totals["singles_losses"] += row.singles_losses
        totals["doubles_wins"] += row.doubles_wins
        totals["doubles_losses"] += row.doubles_losses
    return totals


def check_team_caps(rows: list[PlayerStatRow]) -> None:
    totals = compute_team_totals(rows)
    singles_used = totals["singles_wins"] + totals["singles_losses"]
    if singles_used > TEAM_SINGLES_FRAMES:
        raise CapacityExceeded("singles", singles_used, TEAM_SINGLES_FRAMES)
    doubles_used = totals["doubles_wins"] + totals["doubles_losses"]
    if doubles_used > TEAM_DOUBLES_CREDITS:
        raise CapacityExceeded("doubles", doubles_used, TEAM_DOUBLES_CREDITS)


def prepare_rows(
    proposed_rows: Iterable[Mapping[str, Any]],
    known_players: Mapping[str, str],
) -> list[PlayerStatRow]:
    if not known_players:
        raise ValidationError("No players available. Add players to the roster first.")

    prepared: list[PlayerStatRow] = []
    seen: set[str] = set()
    for row in proposed_rows:
        player_id = str(row.get("player_id") or "").strip()
        if not player_id:
            continue
        if player_id in seen:
            raise ValidationError(
                f"duplicate player: {player_id}. Each player may appear only once."
            )
        if player_id not in known_players:
            raise ValidationError(f"Unknown player: {player_id}")
        seen.add(player_id)
        prepared.append(clamp_row(row, known_players[player_id] or player_id))
    return prepared


def compute_deltas(
    previous: Iterable[PlayerStatRow],
    proposed: Iterable[PlayerStatRow],
) -> list[ProfileDelta]:
    previous_map = {row.player_id: row for row in previous if row.player_id}
    proposed_map = {row.player_id: row for row in proposed if row.player_id}

    deltas: list[ProfileDelta] = []
    for player_id in sorted(set(previous_map) | set(proposed_map)):
        before = previous_map.get(player_id)
        after = proposed_map.get(player_id)
        win_diff = (after.wins if after else 0) - (before.wins if before else 0)
        loss_diff = (after.losses if after else 0) - (before.losses if before else 0)
        if win_diff == 0 and loss_diff == 0:
            continue
        display_name = (after or before).display_name
        deltas.append(ProfileDelta(player_id, display_name, win_diff, loss_diff))
    return deltas


def _mirror_legacy_player(session: db.Session, delta: ProfileDelta) -> None:
    try:
        with session.savepoint("legacy_player"):
            db.increment_legacy_player(session, delta.player_id, delta.win_diff, delta.loss_diff)
    except db.DATABASE_ERRORS as exc:
        logger.warning("Skipping legacy player update for %s: %s", delta.player_id, exc)


def _apply(database_url: str, match_id: str, rows: list[PlayerStatRow]) -> list[ProfileDelta]:
    with db.transaction(database_url) as session:
        game = db.lock_game(session, match_id)
        if game is None:
            raise NotFound("Match not found")

        previous = [
            PlayerStatRow.from_document(entry)
            for entry in game["player_stats"]
            if isinstance(entry, dict)
        ]
        deltas = compute_deltas(previous, rows)
        for delta in deltas:
            db.increment_profile_totals(
                session,
                delta.player_id,
                delta.display_name,
                delta.win_diff,
                delta.loss_diff,
            )
            _mirror_legacy_player(session, delta)

        db.write_game_stats(
            session,
            match_id,
            player_stats=[row.to_document() for row in rows],
            players=[row.display_name for row in rows],
            player_ids=list(dict.fromkeys(row.player_id for row in rows)),
        )
    return deltas


def reconcile_match_stats(
    database_url: str,
    match_id: str,
    proposed_rows: Iterable[Mapping[str, Any]],
    known_players: Mapping[str, str],
    caller_role: str | None,
    *,
    max_attempts: int = 5,
) -> list[ProfileDelta]:
    """Replace a match's stat rows and push the differences onto profiles.

    Validation happens before the transaction opens, so a rejected call
    writes nothing.  A conflicting concurrent writer re-runs the whole body
    against fresh state.  Returns the profile deltas that were applied.
    """
    if not is_manager_role(caller_role):
        raise PermissionDenied("Only captains and vice captains can edit player results.")

    rows = prepare_rows(proposed_rows, known_players)
    check_team_caps(rows)

    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            deltas = _apply(database_url, match_id, rows)
        except TransactionConflict:
            if attempt == attempts:
                raise
            logger.warning(
                "Stats for match %s conflicted with another save (attempt %d/%d), retrying",
                match_id,
                attempt,
                attempts,
            )
            continue
        logger.info(
            "Saved %d player rows for match %s (%d profile updates)",
            len(rows),
            match_id,
            len(deltas),
        )
        return deltas
    raise TransactionConflict("Unable to save player results right now. Please retry.")
