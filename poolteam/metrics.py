"""Season aggregates computed from stored match rows.

Everything here is a pure function over already-loaded match and profile
dicts; callers fetch from the database and pass the rows in.
"""

import math
from datetime import datetime
from typing import Any, Iterable

from poolteam.schedule import PREVIOUS, classify_match, local_naive, start_of_day
from poolteam.stats import PlayerStatRow

SUBS_PER_MATCH = 2.0
SEASON_GAMES = 18
POINTS_PER_WIN = 2
TOP_PLAYERS = 8


def stat_rows(game: dict) -> list[PlayerStatRow]:
    return [
        PlayerStatRow.from_document(entry)
        for entry in game.get("player_stats") or []
        if isinstance(entry, dict) and entry.get("playerId")
    ]


def _pct(part: float, whole: float) -> float:
    return (part * 100) / whole if whole else 0.0


def _happened(game: dict, now: datetime) -> bool:
    if game.get("result") != "pending":
        return True
    match_date = game.get("match_date")
    return bool(match_date) and local_naive(match_date) < local_naive(now)


def game_totals_for_player(game: dict, player_ids: set[str]) -> dict[str, int]:
    wins = 0
    losses = 0
    for row in stat_rows(game):
        if row.player_id in player_ids:
            wins += row.wins
            losses += row.losses
    return {"wins": wins, "losses": losses}


def user_totals(games: Iterable[dict], player_ids: set[str], now: datetime | None = None) -> dict:
    today = start_of_day(now)
    wins = losses = singles_wins = singles_losses = games_count = 0
    subs_due_games: list[dict] = []
    next_game: dict | None = None

    for game in games:
        games_count += 1
        entry = None
        for row in stat_rows(game):
            if row.player_id not in player_ids:
                continue
            entry = entry or row
            wins += row.wins
            losses += row.losses
            singles_wins += row.singles_wins
            singles_losses += row.singles_losses
        if entry is not None and not entry.subs_paid:
            subs_due_games.append(
                {
                    "id": game["id"],
                    "opponent": game.get("opponent") or "TBC",
                    "match_date": game.get("match_date"),
                }
            )

        match_date = game.get("match_date")
        if match_date and local_naive(match_date) >= today:
            if next_game is None or local_naive(match_date) < local_naive(next_game["match_date"]):
                next_game = {
                    "id": game["id"],
                    "opponent": game.get("opponent") or "TBC",
                    "match_date": match_date,
                    "location": game.get("location") or "",
                    "home_or_away": "away" if game.get("home_or_away") == "away" else "home",
                }

    return {
        "totals": {"wins": wins, "losses": losses},
        "singles": {"wins": singles_wins, "losses": singles_losses},
        "games_count": games_count,
        "subs_due_count": len(subs_due_games),
        "subs_due_games": subs_due_games,
        "next_game": next_game,
    }


def player_metrics(games: Iterable[dict], player_ids: set[str], now: datetime | None = None) -> dict:
    finished = [game for game in games if classify_match(game, now) == PREVIOUS]

    matches_played = frame_wins = frame_losses = 0
    singles_wins = singles_losses = doubles_wins = doubles_losses = 0
    team_win_credits = 0
    for game in finished:
        rows = stat_rows(game)
        played = False
        for row in rows:
            team_win_credits += row.wins
            if row.player_id not in player_ids:
                continue
            frame_wins += row.wins
            frame_losses += row.losses
            singles_wins += row.singles_wins
            singles_losses += row.singles_losses
            doubles_wins += row.doubles_wins
            doubles_losses += row.doubles_losses
            played = played or row.wins + row.losses > 0
        if played:
            matches_played += 1

    def _played_at(game: dict) -> float:
        match_date = game.get("match_date")
        return match_date.timestamp() if match_date else 0.0

    last_five_wins = last_five_losses = 0
    for game in sorted(finished, key=_played_at)[-5:]:
        totals = game_totals_for_player(game, player_ids)
        last_five_wins += totals["wins"]
        last_five_losses += totals["losses"]

    return {
        "finished_matches": len(finished),
        "matches_played": matches_played,
        "selection_rate_pct": _pct(matches_played, len(finished)),
        "frame_wins": frame_wins,
        "frame_losses": frame_losses,
        "frame_win_rate_pct": _pct(frame_wins, frame_wins + frame_losses),
        "frames_won_per_match": frame_wins / matches_played if matches_played else 0.0,
        "singles_win_rate_pct": _pct(singles_wins, singles_wins + singles_losses),
        "doubles_win_rate_pct": _pct(doubles_wins, doubles_wins + doubles_losses),
        "last5_frame_win_rate_pct": _pct(last_five_wins, last_five_wins + last_five_losses),
        "contribution_share_pct": _pct(frame_wins, team_win_credits),
    }


def _points(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def league_outlook(standings: dict | None, team_name: str, happened_games: int) -> dict | None:
    rows = (standings or {}).get("standings") or []
    if not rows:
        return None
    ordered = sorted(rows, key=lambda row: -_points(row.get("points")))
    leader = ordered[0]
    needle = team_name.strip().lower()
    us = next((row for row in ordered if needle and needle in str(row.get("team") or "").lower()), None)
    if us is None:
        return None

    remaining = max(0, SEASON_GAMES - happened_games)
    our_points = _points(us.get("points"))
    leader_points = _points(leader.get("points"))
    outlook = {
        "is_leader": our_points >= leader_points,
        "leader_team": leader.get("team"),
        "leader_points": leader_points,
        "our_points": our_points,
        "remaining": remaining,
    }
    if not outlook["is_leader"]:
        points_to_pass = leader_points - our_points + 1
        outlook["needed_wins"] = max(0, min(remaining, math.ceil(points_to_pass / POINTS_PER_WIN)))
    return outlook


def captains_dashboard(
    games: list[dict],
    profiles: list[dict],
    roster_emails: dict[str, str] | None = None,
    standings: dict | None = None,
    team_name: str = "",
    now: datetime | None = None,
) -> dict:
    now = now or datetime.now()
    roster_emails = roster_emails or {}
    happened = [game for game in games if _happened(game, now)]
    profiles_by_id = {profile["id"]: profile for profile in profiles}

    form: dict[str, dict[str, int]] = {}
    unpaid: list[dict] = []
    for game in happened:
        counted: set[str] = set()
        for row in stat_rows(game):
            record = form.setdefault(row.player_id, {"played": 0, "frames_won": 0, "frames_lost": 0})
            if row.player_id not in counted:
                record["played"] += 1
                counted.add(row.player_id)
            record["frames_won"] += row.wins
            record["frames_lost"] += row.losses
            if not row.subs_paid:
                profile = profiles_by_id.get(row.player_id) or {}
                roster_id = profile.get("linked_roster_id")
                unpaid.append(
                    {
                        "player_id": row.player_id,
                        "name": profile.get("display_name") or row.player_id,
                        "email": roster_emails.get(roster_id) if roster_id else None,
                        "game_id": game["id"],
                        "opponent": game.get("opponent") or "TBC",
                        "match_date": game.get("match_date"),
                        "amount": SUBS_PER_MATCH,
                    }
                )

    top_frame_wins = sorted(
        (
            {"name": profile["display_name"], "wins": form.get(profile["id"], {}).get("frames_won", 0)}
            for profile in profiles
        ),
        key=lambda row: (-row["wins"], row["name"]),
    )[:TOP_PLAYERS]

    player_form = []
    for profile in profiles:
        record = form.get(profile["id"])
        if not record or record["played"] == 0:
            continue
        frames = record["frames_won"] + record["frames_lost"]
        player_form.append(
            {
                "id": profile["id"],
                "name": profile["display_name"],
                "played": record["played"],
                "frames_won": record["frames_won"],
                "frames_lost": record["frames_lost"],
                "pct": round(_pct(record["frames_won"], frames)),
                "happened": len(happened),
            }
        )
    player_form.sort(key=lambda row: (-row["pct"], -row["played"]))

    results = {"wins": 0, "losses": 0, "pending": 0}
    for game in games:
        key = {"win": "wins", "loss": "losses"}.get(game.get("result"), "pending")
        results[key] += 1

    return {
        "top_frame_wins": top_frame_wins,
        "team_totals": {
            "wins": sum(int(profile.get("total_wins") or 0) for profile in profiles),
            "losses": sum(int(profile.get("total_losses") or 0) for profile in profiles),
        },
        "game_results": results,
        "player_form": player_form[:TOP_PLAYERS],
        "unpaid_subs": {"entries": unpaid, "total": sum(entry["amount"] for entry in unpaid)},
        "league_outlook": league_outlook(standings, team_name, len(happened)),
    }
