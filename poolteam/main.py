import json
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Literal

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, ValidationError

from poolteam import db, fixtures, metrics, profiles, schedule, standings, stats
from poolteam.db import ensure_schema
from poolteam.errors import LeagueError, NotFound, PermissionDenied, StandingsError
from poolteam.errors import ValidationError as LeagueValidationError
from poolteam.settings import load_settings

logger = logging.getLogger(__name__)

app = FastAPI()

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
settings = load_settings()

# decided results allowed per season
SEASON_RESULT_CAP = 13


class GamePayload(BaseModel):
    opponent: str
    location: str = ""
    home_or_away: Literal["home", "away"] = "home"
    match_date: datetime | None = None
    notes: str | None = None


class GameDetailsPayload(BaseModel):
    opponent: str | None = None
    location: str | None = None
    home_or_away: Literal["home", "away"] | None = None
    match_date: datetime | None = None
    notes: str | None = None


class ResultPayload(BaseModel):
    result: Literal["pending", "win", "loss"]


class StatRowPayload(BaseModel):
    player_id: str = ""
    singles_wins: int = 0
    singles_losses: int = 0
    doubles_wins: int = 0
    doubles_losses: int = 0
    subs_paid: bool = False


class StatsPayload(BaseModel):
    rows: list[StatRowPayload]


class ProfilePayload(BaseModel):
    display_name: str
    role: str = "player"
    uid: str | None = None


class RosterPayload(BaseModel):
    name: str
    role: str = "player"


class SubsPayload(BaseModel):
    subs_status: Literal["paid", "due"]


class SeedPayload(BaseModel):
    overwrite: bool = False
    link_up: bool = True
    dry_run: bool = False
    include_unassigned: bool = True


async def _payload(request: Request, model: type[BaseModel]):
    try:
        return model.model_validate(await request.json())
    except json.JSONDecodeError as exc:
        raise LeagueValidationError(f"Invalid JSON: {exc.msg}") from exc


def _caller_role(request: Request) -> str | None:
    return profiles.resolve_caller_role(settings.database_url, request.headers.get("X-Profile-Id"))


def _current_profile(request: Request) -> dict:
    profile_id = request.headers.get("X-Profile-Id")
    profile = db.fetch_profile(settings.database_url, profile_id) if profile_id else None
    if profile is None:
        raise PermissionDenied("Sign in with a player profile first.")
    return profile


def _game_view(game: dict) -> dict:
    view = dict(game)
    view["status"] = schedule.classify_match(game)
    view["date_label"] = schedule.format_match_date_label(game.get("match_date"), game.get("notes"))
    view["result_label"] = schedule.result_label(game.get("result"))
    return view


def _require_game(game_id: str) -> dict:
    game = db.fetch_game(settings.database_url, game_id)
    if game is None:
        raise NotFound("Match not found")
    return game


def _load_standings() -> dict | None:
    try:
        return standings.fetch_standings(settings.standings_url, settings.standings_timeout)
    except StandingsError as exc:
        logger.warning("Dashboard built without standings: %s", exc.message)
        return None


@app.exception_handler(LeagueError)
async def league_error_handler(request: Request, exc: LeagueError) -> JSONResponse:
    return JSONResponse({"error": exc.message}, status_code=exc.status_code)


@app.exception_handler(ValidationError)
async def payload_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse({"error": "Invalid payload", "details": exc.errors()}, status_code=422)


@app.on_event("startup")
def startup() -> None:
    ensure_schema(settings.database_url)


@app.get("/", response_class=RedirectResponse)
async def index():
    return RedirectResponse(url="/season")


@app.get("/season", response_class=HTMLResponse)
async def season_page(request: Request):
    split = schedule.split_matches(db.fetch_games(settings.database_url))
    return templates.TemplateResponse(
        request,
        "season.html",
        {
            "team_name": settings.team_name,
            "upcoming": [_game_view(game) for game in split[schedule.UPCOMING]],
            "previous": [_game_view(game) for game in split[schedule.PREVIOUS]],
        },
    )


@app.get("/api/games")
async def api_games():
    split = schedule.split_matches(db.fetch_games(settings.database_url))
    return {key: [_game_view(game) for game in games] for key, games in split.items()}


@app.get("/api/games/{game_id}")
async def api_game(game_id: str):
    return _game_view(_require_game(game_id))


@app.post("/api/games", status_code=201)
async def api_create_game(request: Request):
    profiles.require_manager(_caller_role(request))
    payload = await _payload(request, GamePayload)
    opponent = payload.opponent.strip()
    if not opponent:
        raise LeagueValidationError("Enter an opponent.")
    game = payload.model_dump()
    game.update({"opponent": opponent, "location": payload.location.strip(), "result": "pending"})
    game_id = db.insert_game(settings.database_url, game)
    logger.info("Created match %s against %s", game_id, opponent)
    return _game_view(_require_game(game_id))


@app.patch("/api/games/{game_id}")
async def api_update_game(game_id: str, request: Request):
    profiles.require_manager(_caller_role(request))
    payload = await _payload(request, GameDetailsPayload)
    fields = payload.model_dump(exclude_unset=True)
    if "opponent" in fields:
        fields["opponent"] = (fields["opponent"] or "").strip()
        if not fields["opponent"]:
            raise LeagueValidationError("Enter an opponent.")
    if fields.get("home_or_away") is None:
        fields.pop("home_or_away", None)
    if "location" in fields:
        fields["location"] = (fields["location"] or "").strip()
    db.update_game_details(settings.database_url, game_id, fields)
    return _game_view(_require_game(game_id))


@app.put("/api/games/{game_id}/result")
async def api_set_result(game_id: str, request: Request):
    profiles.require_manager(_caller_role(request))
    payload = await _payload(request, ResultPayload)
    game = _require_game(game_id)
    if game["result"] == "pending" and payload.result != "pending":
        if db.count_decided_games(settings.database_url) >= SEASON_RESULT_CAP:
            raise LeagueValidationError(
                f"Season cap reached: {SEASON_RESULT_CAP} results already recorded."
            )
    db.update_game_result(settings.database_url, game_id, payload.result)
    return _game_view(_require_game(game_id))


@app.delete("/api/games/{game_id}")
async def api_delete_game(game_id: str, request: Request):
    profiles.require_manager(_caller_role(request))
    if not db.delete_game(settings.database_url, game_id):
        raise NotFound("Match not found")
    logger.info("Deleted match %s", game_id)
    return {"deleted": game_id}


@app.put("/api/games/{game_id}/stats")
async def api_save_stats(game_id: str, request: Request):
    caller_role = _caller_role(request)
    payload = await _payload(request, StatsPayload)
    deltas = stats.reconcile_match_stats(
        settings.database_url,
        game_id,
        [row.model_dump() for row in payload.rows],
        profiles.known_players(settings.database_url),
        caller_role,
        max_attempts=settings.transaction_attempts,
    )
    return {"game": _game_view(_require_game(game_id)), "deltas": [asdict(delta) for delta in deltas]}


@app.post("/api/fixtures/import")
async def api_import_fixtures(request: Request, overwrite: bool = False, dry_run: bool = False):
    profiles.require_manager(_caller_role(request))
    rows = fixtures.parse_fixture_payload((await request.body()).decode("utf-8"))
    return fixtures.import_fixtures(settings.database_url, rows, overwrite=overwrite, dry_run=dry_run)


@app.get("/api/profiles")
async def api_profiles():
    return {"profiles": db.fetch_profiles(settings.database_url)}


@app.post("/api/profiles", status_code=201)
async def api_create_profile(request: Request):
    payload = await _payload(request, ProfilePayload)
    profile_id = profiles.create_profile(
        settings.database_url,
        payload.display_name,
        payload.role,
        _caller_role(request),
        uid=payload.uid,
    )
    return db.fetch_profile(settings.database_url, profile_id)


@app.get("/api/profiles/by-uid/{uid}")
async def api_profile_by_uid(uid: str):
    profile = db.fetch_profile_by_uid(settings.database_url, uid)
    if profile is None:
        raise NotFound("Profile not found")
    return profile


@app.put("/api/profiles/{profile_id}/subs")
async def api_set_subs(profile_id: str, request: Request):
    payload = await _payload(request, SubsPayload)
    profiles.set_subs_status(settings.database_url, profile_id, payload.subs_status, _caller_role(request))
    return db.fetch_profile(settings.database_url, profile_id)


@app.post("/api/profiles/seed")
async def api_seed_profiles(request: Request):
    profiles.require_manager(_caller_role(request))
    payload = await _payload(request, SeedPayload)
    return profiles.seed_user_profiles(settings.database_url, **payload.model_dump())


@app.get("/api/roster")
async def api_roster():
    return {"roster": db.fetch_roster(settings.database_url)}


@app.post("/api/roster", status_code=201)
async def api_add_roster_entry(request: Request):
    payload = await _payload(request, RosterPayload)
    name = profiles.add_roster_entry(settings.database_url, payload.name, payload.role, _caller_role(request))
    return {"id": name}


@app.get("/api/me/totals")
async def api_my_totals(request: Request):
    profile = _current_profile(request)
    games = db.fetch_games(settings.database_url)
    return metrics.user_totals(games, profiles.player_identities(profile))


@app.get("/api/me/metrics")
async def api_my_metrics(request: Request):
    profile = _current_profile(request)
    games = db.fetch_games(settings.database_url)
    return metrics.player_metrics(games, profiles.player_identities(profile))


@app.get("/api/dashboard")
async def api_dashboard(request: Request):
    profiles.require_manager(_caller_role(request))
    roster_emails = {
        entry["id"]: entry["assigned_email"]
        for entry in db.fetch_roster(settings.database_url)
        if entry.get("assigned_email")
    }
    return metrics.captains_dashboard(
        db.fetch_games(settings.database_url),
        db.fetch_profiles(settings.database_url),
        roster_emails=roster_emails,
        standings=_load_standings(),
        team_name=settings.team_name,
    )


@app.api_route("/api/standings", methods=["GET", "OPTIONS", "POST", "PUT", "PATCH", "DELETE"])
async def api_standings(request: Request):
    if request.method == "OPTIONS":
        return Response(status_code=204, headers=standings.CORS_HEADERS)
    if request.method != "GET":
        return JSONResponse(
            {"error": "Method Not Allowed"}, status_code=405, headers=standings.CORS_HEADERS
        )
    try:
        status, text = standings.fetch_raw(settings.standings_url, settings.standings_timeout)
    except StandingsError as exc:
        return JSONResponse(
            {"error": "Bad Gateway", "message": exc.message},
            status_code=502,
            headers=standings.CORS_HEADERS,
        )
    return Response(
        content=text,
        status_code=status,
        media_type="application/json",
        headers=standings.CORS_HEADERS,
    )


@app.get("/api/standings/table")
async def api_standings_table():
    return standings.fetch_standings(settings.standings_url, settings.standings_timeout)
