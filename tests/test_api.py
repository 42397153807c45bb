import json

import pytest
import requests
from fastapi.testclient import TestClient

import poolteam.main as main
from poolteam import db, standings
from poolteam.settings import Settings

CAPTAIN = {"X-Profile-Id": "cap"}
PLAYER = {"X-Profile-Id": "pl"}


class FakeResponse:
    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def client(database_url, monkeypatch):
    monkeypatch.setattr(
        main,
        "settings",
        Settings(database_url=database_url, standings_url="http://upstream.test/", standings_timeout=1.0),
    )
    db.insert_profile(database_url, {"display_name": "Alice", "role": "captain"}, "cap")
    db.insert_profile(database_url, {"display_name": "Ben"}, "pl")
    return TestClient(main.app)


def _create_game(client, **fields):
    payload = {"opponent": "Red Lion A", "location": "Red Lion", "home_or_away": "away"}
    payload.update(fields)
    response = client.post("/api/games", json=payload, headers=CAPTAIN)
    assert response.status_code == 201
    return response.json()


def test_create_game_requires_manager(client):
    for headers in (PLAYER, {}):
        response = client.post("/api/games", json={"opponent": "Crown"}, headers=headers)
        assert response.status_code == 403
        assert "error" in response.json()

    game = _create_game(client, match_date="2099-01-07T20:00:00")
    assert game["result"] == "pending"
    assert game["status"] == "upcoming"
    assert game["date_label"] == "07/01/2099"
    assert game["player_stats"] == []


def test_create_game_validation(client):
    response = client.post("/api/games", json={"opponent": "   "}, headers=CAPTAIN)
    assert response.status_code == 400
    assert response.json() == {"error": "Enter an opponent."}

    response = client.post("/api/games", json={"opponent": "Crown", "home_or_away": "north"}, headers=CAPTAIN)
    assert response.status_code == 422
    assert response.json()["error"] == "Invalid payload"
    assert response.json()["details"]

    response = client.post("/api/games", content="{not json", headers=CAPTAIN)
    assert response.status_code == 400


def test_update_and_list_games(client):
    game = _create_game(client)
    response = client.patch(
        f"/api/games/{game['id']}",
        json={"location": " Back room ", "match_date": "2020-03-01T20:00:00"},
        headers=CAPTAIN,
    )
    assert response.status_code == 200
    assert response.json()["location"] == "Back room"
    assert response.json()["home_or_away"] == "away"

    listing = client.get("/api/games").json()
    assert listing["upcoming"] == []
    assert [g["id"] for g in listing["previous"]] == [game["id"]]

    assert client.patch("/api/games/missing", json={"notes": "x"}, headers=CAPTAIN).status_code == 404
    assert client.get("/api/games/missing").status_code == 404


def test_save_stats_updates_profiles(client, database_url):
    game = _create_game(client)
    rows = [
        {"player_id": "cap", "singles_wins": 2, "doubles_wins": 1},
        {"player_id": "pl", "singles_losses": 3, "subs_paid": True},
        {"player_id": ""},
    ]

    response = client.put(f"/api/games/{game['id']}/stats", json={"rows": rows}, headers=CAPTAIN)
    assert response.status_code == 200
    body = response.json()
    assert body["game"]["player_ids"] == ["cap", "pl"]
    assert body["deltas"] == [
        {"player_id": "cap", "display_name": "Alice", "win_diff": 3, "loss_diff": 0},
        {"player_id": "pl", "display_name": "Ben", "win_diff": 0, "loss_diff": 2},
    ]
    assert db.fetch_profile(database_url, "pl")["total_losses"] == 2

    again = client.put(f"/api/games/{game['id']}/stats", json={"rows": rows}, headers=CAPTAIN)
    assert again.json()["deltas"] == []


def test_save_stats_errors(client, database_url):
    game = _create_game(client)
    url = f"/api/games/{game['id']}/stats"

    assert client.put(url, json={"rows": [{"player_id": "cap"}]}, headers=PLAYER).status_code == 403

    duplicate = client.put(url, json={"rows": [{"player_id": "cap"}, {"player_id": "cap"}]}, headers=CAPTAIN)
    assert duplicate.status_code == 400
    assert "duplicate player" in duplicate.json()["error"]

    for profile_id in ("c", "d", "e", "f"):
        db.insert_profile(database_url, {"display_name": profile_id}, profile_id)
    full = [{"player_id": pid, "singles_wins": 2} for pid in ("cap", "pl", "c", "d", "e", "f")]
    capped = client.put(url, json={"rows": full}, headers=CAPTAIN)
    assert capped.status_code == 400
    assert capped.json() == {"error": "Singles totals exceed 10. Currently 12."}

    missing = client.put("/api/games/missing/stats", json={"rows": [{"player_id": "cap"}]}, headers=CAPTAIN)
    assert missing.status_code == 404
    assert db.fetch_profile(database_url, "cap")["total_wins"] == 0


def test_result_cap_and_delete(client, database_url):
    for index in range(main.SEASON_RESULT_CAP):
        db.insert_game(database_url, {"opponent": f"Team {index}", "result": "win"}, f"done-{index}")
    game = _create_game(client)

    capped = client.put(f"/api/games/{game['id']}/result", json={"result": "win"}, headers=CAPTAIN)
    assert capped.status_code == 400
    assert capped.json()["error"].startswith("Season cap reached")

    switched = client.put("/api/games/done-0/result", json={"result": "loss"}, headers=CAPTAIN)
    assert switched.status_code == 200
    assert switched.json()["result_label"] == "Loss"

    assert client.delete(f"/api/games/{game['id']}", headers=PLAYER).status_code == 403
    assert client.delete(f"/api/games/{game['id']}", headers=CAPTAIN).json() == {"deleted": game["id"]}
    assert client.delete(f"/api/games/{game['id']}", headers=CAPTAIN).status_code == 404


def test_fixture_import(client):
    payload = json.dumps([{"opponent": "Crown", "homeOrAway": "home", "notes": "2024-09-19"}])

    first = client.post("/api/fixtures/import", content=payload, headers=CAPTAIN)
    second = client.post("/api/fixtures/import", content=payload, headers=CAPTAIN)

    assert first.json() == {"created": 1, "updated": 0, "skipped": 0}
    assert second.json() == {"created": 0, "updated": 0, "skipped": 1}
    assert client.get("/api/games/match-2024-09-19-home-crown").status_code == 200
    assert client.post("/api/fixtures/import", content="{}", headers=CAPTAIN).status_code == 400


def test_profiles_roster_and_subs(client, database_url):
    created = client.post("/api/profiles", json={"display_name": "Cara", "uid": "uid-cara"}, headers=CAPTAIN)
    assert created.status_code == 201
    assert client.get("/api/profiles/by-uid/uid-cara").json()["display_name"] == "Cara"
    assert client.get("/api/profiles/by-uid/nobody").status_code == 404
    names = [p["display_name"] for p in client.get("/api/profiles").json()["profiles"]]
    assert names == ["Alice", "Ben", "Cara"]

    assert client.post("/api/roster", json={"name": "Dave"}, headers=CAPTAIN).json() == {"id": "Dave"}
    duplicate = client.post("/api/roster", json={"name": "Dave"}, headers=CAPTAIN)
    assert duplicate.status_code == 400
    assert [entry["id"] for entry in client.get("/api/roster").json()["roster"]] == ["Dave"]

    paid = client.put("/api/profiles/pl/subs", json={"subs_status": "paid"}, headers=CAPTAIN)
    assert paid.json()["subs_status"] == "paid"
    assert client.put("/api/profiles/pl/subs", json={"subs_status": "due"}, headers=PLAYER).status_code == 403

    seeded = client.post("/api/profiles/seed", json={"dry_run": True}, headers=CAPTAIN)
    assert seeded.json() == {"creates": 1, "updates": 0, "skipped": 0, "linked": 0}


def test_my_totals_and_metrics(client):
    game = _create_game(client, match_date="2020-05-01T20:00:00")
    client.put(
        f"/api/games/{game['id']}/stats",
        json={"rows": [{"player_id": "pl", "singles_wins": 1, "singles_losses": 1}]},
        headers=CAPTAIN,
    )

    assert client.get("/api/me/totals").status_code == 403
    totals = client.get("/api/me/totals", headers=PLAYER).json()
    assert totals["totals"] == {"wins": 1, "losses": 1}
    assert totals["subs_due_count"] == 1

    result = client.get("/api/me/metrics", headers=PLAYER).json()
    assert result["matches_played"] == 1
    assert result["frame_win_rate_pct"] == 50.0


def test_dashboard_without_standings(client, monkeypatch):
    def boom(*_args, **_kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(standings.requests, "get", boom)
    assert client.get("/api/dashboard", headers=PLAYER).status_code == 403

    board = client.get("/api/dashboard", headers=CAPTAIN).json()
    assert board["league_outlook"] is None
    assert board["unpaid_subs"] == {"entries": [], "total": 0}


def test_standings_proxy(client, monkeypatch):
    monkeypatch.setattr(
        standings.requests,
        "get",
        lambda *_args, **_kwargs: FakeResponse(200, '{"standings": [{"team": "Crown", "points": 9}]}'),
    )

    response = client.get("/api/standings")
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.json() == {"standings": [{"team": "Crown", "points": 9}]}

    table = client.get("/api/standings/table").json()
    assert table["standings"][0]["position"] == "1"

    preflight = client.options("/api/standings")
    assert preflight.status_code == 204
    assert preflight.headers["access-control-allow-methods"] == "GET, OPTIONS"

    rejected = client.post("/api/standings")
    assert rejected.status_code == 405
    assert rejected.json() == {"error": "Method Not Allowed"}


def test_standings_proxy_upstream_failure(client, monkeypatch):
    def boom(*_args, **_kwargs):
        raise requests.Timeout("timed out")

    monkeypatch.setattr(standings.requests, "get", boom)

    response = client.get("/api/standings")
    assert response.status_code == 502
    assert response.json() == {"error": "Bad Gateway", "message": "timed out"}
    assert client.get("/api/standings/table").status_code == 502


def test_season_page(client):
    _create_game(client, opponent="Kings Arms")

    response = client.get("/season")
    assert response.status_code == 200
    assert "Union Jack Club B" in response.text
    assert "Kings Arms" in response.text
