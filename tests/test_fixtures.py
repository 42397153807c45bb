from datetime import datetime

import pytest

from poolteam import db, fixtures
from poolteam.errors import ValidationError

FIXTURES = [
    {"opponent": " Red Lion A ", "location": "Red Lion", "homeOrAway": "away", "notes": "2024-09-12"},
    {"opponent": "Crown & Anchor", "homeOrAway": "home", "notes": "2024-09-19", "result": "win"},
    {"opponent": "Kings Arms", "homeOrAway": "sideways", "result": "draw"},
]


def test_normalize_import_game_defaults():
    game = fixtures.normalize_import_game(FIXTURES[2])
    assert game["home_or_away"] == "home"
    assert game["result"] == "pending"
    assert game["match_date"] is None
    assert game["location"] == ""
    assert game["player_stats"] == []

    game = fixtures.normalize_import_game({})
    assert game["opponent"] == "TBC"


def test_notes_date_becomes_evening_start():
    game = fixtures.normalize_import_game(FIXTURES[0])
    assert game["opponent"] == "Red Lion A"
    assert game["match_date"] == datetime(2024, 9, 12, 20, 0)


def test_stable_match_ids():
    ids = [fixtures.build_stable_match_id(fixtures.normalize_import_game(row)) for row in FIXTURES]
    assert ids == [
        "match-2024-09-12-away-red-lion-a",
        "match-2024-09-19-home-crown-anchor",
        "match-tbc-home-kings-arms",
    ]


def test_parse_fixture_payload_requires_array():
    assert fixtures.parse_fixture_payload('[{"opponent": "X"}]') == [{"opponent": "X"}]
    with pytest.raises(ValidationError, match="JSON array"):
        fixtures.parse_fixture_payload('{"opponent": "X"}')
    with pytest.raises(ValidationError, match="Invalid JSON"):
        fixtures.parse_fixture_payload("[{")


def test_import_is_idempotent(database_url):
    first = fixtures.import_fixtures(database_url, FIXTURES)
    second = fixtures.import_fixtures(database_url, FIXTURES)

    assert first == {"created": 3, "updated": 0, "skipped": 0}
    assert second == {"created": 0, "updated": 0, "skipped": 3}
    assert len(db.fetch_games(database_url)) == 3

    game = db.fetch_game(database_url, "match-2024-09-19-home-crown-anchor")
    assert game["result"] == "win"
    assert game["match_date"] == datetime(2024, 9, 19, 20, 0)


def test_import_overwrite_and_dry_run(database_url):
    fixtures.import_fixtures(database_url, FIXTURES[:1])
    changed = [dict(FIXTURES[0], location="Back room"), FIXTURES[1]]

    preview = fixtures.import_fixtures(database_url, changed, overwrite=True, dry_run=True)
    assert preview == {"created": 1, "updated": 1, "skipped": 0}
    assert len(db.fetch_games(database_url)) == 1

    applied = fixtures.import_fixtures(database_url, changed + ["not a fixture"], overwrite=True)
    assert applied == {"created": 1, "updated": 1, "skipped": 1}
    assert db.fetch_game(database_url, "match-2024-09-12-away-red-lion-a")["location"] == "Back room"


def test_non_dict_stat_entries_are_dropped(database_url):
    from poolteam import stats

    row = {"opponent": "Crown", "notes": "2025-10-16", "playerStats": ["A", None, {"playerId": "B"}]}
    assert fixtures.normalize_import_game(row)["player_stats"] == [{"playerId": "B"}]

    assert fixtures.import_fixtures(database_url, [row]) == {"created": 1, "updated": 0, "skipped": 0}
    assert fixtures.import_fixtures(database_url, [row], overwrite=True)["updated"] == 1

    game_id = "match-2025-10-16-home-crown"
    assert db.fetch_game(database_url, game_id)["player_ids"] == ["B"]

    db.insert_profile(database_url, {"display_name": "Ben"}, "B")
    deltas = stats.reconcile_match_stats(
        database_url,
        game_id,
        [{"player_id": "B", "singles_wins": 1}],
        {"B": "Ben"},
        "captain",
    )
    assert [(d.player_id, d.win_diff) for d in deltas] == [("B", 1)]
