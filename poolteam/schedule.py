from datetime import date, datetime
from typing import Any, Iterable

UPCOMING = "upcoming"
PREVIOUS = "previous"
RESULT_LABELS = {"win": "Win", "loss": "Loss"}


def local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return None


def start_of_day(now: datetime | None = None) -> datetime:
    current = local_naive(now) if now else datetime.now()
    return current.replace(hour=0, minute=0, second=0, microsecond=0)


def classify_match(match: dict, now: datetime | None = None) -> str:
    """Decided matches are previous; pending ones stay upcoming through match day."""
    if match.get("result") in ("win", "loss"):
        return PREVIOUS
    match_date = _as_datetime(match.get("match_date"))
    if match_date is None:
        return UPCOMING
    return PREVIOUS if local_naive(match_date) < start_of_day(now) else UPCOMING


def _timestamp(value: Any) -> float | None:
    moment = _as_datetime(value)
    return moment.timestamp() if moment else None


def sort_upcoming(matches: Iterable[dict]) -> list[dict]:
    return sorted(
        matches,
        key=lambda match: (
            _timestamp(match.get("match_date")) is None,
            _timestamp(match.get("match_date")) or 0.0,
        ),
    )


def sort_previous(matches: Iterable[dict]) -> list[dict]:
    def _key(match: dict) -> tuple:
        played = _timestamp(match.get("match_date"))
        if played is not None:
            return (0, -played)
        return (1, -(_timestamp(match.get("updated_at")) or 0.0))

    return sorted(matches, key=_key)


def split_matches(matches: Iterable[dict], now: datetime | None = None) -> dict[str, list[dict]]:
    upcoming: list[dict] = []
    previous: list[dict] = []
    for match in matches:
        if classify_match(match, now) == PREVIOUS:
            previous.append(match)
        else:
            upcoming.append(match)
    return {UPCOMING: sort_upcoming(upcoming), PREVIOUS: sort_previous(previous)}


def parse_notes_date(notes: Any) -> datetime | None:
    if not isinstance(notes, str) or not notes.strip():
        return None
    try:
        return datetime.fromisoformat(notes.strip())
    except ValueError:
        return None


def format_match_date_label(match_date: Any, notes: Any = None, tbc_label: str = "Date TBC") -> str:
    moment = _as_datetime(match_date) or parse_notes_date(notes)
    if moment:
        return moment.strftime("%d/%m/%Y")
    if isinstance(notes, str) and notes.strip():
        return notes.strip()
    return tbc_label


def result_label(result: Any) -> str:
    return RESULT_LABELS.get(result, "Pending")
