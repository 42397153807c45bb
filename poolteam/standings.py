import json
import logging
from datetime import datetime, timezone
from typing import Any

import requests

from poolteam.errors import StandingsError

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def fetch_raw(url: str, timeout: float = 15.0) -> tuple[int, str]:
    """Return the upstream status and body untouched."""
    try:
        response = requests.get(url, headers={"Accept": "application/json"}, timeout=timeout)
    except requests.RequestException as exc:
        logger.error("Standings upstream %s failed: %s", url, exc)
        raise StandingsError(str(exc) or "fetch failed") from exc
    return response.status_code, response.text


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _format_number(value: float) -> str:
    return str(int(value)) if value == int(value) else str(value)


def _unwrap(payload: Any) -> dict:
    if isinstance(payload, list):
        return {"standings": payload}
    if not isinstance(payload, dict):
        raise StandingsError("Unexpected standings payload")
    if not isinstance(payload.get("standings"), list):
        for key in ("data", "result"):
            inner = payload.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("standings"), list):
                return inner
    return payload


def _normalize_row(row: dict, index: int) -> dict:
    raw = row.get("raw") if isinstance(row.get("raw"), list) else []
    goals_for = _number(row.get("gf") or (raw[6] if len(raw) > 6 else 0))
    goals_against = _number(row.get("ga") or (raw[7] if len(raw) > 7 else 0))
    goal_diff = str(row.get("gd") if row.get("gd") is not None else "").strip()
    position = str(row.get("position") if row.get("position") is not None else "").strip()
    if not position:
        position = str(raw[0]) if raw else str(index + 1)
    normalized = dict(row)
    normalized["gd"] = goal_diff or _format_number(goals_for - goals_against)
    normalized["position"] = position
    return normalized


def normalize_standings(payload: Any) -> dict:
    """Flatten the scraper's response shapes into one standings table."""
    unwrapped = _unwrap(payload)
    rows = unwrapped.get("standings") or []
    return {
        "division": str(unwrapped.get("division") or ""),
        "scraped_at": str(unwrapped.get("scrapedAt") or datetime.now(timezone.utc).isoformat()),
        "source": str(unwrapped.get("source") or ""),
        "standings": [_normalize_row(row, index) for index, row in enumerate(rows) if isinstance(row, dict)],
    }


def fetch_standings(url: str, timeout: float = 15.0) -> dict:
    status, text = fetch_raw(url, timeout)
    if status != 200:
        raise StandingsError(f"Standings fetch failed: HTTP {status}")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise StandingsError("Invalid JSON") from exc
    return normalize_standings(payload)
