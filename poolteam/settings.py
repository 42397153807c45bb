import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_STANDINGS_URL = "https://scrapecleaguetable-wbv6pvivda-nw.a.run.app/"


@dataclass(frozen=True)
class Settings:
    database_url: str
    standings_url: str = DEFAULT_STANDINGS_URL
    standings_timeout: float = 15.0
    team_name: str = "Union Jack Club B"
    transaction_attempts: int = 5


def _normalize_database_url(value: Optional[str]) -> str:
    if not value:
        return "sqlite:///data/poolteam.db"
    normalized = value.strip()
    if normalized.startswith("sqlite:"):
        return normalized
    if Path(normalized).suffix:  # treat as direct path
        return f"sqlite:///{normalized}"
    return normalized


def _float_from_env(key: str, default: float) -> float:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _int_from_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if not value:
        return default
    try:
        return max(1, int(value))
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        database_url=_normalize_database_url(os.getenv("DATABASE_URL")),
        standings_url=os.getenv("STANDINGS_URL", DEFAULT_STANDINGS_URL),
        standings_timeout=_float_from_env("STANDINGS_TIMEOUT", 15.0),
        team_name=os.getenv("TEAM_NAME", "Union Jack Club B"),
        transaction_attempts=_int_from_env("TRANSACTION_ATTEMPTS", 5),
    )
