"""Runtime settings for the delivery fee engine.

Values come from the environment (a local ``.env`` file is loaded if
present). Every duration is expressed in seconds.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

try:
    load_dotenv()
except Exception:
    pass  # Python 3.14+ compat


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """Engine tunables with their production defaults."""

    cache_ttl_seconds: float = 30 * 60
    location_freshness_seconds: float = 5 * 60
    significant_move_meters: float = 100.0
    location_debounce_seconds: float = 0.8
    recalculation_delay_seconds: float = 0.1
    batch_chunk_size: int = 5
    refresh_interval_seconds: float = 10 * 60
    min_resume_interval_seconds: float = 5 * 60
    max_cache_size: int = 500
    location_timeout_seconds: float = 15.0

    supabase_url: str = ""
    supabase_key: str = ""
    http_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.batch_chunk_size < 1:
            raise ValueError("batch_chunk_size must be at least 1")
        if self.max_cache_size < 0:
            raise ValueError("max_cache_size cannot be negative")

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            cache_ttl_seconds=_env_float("FEE_CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
            location_freshness_seconds=_env_float(
                "LOCATION_FRESHNESS_SECONDS", defaults.location_freshness_seconds
            ),
            significant_move_meters=_env_float(
                "SIGNIFICANT_MOVE_METERS", defaults.significant_move_meters
            ),
            location_debounce_seconds=_env_float(
                "LOCATION_DEBOUNCE_SECONDS", defaults.location_debounce_seconds
            ),
            recalculation_delay_seconds=_env_float(
                "RECALCULATION_DELAY_SECONDS", defaults.recalculation_delay_seconds
            ),
            batch_chunk_size=_env_int("FEE_BATCH_CHUNK_SIZE", defaults.batch_chunk_size),
            refresh_interval_seconds=_env_float(
                "FEE_REFRESH_INTERVAL_SECONDS", defaults.refresh_interval_seconds
            ),
            min_resume_interval_seconds=_env_float(
                "MIN_RESUME_INTERVAL_SECONDS", defaults.min_resume_interval_seconds
            ),
            max_cache_size=_env_int("FEE_MAX_CACHE_SIZE", defaults.max_cache_size),
            location_timeout_seconds=_env_float(
                "LOCATION_TIMEOUT_SECONDS", defaults.location_timeout_seconds
            ),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_ANON_KEY", ""),
            http_timeout_seconds=_env_float("HTTP_TIMEOUT_SECONDS", defaults.http_timeout_seconds),
        )
