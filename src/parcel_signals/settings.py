from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


# Fixed for every jurisdiction; ArcGIS servers commonly cap maxRecordCount at 2000.
PAGE_SIZE = 2000

DEFAULT_DB_PATH = "./parcel_signals.sqlite"


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    try:
        value = float(str(raw).strip())
    except ValueError:
        return default
    return max(minimum, value)


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the environment.

    Defaults match a short-lived serverless invocation (55 second budget).
    """

    db_path: str
    deadline_seconds: float
    write_batch_size: int
    http_timeout_seconds: float
    http_retries: int
    lease_ttl_seconds: int
    user_agent: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=os.getenv("PARCEL_SIGNALS_DB", "").strip() or DEFAULT_DB_PATH,
            deadline_seconds=_env_float("PARCEL_SIGNALS_DEADLINE_SECONDS", 55.0, minimum=1.0),
            write_batch_size=_env_int("PARCEL_SIGNALS_WRITE_BATCH_SIZE", 500, minimum=1),
            http_timeout_seconds=_env_float("PARCEL_SIGNALS_HTTP_TIMEOUT", 30.0, minimum=1.0),
            http_retries=_env_int("PARCEL_SIGNALS_HTTP_RETRIES", 2),
            lease_ttl_seconds=_env_int("PARCEL_SIGNALS_LEASE_TTL_SECONDS", 120, minimum=10),
            user_agent=os.getenv("PARCEL_SIGNALS_USER_AGENT", "").strip()
            or "parcel-signals/0.1 (+cadastral ingestion)",
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()
