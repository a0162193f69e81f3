from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./finance_core.db"
DEFAULT_FRONTEND_ORIGIN = "http://localhost:3000"


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    frontend_origin: str = DEFAULT_FRONTEND_ORIGIN
    log_level: str | None = None
    suggestion_prefix_limit: int = 25
    suggestion_cache_size: int = 1024

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            frontend_origin=os.getenv("FRONTEND_ORIGIN", DEFAULT_FRONTEND_ORIGIN),
            log_level=os.getenv("FINANCE_CORE_LOG_LEVEL"),
            suggestion_prefix_limit=_int_from_env("SUGGESTION_PREFIX_LIMIT", 25) or 25,
            suggestion_cache_size=_int_from_env("SUGGESTION_CACHE_SIZE", 1024),
        )
