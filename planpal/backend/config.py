"""Configuration helpers for backend runtime."""

from __future__ import annotations

import os
from dataclasses import dataclass

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BackendSettings:
    server_salt: str
    database_url: str | None
    host: str
    port: int
    log_level: str
    log_file: str | None
    cors_origins: tuple[str, ...]
    realtime_errors: bool


def _split_origins(raw: str) -> tuple[str, ...]:
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


def load_settings() -> BackendSettings:
    port_raw = os.getenv("PLANPAL_PORT", "8000")
    return BackendSettings(
        server_salt=os.getenv("PLANPAL_SERVER_SALT", "dev-salt"),
        database_url=os.getenv("PLANPAL_DATABASE_URL") or None,
        host=os.getenv("PLANPAL_HOST", "127.0.0.1"),
        port=int(port_raw),
        log_level=os.getenv("PLANPAL_LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("PLANPAL_LOG_FILE") or None,
        cors_origins=_split_origins(os.getenv("PLANPAL_CORS_ORIGINS", "http://localhost:5173")),
        realtime_errors=os.getenv("PLANPAL_REALTIME_ERRORS", "").strip().lower() in _TRUTHY,
    )
