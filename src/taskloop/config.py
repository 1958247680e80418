# src/taskloop/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole process.
- Nothing is required at import time; every field has a default.
- Registries accept any object with the same attributes, so tests can inject their own.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "TASKLOOP"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


load_dotenv(override=False)


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    log_dir: Path

    # ---- Scheduling ----
    busy_retry_seconds: float
    shutdown_timeout_seconds: float
    daemon_threads: bool

    # ---- Demo host ----
    heartbeat_seconds: float

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskloop") or "taskloop"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        log_dir = _env_path(_k("LOG_DIR"), Path(".local/taskloop"))

        # A busy isolated task is re-checked after this many seconds instead of going dormant.
        busy_retry_seconds = max(0.01, _env_float(_k("BUSY_RETRY_SECONDS"), 1.0))
        shutdown_timeout_seconds = max(0.0, _env_float(_k("SHUTDOWN_TIMEOUT_SECONDS"), 5.0))
        daemon_threads = _env_bool(_k("DAEMON_THREADS"), True)

        heartbeat_seconds = max(0.5, _env_float(_k("HEARTBEAT_SECONDS"), 60.0))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            log_dir=log_dir,
            busy_retry_seconds=busy_retry_seconds,
            shutdown_timeout_seconds=shutdown_timeout_seconds,
            daemon_threads=daemon_threads,
            heartbeat_seconds=heartbeat_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
