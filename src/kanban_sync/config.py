# src/kanban_sync/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Every value has a sane default so the console front end runs out of the box.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "KANBAN"

DEFAULT_AREAS = ["Jurídica", "Obras", "Tesorería", "Administración", "Recursos Humanos"]


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except Exception:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    # Area names contain spaces ("Recursos Humanos"), so only commas split.
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.split(",") if p.strip()]


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

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    snapshot_db_path: Path
    export_dir: Path

    # ---- Remote store ----
    collection_name: str
    cache_freshness_seconds: float

    # ---- Reminders ----
    due_reminder_minutes: int
    daily_reminders_enabled: bool
    countdown_interval_seconds: float

    # ---- Organization ----
    areas: list[str]

    # ---- Default console session ----
    session_role: str
    session_email: str
    session_department: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "kanban-sync")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/kanban"))
        snapshot_db_path = _env_path(_k("SNAPSHOT_DB_PATH"), data_dir / "snapshots.sqlite3")
        export_dir = _env_path(_k("EXPORT_DIR"), data_dir / "exports")

        collection_name = _env(_k("COLLECTION"), "tasks")
        cache_freshness_seconds = max(0.0, _env_float(_k("CACHE_FRESHNESS_SECONDS"), 30.0))

        due_reminder_minutes = max(0, _env_int(_k("DUE_REMINDER_MINUTES"), 10))
        daily_reminders_enabled = _env_bool(_k("DAILY_REMINDERS"), True)
        countdown_interval_seconds = max(0.05, _env_float(_k("COUNTDOWN_INTERVAL_SECONDS"), 1.0))

        areas = _env_list(_k("AREAS"), DEFAULT_AREAS)

        session_role = _env(_k("SESSION_ROLE"), "admin").strip().lower()
        session_email = _env(_k("SESSION_EMAIL"), "admin@example.com").strip()
        session_department = _env(_k("SESSION_DEPARTMENT"), "").strip()

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            snapshot_db_path=snapshot_db_path,
            export_dir=export_dir,
            collection_name=collection_name,
            cache_freshness_seconds=cache_freshness_seconds,
            due_reminder_minutes=due_reminder_minutes,
            daily_reminders_enabled=daily_reminders_enabled,
            countdown_interval_seconds=countdown_interval_seconds,
            areas=areas,
            session_role=session_role,
            session_email=session_email,
            session_department=session_department,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
