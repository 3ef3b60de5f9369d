# src/taskwatch/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Tests pass their own settings object instead of reading the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time as dt_time
from pathlib import Path
from zoneinfo import ZoneInfo

ENV_PREFIX = "TASKWATCH"


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


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


def _env_time(name: str, default: dt_time) -> dt_time:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        hh, mm = raw.strip().split(":", 1)
        return dt_time(int(hh), int(mm))
    except ValueError:
        return default


def _env_zone(name: str, default: str) -> ZoneInfo:
    raw = _env(name, default).strip() or default
    try:
        return ZoneInfo(raw)
    except Exception:
        return ZoneInfo(default)


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    timezone: ZoneInfo

    # ---- Connector flags ----
    console_enabled: bool
    matrix_enabled: bool

    # ---- Matrix ----
    matrix_homeserver: str
    matrix_user_id: str
    matrix_password: str
    matrix_rooms: list[str]

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    matrix_store_path: Path
    tasks_path: Path
    identities_path: Path

    # ---- Scheduling ----
    reminder_interval_seconds: int
    catch_up_minutes: int
    default_deadline_time: dt_time
    daily_report_time: dt_time

    # ---- Delivery ----
    rate_limit_max_retries: int
    rate_limit_default_retry_seconds: int

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "taskwatch") or "taskwatch"
        log_level = _env(_k("LOG_LEVEL"), "INFO")
        timezone = _env_zone(_k("TIMEZONE"), "Europe/Kyiv")

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        matrix_enabled = _env_bool(_k("MATRIX_ENABLED"), False)

        matrix_homeserver = _env(_k("MATRIX_HOMESERVER"), "").strip()
        matrix_user_id = _env(_k("MATRIX_USER_ID"), "").strip()
        matrix_password = _env(_k("MATRIX_PASSWORD"), "").strip()
        matrix_rooms = _env_list(_k("MATRIX_ROOMS"), [])

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/taskwatch"))
        matrix_store_path = _env_path(_k("MATRIX_STORE_PATH"), data_dir / "matrix_store")
        tasks_path = _env_path(_k("TASKS_PATH"), data_dir / "tasks.json")
        identities_path = _env_path(_k("IDENTITIES_PATH"), data_dir / "identities.json")

        reminder_interval_seconds = max(1, _env_int(_k("REMINDER_INTERVAL_SECONDS"), 60))
        catch_up_minutes = max(1, _env_int(_k("CATCH_UP_MINUTES"), 60))
        default_deadline_time = _env_time(_k("DEFAULT_DEADLINE_TIME"), dt_time(18, 0))
        daily_report_time = _env_time(_k("DAILY_REPORT_TIME"), dt_time(18, 0))

        rate_limit_max_retries = max(0, _env_int(_k("RATE_LIMIT_MAX_RETRIES"), 5))
        rate_limit_default_retry_seconds = max(1, _env_int(_k("RATE_LIMIT_DEFAULT_RETRY_SECONDS"), 5))

        return Settings(
            app_name=app_name,
            log_level=log_level,
            timezone=timezone,
            console_enabled=console_enabled,
            matrix_enabled=matrix_enabled,
            matrix_homeserver=matrix_homeserver,
            matrix_user_id=matrix_user_id,
            matrix_password=matrix_password,
            matrix_rooms=matrix_rooms,
            data_dir=data_dir,
            matrix_store_path=matrix_store_path,
            tasks_path=tasks_path,
            identities_path=identities_path,
            reminder_interval_seconds=reminder_interval_seconds,
            catch_up_minutes=catch_up_minutes,
            default_deadline_time=default_deadline_time,
            daily_report_time=daily_report_time,
            rate_limit_max_retries=rate_limit_max_retries,
            rate_limit_default_retry_seconds=rate_limit_default_retry_seconds,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
