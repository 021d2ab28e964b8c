from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    database_path: str = "dogpark.db"
    secret_key: str = "dogpark-secret"
    log_level: str = "INFO"

    # How long a tentative hold keeps its slot-hours while payment is pending.
    hold_ttl_seconds: int = 600

    # Upper bound for every call to an external collaborator (vaccine
    # approval, subscriber lookup, payment authorization).
    external_call_timeout_seconds: float = 5.0

    occupancy_history_size: int = 20
    max_head_count: int = 3

    # Shared secret for the administrative cancellation route; unset disables it.
    admin_token: str | None = None


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected an integer.") from e
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected a number.") from e
    if value <= 0:
        raise RuntimeError(f"{name} must be > 0")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise RuntimeError(f"Invalid LOG_LEVEL value: {log_level!r}")

    return Settings(
        database_path=os.getenv("DATABASE_PATH", "dogpark.db"),
        secret_key=os.getenv("SECRET_KEY", "dogpark-secret"),
        log_level=log_level,
        hold_ttl_seconds=_int_env("HOLD_TTL_SECONDS", 600),
        external_call_timeout_seconds=_float_env("EXTERNAL_CALL_TIMEOUT_SECONDS", 5.0),
        occupancy_history_size=_int_env("OCCUPANCY_HISTORY_SIZE", 20),
        max_head_count=_int_env("MAX_HEAD_COUNT", 3),
        admin_token=os.getenv("ADMIN_TOKEN", "").strip() or None,
    )


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )
