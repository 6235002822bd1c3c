"""Settings loaded from environment variables (and an optional .env file)."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


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


@dataclass(frozen=True, slots=True)
class Settings:
    app_env: str
    app_url: str

    jwt_secret: str
    jwt_algorithm: str
    jwt_expiry_minutes: int

    smtp_host: Optional[str]
    smtp_port: int
    smtp_user: Optional[str]
    smtp_password: Optional[str]
    smtp_from: Optional[str]

    preregistration_ttl_seconds: int
    preregistration_sweep_seconds: int

    email_send_attempts: int
    email_retry_delay_seconds: float

    @property
    def expose_error_details(self) -> bool:
        return self.app_env == "development"

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            app_env=os.getenv("APP_ENV", "production").strip().lower(),
            app_url=os.getenv("APP_URL", "http://localhost:3000").rstrip("/"),
            jwt_secret=os.getenv("JWT_SECRET", "dev-secret-change-me"),
            jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            jwt_expiry_minutes=_env_int("JWT_EXPIRY_MINUTES", 24 * 60),
            smtp_host=os.getenv("SMTP_HOST") or None,
            smtp_port=_env_int("SMTP_PORT", 587),
            smtp_user=os.getenv("SMTP_USER") or None,
            smtp_password=os.getenv("SMTP_PASSWORD") or None,
            smtp_from=os.getenv("SMTP_FROM") or None,
            preregistration_ttl_seconds=_env_int("PREREGISTRATION_TTL_SECONDS", 3600),
            preregistration_sweep_seconds=_env_int("PREREGISTRATION_SWEEP_SECONDS", 3600),
            email_send_attempts=max(1, _env_int("EMAIL_SEND_ATTEMPTS", 2)),
            email_retry_delay_seconds=_env_float("EMAIL_RETRY_DELAY_SECONDS", 2.0),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


def sqlalchemy_echo() -> bool:
    return _env_bool("SQLALCHEMY_ECHO", False)
