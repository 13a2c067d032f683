"""Environment-driven settings for the expense tracker API."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from common.exceptions import ValidationError

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$", re.IGNORECASE)
DURATION_UNITS = {"": "seconds", "s": "seconds", "m": "minutes", "h": "hours", "d": "days"}

TRUTHY = {"1", "true", "yes", "on"}


def parse_duration(value: str) -> timedelta:
    """Parse ``3600``, ``15m``, ``12h`` or ``7d`` style durations."""
    match = DURATION_PATTERN.fullmatch(value or "")
    if not match:
        raise ValidationError(f"Invalid duration '{value}'. Expected e.g. 3600, 15m, 12h or 7d.")
    amount, unit = match.groups()
    return timedelta(**{DURATION_UNITS[unit.lower()]: int(amount)})


def _split_origins(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class Settings:
    env: str = "prod"
    database_url: str = "sqlite:///data/expenses.db"
    jwt_secret: str = "dev-secret-change-me-in-production-0000"
    jwt_expires: timedelta = timedelta(days=7)
    cookie_name: str = "access_token"
    cookie_secure: bool = False
    api_prefix: str = "/api"
    allowed_origins: Tuple[str, ...] = field(default_factory=tuple)
    admin_email: str = "admin@admin.com"
    admin_password: str = "admin123"
    seed_demo: bool = False

    @property
    def is_development(self) -> bool:
        return self.env in {"dev", "development"}

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ``, or from ``os.environ`` plus a ``.env`` file."""
        if environ is None:
            load_dotenv()
            environ = os.environ
        defaults = cls()
        return cls(
            env=environ.get("EXPENSE_TRACKER_ENV", defaults.env).lower(),
            database_url=environ.get("DATABASE_URL", defaults.database_url),
            jwt_secret=environ.get("JWT_SECRET", defaults.jwt_secret),
            jwt_expires=parse_duration(environ.get("JWT_EXPIRES_IN", "7d")),
            cookie_name=environ.get("COOKIE_NAME", defaults.cookie_name),
            cookie_secure=environ.get("COOKIE_SECURE", "").strip().lower() in TRUTHY,
            api_prefix=environ.get("API_PREFIX", defaults.api_prefix),
            allowed_origins=_split_origins(environ.get("EXPENSE_TRACKER_ALLOWED_ORIGINS")),
            admin_email=environ.get("ADMIN_EMAIL", defaults.admin_email),
            admin_password=environ.get("ADMIN_PASSWORD", defaults.admin_password),
            seed_demo=environ.get("SEED_DEMO_DATA", "").strip().lower() in TRUTHY,
        )
