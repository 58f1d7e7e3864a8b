"""Environment configuration.

`validate_config()` runs when the server is started from the command line,
so a missing key fails at startup instead of in the middle of a call.
`Settings.from_env()` is what the app factory consumes.
"""

import logging
import os
import sys
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "OPENAI_API_KEY",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "CLINIC_ID",
]

OPTIONAL_VARS = [
    "OPENAI_MODEL",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USER",
    "SMTP_PASS",
    "CLINIC_NOTIFICATION_EMAIL",
    "SESSION_TTL_SECONDS",
    "LOG_LEVEL",
]

# Older deployments carry the misspelled name
LEGACY_ALIASES = {"SUPABASE_URL": "SUPARBASE_URL"}

INTEGER_VARS = ["SMTP_PORT", "PORT"]
NUMBER_VARS = ["SESSION_TTL_SECONDS"]
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _env(name: str, default: str = "") -> str:
    value = os.getenv(name)
    if not value and name in LEGACY_ALIASES:
        value = os.getenv(LEGACY_ALIASES[name])
    return value or default


def _invalid_values() -> list[str]:
    invalid = [f"{var}={_env(var)!r}" for var in INTEGER_VARS if _env(var) and not _env(var).isdigit()]
    for var in NUMBER_VARS:
        try:
            float(_env(var, "0"))
        except ValueError:
            invalid.append(f"{var}={_env(var)!r}")
    if _env("LOG_LEVEL") and _env("LOG_LEVEL").upper() not in LOG_LEVELS:
        invalid.append(f"LOG_LEVEL={_env('LOG_LEVEL')!r}")
    return invalid


def validate_config() -> None:
    """Exit with a clear error if a required variable is missing or empty,
    or a numeric or log-level variable cannot be parsed.

    Logs a warning for every optional variable that is not set.
    """
    missing = [var for var in REQUIRED_VARS if not _env(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment environment.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    invalid = _invalid_values()
    if invalid:
        print(
            f"\nFATAL: Invalid environment variables:\n"
            f"  {', '.join(invalid)}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    supabase_url: str = ""
    supabase_key: str = ""
    clinic_id: str = ""
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_pass: str = ""
    notification_email: str = ""
    session_ttl_seconds: float = 7200.0
    log_level: str = "INFO"
    port: int = 8765

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            openai_api_key=_env("OPENAI_API_KEY"),
            openai_model=_env("OPENAI_MODEL", "gpt-4o-mini"),
            supabase_url=_env("SUPABASE_URL"),
            supabase_key=_env("SUPABASE_SERVICE_ROLE_KEY"),
            clinic_id=_env("CLINIC_ID"),
            smtp_host=_env("SMTP_HOST"),
            smtp_port=int(_env("SMTP_PORT", "587")),
            smtp_user=_env("SMTP_USER"),
            smtp_pass=_env("SMTP_PASS"),
            notification_email=_env("CLINIC_NOTIFICATION_EMAIL"),
            session_ttl_seconds=float(_env("SESSION_TTL_SECONDS", "7200")),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
            port=int(_env("PORT", "8765")),
        )
