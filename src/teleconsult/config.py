"""Startup configuration.

Reads settings from the environment (``.env`` is loaded by the app) and
checks that required variables are set before the server accepts
connections, so a missing key is a clear startup failure rather than a
failed join mid-consultation.
"""

import logging
import os
import sys
from dataclasses import dataclass

logger = logging.getLogger(__name__)

REQUIRED_VARS = [
    "MONGO_URI",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_API_KEY_SID",
    "TWILIO_API_KEY_SECRET",
]

OPTIONAL_VARS = [
    "PAYSTACK_SECRET_KEY",
    "PUBLIC_BASE_URL",
    "MONGO_DB_NAME",
    "LOBBY_TICK_SECONDS",
    "TWILIO_TOKEN_TTL",
    "LOG_LEVEL",
]


@dataclass
class Settings:
    mongo_uri: str = ""
    mongo_db_name: str = ""
    twilio_account_sid: str = ""
    twilio_api_key_sid: str = ""
    twilio_api_key_secret: str = ""
    twilio_token_ttl: int = 3600
    paystack_secret_key: str = ""
    public_base_url: str = ""
    lobby_tick_seconds: float = 1.0
    log_level: str = "INFO"


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def load_settings() -> Settings:
    return Settings(
        mongo_uri=os.getenv("MONGO_URI", ""),
        mongo_db_name=os.getenv("MONGO_DB_NAME", ""),
        twilio_account_sid=os.getenv("TWILIO_ACCOUNT_SID", ""),
        twilio_api_key_sid=os.getenv("TWILIO_API_KEY_SID", ""),
        twilio_api_key_secret=os.getenv("TWILIO_API_KEY_SECRET", ""),
        twilio_token_ttl=int(_float_env("TWILIO_TOKEN_TTL", 3600)),
        paystack_secret_key=os.getenv("PAYSTACK_SECRET_KEY", ""),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "").rstrip("/"),
        lobby_tick_seconds=_float_env("LOBBY_TICK_SECONDS", 1.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )


def validate_config() -> None:
    """Validate environment variables at startup.

    Exits the process with a clear error if any required variable is missing
    or empty.  Logs warnings for missing optional variables.
    """
    missing = [var for var in REQUIRED_VARS if not os.getenv(var)]

    if missing:
        print(
            f"\nFATAL: Missing required environment variables:\n"
            f"  {', '.join(missing)}\n"
            f"\nSet them in .env (local) or in the deployment's secrets.\n",
            file=sys.stderr,
        )
        sys.exit(1)

    for var in OPTIONAL_VARS:
        if not os.getenv(var):
            logger.warning("Optional env var %s is not set", var)
