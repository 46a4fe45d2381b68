"""
Application settings loaded from environment variables.

Values are read once at import time. Invalid values fall back to safe
defaults with a warning, the same way the JWT settings in auth.security do.
"""

import logging
import os

logger = logging.getLogger(__name__)


ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
if LOG_LEVEL not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
    logger.warning(f"⚠️  Unknown LOG_LEVEL={LOG_LEVEL}. Using INFO.")
    LOG_LEVEL = "INFO"

DATABASE_URL = os.environ.get("DATABASE_URL")

# Explicit store selection. Without a database URL the in-memory store is used,
# which keeps local demos working without Postgres credentials.
STORE_BACKEND = os.environ.get("STORE_BACKEND", "sql" if DATABASE_URL else "memory").lower()
if STORE_BACKEND not in ("sql", "memory"):
    logger.warning(f"⚠️  Unsupported STORE_BACKEND={STORE_BACKEND}. Using 'memory'.")
    STORE_BACKEND = "memory"

if not DATABASE_URL:
    DATABASE_URL = "sqlite:///./task_tracker.db"

SEED_DEMO_DATA = os.environ.get("SEED_DEMO_DATA", "false").lower() in ("1", "true", "yes")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.environ.get(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if origin.strip()
]

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")


def is_production_like() -> bool:
    """True when ENVIRONMENT is production or staging."""
    return ENVIRONMENT in ("production", "staging")


# JWT settings
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY")

JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256").upper()
JWT_ALGORITHMS = ("HS256", "HS384", "HS512")
if JWT_ALGORITHM not in JWT_ALGORITHMS:
    logger.warning(f"⚠️  JWT_ALGORITHM={JWT_ALGORITHM} is not one of {', '.join(JWT_ALGORITHMS)}. Using HS256.")
    JWT_ALGORITHM = "HS256"

DEFAULT_TOKEN_MINUTES = 60
_raw_minutes = os.environ.get("ACCESS_TOKEN_EXPIRE_MINUTES", str(DEFAULT_TOKEN_MINUTES))
try:
    ACCESS_TOKEN_EXPIRE_MINUTES = int(_raw_minutes)
except ValueError:
    logger.warning(f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={_raw_minutes!r} is not an integer. Using {DEFAULT_TOKEN_MINUTES}.")
    ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_TOKEN_MINUTES
# Between one minute and one day
if not 1 <= ACCESS_TOKEN_EXPIRE_MINUTES <= 1440:
    logger.warning(f"⚠️  ACCESS_TOKEN_EXPIRE_MINUTES={ACCESS_TOKEN_EXPIRE_MINUTES} must be within 1-1440. Using {DEFAULT_TOKEN_MINUTES}.")
    ACCESS_TOKEN_EXPIRE_MINUTES = DEFAULT_TOKEN_MINUTES
