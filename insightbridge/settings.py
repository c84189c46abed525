"""
Environment configuration.

Values are read once at import from the process environment, after loading
the project-level .env file.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Either name is accepted; the Anthropic SDK itself only looks at ANTHROPIC_API_KEY.
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_RETRY_DELAY_SECONDS = float(os.getenv("LLM_RETRY_DELAY_SECONDS", "1.0"))

SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", str(2 * 60 * 60)))
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", str(60 * 60)))

INSIGHT_STORE_BACKEND = os.getenv("INSIGHT_STORE_BACKEND", "memory")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./insightbridge.db")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]


def is_production() -> bool:
    return APP_ENV == "production"


def validate_env() -> list[str]:
    """
    Check required settings. Returns the list of problems found.

    In production any problem is fatal; elsewhere they are logged as warnings
    so the API can still start with limited functionality.
    """
    errors: list[str] = []

    if not ANTHROPIC_API_KEY or not ANTHROPIC_API_KEY.startswith("sk-ant-"):
        errors.append("ANTHROPIC_API_KEY (or CLAUDE_API_KEY) must be set and start with 'sk-ant-'")

    if INSIGHT_STORE_BACKEND not in ("memory", "sql"):
        errors.append(f"INSIGHT_STORE_BACKEND must be 'memory' or 'sql', got {INSIGHT_STORE_BACKEND!r}")

    if is_production() and ALLOWED_ORIGINS == ["http://localhost:5173"]:
        logger.warning("ALLOWED_ORIGINS is set to localhost. Update for production.")

    if errors:
        for err in errors:
            logger.warning("Environment problem: %s", err)
        if is_production():
            raise RuntimeError("Environment validation failed: " + "; ".join(errors))
    else:
        logger.info("Environment variables validated successfully")

    return errors


def _mask(value: str | None) -> str:
    if not value:
        return "<not set>"
    if len(value) <= 10:
        return "***"
    return value[:7] + "..." + value[-3:]


def env_summary() -> dict:
    """Configuration snapshot that is safe to log."""
    return {
        "APP_ENV": APP_ENV,
        "LOG_LEVEL": LOG_LEVEL,
        "ANTHROPIC_API_KEY": _mask(ANTHROPIC_API_KEY),
        "CLAUDE_MODEL": CLAUDE_MODEL,
        "INSIGHT_STORE_BACKEND": INSIGHT_STORE_BACKEND,
        "DATABASE_URL": DATABASE_URL if INSIGHT_STORE_BACKEND == "sql" else "<unused>",
        "ALLOWED_ORIGINS": ALLOWED_ORIGINS,
        "SESSION_TTL_SECONDS": SESSION_TTL_SECONDS,
    }
