"""Runtime settings for the SparkLearn API, read from environment variables.

Variable                Default                         Notes
----------------------  ------------------------------  -----------------------------------
DATABASE_URL            sqlite:///data/sparklearn.db    any SQLAlchemy URL
ENVIRONMENT             development                     production switches to JSON logs
LOG_LEVEL               (empty)                         empty = INFO in production, else DEBUG
SECRET_KEY              dev-secret-key-...              signs the session middleware cookie
COOKIE_SECURE           false                           set true behind HTTPS
COOKIE_MAX_AGE          31536000                        anonymous session lifetime (seconds)
GEMINI_API_KEY          (empty)                         empty = placeholder content only
LLM_MODEL               gemini-2.5-flash
LLM_MAX_RETRIES         3                               retries on HTTP 429 (2s, 4s, 8s)
STATS_TIMEZONE          UTC                             IANA name; midnight splits streak days
RATE_LIMIT_ENABLED      true                            per-IP limits via slowapi

Usage:
    >>> from app.config import settings
    >>> settings.STATS_TIMEZONE
    'UTC'
"""
import os


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() == "true"


class Settings:
    """Settings snapshot taken at import time."""

    # Storage
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///data/sparklearn.db")

    # Deployment
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "")
    SECRET_KEY: str = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")

    # Anonymous session cookie
    COOKIE_SECURE: bool = _env_flag("COOKIE_SECURE", "false")
    COOKIE_HTTPONLY: bool = True
    COOKIE_SAMESITE: str = "lax"
    COOKIE_MAX_AGE: int = int(os.getenv("COOKIE_MAX_AGE", str(365 * 24 * 60 * 60)))

    # Content generation
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gemini-2.5-flash")
    LLM_MAX_RETRIES: int = int(os.getenv("LLM_MAX_RETRIES", "3"))

    # Dashboard statistics
    STATS_TIMEZONE: str = os.getenv("STATS_TIMEZONE", "UTC")

    RATE_LIMIT_ENABLED: bool = _env_flag("RATE_LIMIT_ENABLED", "true")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"


settings = Settings()
