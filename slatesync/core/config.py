"""
Application configuration with environment-specific secrets management.

Supported environment files (loaded in order of precedence):
1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
2. .env (fallback)

Required secrets for production:
- DATABASE_URL
- THE_ODDS_API_KEY
"""
import os
import logging
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# Project root directory (2 levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

DEFAULT_DATABASE_URL = "sqlite:///./slatesync.db"

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment-specific configuration."""

    # Environment
    ENVIRONMENT: Literal["development", "production", "test"] = "development"

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    APP_NAME: str = "slatesync"

    # Database
    DATABASE_URL: str = DEFAULT_DATABASE_URL
    SQL_ECHO: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Sports handled by the scheduled sync
    SYNC_SPORTS: str = "nba,nfl,mlb,nhl"

    # The Odds API
    THE_ODDS_API_KEY: str = ""
    ODDS_API_BASE_URL: str = "https://api.the-odds-api.com/v4"
    ODDS_API_REGIONS: str = "us"
    ODDS_API_BOOKMAKERS: str = ""  # comma-separated, empty = all books in region
    ODDS_API_PROP_MARKETS: str = ""  # comma-separated override of per-sport defaults

    # Odds API call budget
    ODDS_API_MONTHLY_LIMIT: int = 20000
    ODDS_API_DAILY_LIMIT: int = 666
    ODDS_API_HOURLY_LIMIT: int = 60
    ODDS_API_MIN_INTERVAL_SECONDS: float = 1.0

    # ESPN
    ESPN_BASE_URL: str = "https://site.api.espn.com/apis/site/v2/sports"

    # Upstream HTTP behaviour
    HTTP_TIMEOUT: float = 30.0
    HTTP_MAX_RETRIES: int = 3
    HTTP_RETRY_DEADLINE: float = 60.0
    HTTP_BACKOFF_MULTIPLIER: float = 1.0
    HTTP_BACKOFF_MIN: float = 2.0
    HTTP_BACKOFF_MAX: float = 10.0
    CIRCUIT_FAIL_MAX: int = 5
    CIRCUIT_RESET_TIMEOUT: int = 60

    # Time normalization
    MARKET_TIMEZONE: str = "America/New_York"
    MIDNIGHT_DEFECT_SOURCES: str = ""  # e.g. "espn:nhl,espn:nfl"

    # Entity resolution
    GAME_MATCH_WINDOW_DAYS: int = 3
    CONTAINMENT_MIN_LENGTH: int = 4

    # Prop cache
    PROP_CACHE_TTL_MINUTES: int = 30
    PROP_EXPIRE_BEFORE_GAME_MINUTES: int = 60
    PROP_STALE_GRACE_HOURS: int = 48

    # Validation
    VALIDATION_FINAL_FALLBACK_HOURS: int = 24
    VALIDATION_MAX_REVIEW_ATTEMPTS: int = 5
    VALIDATION_BATCH_SIZE: int = 500

    @property
    def sync_sports(self) -> list[str]:
        return [s.strip().lower() for s in self.SYNC_SPORTS.split(",") if s.strip()]

    @property
    def midnight_defect_sources(self) -> set[str]:
        """Provider/sport pairs ("espn:nhl") known to truncate start times to 00:00 UTC."""
        return {s.strip().lower() for s in self.MIDNIGHT_DEFECT_SOURCES.split(",") if s.strip()}

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.ENVIRONMENT == "development"

    def validate_required_secrets(self) -> list[str]:
        """
        Validate that required secrets are set for the current environment.

        Returns:
            List of missing secret names (empty if all present)
        """
        missing = []

        if self.is_production():
            if not self.DATABASE_URL or self.DATABASE_URL == DEFAULT_DATABASE_URL:
                missing.append("DATABASE_URL")
            if not self.THE_ODDS_API_KEY:
                missing.append("THE_ODDS_API_KEY")

        return missing


def _load_env_file() -> Path:
    """
    Pick the environment file based on the ENVIRONMENT variable.

    Loads in order of precedence:
    1. .env.{ENVIRONMENT} (e.g., .env.production, .env.development)
    2. .env (fallback)
    """
    environment = os.getenv("ENVIRONMENT", "development")

    env_file = PROJECT_ROOT / f".env.{environment}"
    if env_file.exists():
        logger.info(f"Loading environment from {env_file.name}")
        return env_file

    default_env = PROJECT_ROOT / ".env"
    if default_env.exists():
        logger.info(f"Loading environment from .env (environment: {environment})")
    return default_env


_env_file = _load_env_file()


class _SettingsWithEnvFile(Settings):
    model_config = ConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


settings = _SettingsWithEnvFile()

# Validate secrets on startup
missing_secrets = settings.validate_required_secrets()
if missing_secrets:
    logger.warning(f"Missing required secrets for {settings.ENVIRONMENT}: {', '.join(missing_secrets)}")
    if settings.is_production():
        raise ValueError(
            f"Cannot start in production with missing secrets: {', '.join(missing_secrets)}. "
            f"Please set these environment variables in .env.production"
        )
