"""
Application configuration.
Centralized settings loaded from environment variables.
"""
import os
from functools import lru_cache


class Settings:
    """Application settings."""

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./tiktok_dashboard.db")

    # Apify (TikTok scraper provider)
    APIFY_API_TOKEN: str = os.getenv("APIFY_API_TOKEN", "")
    APIFY_ACTOR_ID: str = os.getenv("APIFY_ACTOR_ID", "clockworks~free-tiktok-scraper")
    PROVIDER_TIMEOUT_SECONDS: float = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30"))

    # Fetch policy
    FETCH_COOLDOWN_MINUTES: int = int(os.getenv("FETCH_COOLDOWN_MINUTES", "5"))
    ACCOUNT_RESULTS_LIMIT: int = int(os.getenv("ACCOUNT_RESULTS_LIMIT", "20"))
    ACCOUNT_LOOKBACK_DAYS: int = int(os.getenv("ACCOUNT_LOOKBACK_DAYS", "365"))
    HASHTAG_RESULTS_LIMIT: int = int(os.getenv("HASHTAG_RESULTS_LIMIT", "21"))

    # Scheduler
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    SCHEDULER_INTERVAL_MINUTES: int = int(os.getenv("SCHEDULER_INTERVAL_MINUTES", "60"))

    # Auth
    JWT_SECRET: str = os.getenv("JWT_SECRET", "")
    JWT_EXPIRATION_DAYS: int = int(os.getenv("JWT_EXPIRATION_DAYS", "7"))

    def __init__(self):
        if not self.JWT_SECRET:
            import sys
            # Allow empty secret only in test mode
            if "pytest" not in sys.modules:
                raise RuntimeError(
                    "CRITICAL: JWT_SECRET environment variable is not set. "
                    "Refusing to start with an empty/default secret."
                )

    @property
    def cooldown_window_ms(self) -> int:
        return self.FETCH_COOLDOWN_MINUTES * 60 * 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
