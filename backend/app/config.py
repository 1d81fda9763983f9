"""Application configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    APP_NAME: str = "Workflow Automation Engine"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, production

    # Execution defaults (used when the construction config omits them)
    MAX_EXECUTION_TIME_MS: int = 300_000
    ENABLE_SCHEDULING: bool = True
    RETRY_MAX_RETRIES: int = 3
    RETRY_BACKOFF_MULTIPLIER: float = 2.0
    RETRY_INITIAL_DELAY_MS: int = 1000
    LOOP_MAX_ITERATIONS: int = 100
    DEFAULT_DELAY_MS: int = 1000
    MAX_STEP_DEPTH: int = 200

    # Built-in actions
    HTTP_ACTION_TIMEOUT: float = 30.0
    HTTP_ACTION_RATE_LIMIT: int = 120  # requests per minute per host
    HTTP_ACTION_MAX_RETRIES: int = 2
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USER: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_FROM_ADDRESS: str = "workflows@localhost"
    SMTP_USE_TLS: bool = True
    SLACK_WEBHOOK_URL: str = ""
    FILE_ACTION_ROOT: str = "./storage"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    class Config:
        """Pydantic config."""

        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings.

    Uses caching to ensure settings are loaded only once.

    Returns:
        Settings object with all configuration values
    """
    return Settings()
