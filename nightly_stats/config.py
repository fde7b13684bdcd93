"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables with .env file support.
"""
import getpass
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Result store
    DATABASE_URL: str = "sqlite:///./data/nightly_stats.db"
    DB_CONNECT_TIMEOUT_SECONDS: int = 30

    @field_validator('DATABASE_URL')
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Validate DATABASE_URL has an allowed scheme to prevent injection."""
        allowed_schemes = (
            'sqlite:///', 'postgresql://', 'mysql://', 'mysql+pymysql://',
            'mssql+pyodbc://', 'mssql+pymssql://'
        )
        if not v.startswith(allowed_schemes):
            raise ValueError(
                f'Invalid database URL scheme. Allowed schemes: {", ".join(allowed_schemes)}'
            )
        return v

    # Jenkins
    JENKINS_URL: str = "https://jenkins.example.com"
    JENKINS_API_TOKEN: str = ""
    JENKINS_BUILD_TOKEN: str = ""  # Remote trigger token passed as ?token=
    JENKINS_VERIFY_SSL: bool = True
    JENKINS_TRIGGER_TIMEOUT: float = 5.0
    JENKINS_REQUEST_TIMEOUT: float = 10.0

    # Trigger workflow timing
    TRIGGER_MAX_RETRIES: int = 5
    TRIGGER_RETRY_DELAY: float = 10.0
    RUNNING_POLL_SETTLE_DELAY: float = 10.0
    RUNNING_POLL_INTERVAL: float = 1.5
    RUNNING_POLL_EXTRA_ATTEMPTS: int = 3

    # Page verification timing
    PAGE_ERROR_DISPLAY_SECONDS: float = 2.0
    PAGE_SETTLE_INITIAL_INTERVAL: float = 0.25
    PAGE_SETTLE_MAX_WAIT: float = 2.0
    PAGE_LOAD_TIMEOUT_SECONDS: float = 30.0
    HEADLESS_VERIFICATION: bool = False

    # Finished background workflows stay queryable this long
    WORKFLOW_RETENTION_MINUTES: int = 60

    # Comma-separated override for alternate browser install locations
    ALTERNATE_BROWSER_PATHS: str = ""

    # Operator identity (defaults to the OS login name)
    OPERATOR_NAME: str = ""

    # Application
    DEBUG: bool = False
    HOST: str = "127.0.0.1"
    PORT: int = 8000

    # CORS
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8080"

    # Security
    API_KEY: str = ""  # Optional API key for authentication

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 100

    @field_validator('JENKINS_URL')
    @classmethod
    def strip_jenkins_url(cls, v: str) -> str:
        """Normalize Jenkins URL so paths can be appended with a single slash."""
        if v and not (v.startswith('http://') or v.startswith('https://')):
            raise ValueError('JENKINS_URL must start with http:// or https://')
        return v.rstrip('/')

    @property
    def alternate_browser_paths(self) -> List[str]:
        """Alternate browser locations configured via ALTERNATE_BROWSER_PATHS."""
        return [p.strip() for p in self.ALTERNATE_BROWSER_PATHS.split(',') if p.strip()]

    @property
    def operator_name(self) -> str:
        """Operator identity sent to Jenkins and written to ModifyBy."""
        if self.OPERATOR_NAME:
            return self.OPERATOR_NAME
        try:
            return getpass.getuser()
        except (KeyError, OSError):
            return "unknown"

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra='ignore'  # Allow extra fields in .env without validation errors
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.

    Returns:
        Settings instance
    """
    return Settings()
