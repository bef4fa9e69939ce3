"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Read from environment variables (case-insensitive) and an optional
    ``.env`` file. Services never read this object directly; the
    container passes the values they need.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./docsynth.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(default=5, description="Number of persistent database connections")
    db_max_overflow: int = Field(default=10, description="Extra connections allowed during bursts")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection")
    db_pool_recycle: int = Field(default=1800, description="Seconds before a connection is recycled")

    # GitHub
    github_webhook_secret: str = Field(
        default="",
        description="GitHub webhook secret for HMAC signature verification"
    )
    github_token: str = Field(
        default="",
        description="Token used for GitHub REST calls (installation or personal token)"
    )
    github_api_url: str = Field(
        default="https://api.github.com",
        description="GitHub REST API base URL"
    )
    github_timeout: float = Field(default=30.0, description="GitHub request timeout in seconds")

    # LLM provider (LiteLLM model string, e.g. "anthropic/claude-3-5-sonnet-latest").
    # Empty string = fallback mode, every stage uses its deterministic result.
    llm_model: str = Field(default="", description="LiteLLM model for generation (empty = fallback)")
    llm_api_key: str = Field(default="", description="API key for the LLM provider")
    llm_api_base: str = Field(default="", description="Base URL for the LLM provider (optional)")
    llm_timeout: float = Field(default=120.0, description="Seconds before an LLM call is abandoned")
    llm_max_tokens: int = Field(default=4096, description="Default completion budget")
    llm_failure_threshold: int = Field(
        default=3,
        description="Consecutive LLM failures before the circuit opens"
    )
    llm_cooldown_seconds: float = Field(
        default=60.0,
        description="Seconds the LLM circuit stays open before a probe"
    )

    # Ticket / chat integrations (each disabled while its credentials are empty)
    jira_base_url: str = Field(default="", description="Jira Cloud base URL")
    jira_email: str = Field(default="", description="Jira account email")
    jira_api_token: str = Field(default="", description="Jira API token")
    linear_api_key: str = Field(default="", description="Linear API key")
    slack_bot_token: str = Field(default="", description="Slack token with search:read scope")

    # Job queue
    queue_max_attempts: int = Field(default=3, description="Attempts per job before it is failed")
    queue_backoff_ms: int = Field(default=1000, description="Base delay for exponential backoff")
    queue_lock_seconds: int = Field(
        default=1800,
        description="Seconds an active job may run before it is considered stalled"
    )
    queue_poll_interval: float = Field(default=1.0, description="Seconds between empty polls")
    llm_stage_max_jobs: int = Field(
        default=10,
        description="Jobs admitted into LLM-calling stages per window"
    )
    llm_stage_window_seconds: int = Field(default=60, description="Admission window length")

    # Self-healing
    drift_scan_interval: int = Field(
        default=24 * 60 * 60,
        description="Seconds between scheduled drift scans of every repository"
    )

    # Rate Limiting (HTTP API)
    rate_limit_per_minute: int = Field(
        default=60,
        description="Maximum requests per client per minute"
    )
    trigger_limit_per_minute: int = Field(
        default=10,
        description="Manual pipeline triggers per user/org/IP per minute"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """Get CORS origins as a list, rejecting wildcards."""
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]
        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )
        return origins

    @property
    def llm_enabled(self) -> bool:
        return bool(self.llm_model)

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('json', 'text'):
            raise ValueError("Invalid log format. Must be 'json' or 'text'")
        return v_lower

    @field_validator('queue_max_attempts', 'llm_stage_max_jobs')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def validate_production_config(self) -> None:
        """Fail startup in production when security-critical settings are missing.

        Raises:
            ConfigurationError: If production config is insecure.
        """
        errors: list[str] = []

        if not self.github_webhook_secret:
            errors.append(
                "GITHUB_WEBHOOK_SECRET is empty. "
                "Webhook signature verification must be enabled in production."
            )

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is insecure:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
