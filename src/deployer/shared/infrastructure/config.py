"""
Application configuration using Pydantic Settings.

Loads configuration from environment variables (prefix ``DEPLOY_``) and .env file.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="deployer-core", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")
    log_redaction_enabled: bool = Field(default=True, description="Mask secrets in logs")

    # Engine
    parallelism: int = Field(default=4, description="Max concurrent targets per stage")
    command_timeout: float = Field(default=600.0, description="Per-command timeout in seconds")
    command_kill_grace: float = Field(default=5.0, description="Seconds between SIGTERM and SIGKILL for a stopped command")

    # Transport retries
    transport_max_attempts: int = Field(default=3, description="Connection attempts before a target fails")
    transport_retry_delay: float = Field(default=1.0, description="Initial delay between connection attempts")

    # Files
    deploy_log_path: str = Field(default=".deploy/deploy.log", description="Append-only deploy log")
    checkout_dir: str = Field(default=".deploy/checkouts", description="Where source checkouts are placed")

    # Secure shell
    ssh_binary: str = Field(default="ssh", description="ssh client executable")
    scp_binary: str = Field(default="scp", description="scp client executable")
    ssh_connect_timeout: int = Field(default=10, description="ssh ConnectTimeout in seconds")
    ssh_strict_host_key_checking: str = Field(
        default="accept-new",
        description="ssh StrictHostKeyChecking value (yes/no/accept-new)",
    )

    @field_validator("parallelism", "transport_max_attempts")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env.lower() == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"


# Global settings instance
settings = Settings()
