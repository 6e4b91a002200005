"""
Configuration management using Pydantic Settings.
Reads from environment variables.
"""

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    model_config = ConfigDict(env_file=".env", case_sensitive=False)

    # Application Configuration
    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Echo every audit_log() message on the audittrail.echo logger
    debug_echo: bool = Field(default=False, alias="AUDIT_DEBUG_ECHO")

    # Sink Configuration
    sink_backend: str = Field(default="logging", alias="AUDIT_SINK")
    sink_path: str = Field(default="logs/audit.jsonl", alias="AUDIT_SINK_PATH")
    queue_size: int = Field(default=1000, alias="AUDIT_QUEUE_SIZE")
    shutdown_timeout: float = Field(default=5.0, alias="AUDIT_SHUTDOWN_TIMEOUT")

    # Circuit Breaker Configuration
    circuit_breaker_failure_threshold: int = Field(
        default=5, alias="CIRCUIT_BREAKER_FAILURE_THRESHOLD"
    )
    circuit_breaker_timeout: int = Field(default=60, alias="CIRCUIT_BREAKER_TIMEOUT")


# Global settings instance
settings = Settings()
