"""Application settings loaded from the environment (prefix ``HTTPFLOW_``)."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from httpflow.core.exceptions import RetryConfig


class Settings(BaseSettings):
    """Runtime configuration for lifecycle machines and telemetry."""

    model_config = SettingsConfigDict(
        env_prefix="HTTPFLOW_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    APP_NAME: str = "httpflow"
    ENVIRONMENT: str = "development"

    # Lifecycle machine defaults
    MACHINE_ID: str = "httpClient"
    MAX_ATTEMPTS: int = Field(default=1, ge=1)
    DISPATCH_TIMEOUT_S: float = Field(default=30.0, gt=0)

    # Automatic retry back-off
    RETRY_INITIAL_DELAY: float = Field(default=0.5, ge=0)
    RETRY_MAX_DELAY: float = Field(default=10.0, ge=0)
    RETRY_JITTER: bool = True

    # Telemetry
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool | None = None
    TRACING_ENABLED: bool = False
    TRACING_EXPORTER: str = "console"

    @field_validator("LOG_LEVEL")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    def retry_config(self) -> RetryConfig:
        """Back-off settings for ``RequestLifecycleMachine.run``."""
        return RetryConfig(
            max_attempts=self.MAX_ATTEMPTS,
            initial_delay=self.RETRY_INITIAL_DELAY,
            max_delay=self.RETRY_MAX_DELAY,
            jitter=self.RETRY_JITTER,
        )


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
