"""
Centralized configuration management for the Energy Intel pipeline services.
Uses Pydantic Settings for validation and type safety.
"""

import json
from functools import lru_cache
from typing import Annotated, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class AppBaseSettings(BaseSettings):
    """Base settings with shared configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


class DatabaseSettings(AppBaseSettings):
    """Database configuration settings."""

    database_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "POSTGRES_URL"),
    )
    postgres_user: str = Field(
        default="postgres",
        validation_alias="POSTGRES_USER",
    )
    postgres_password: str = Field(
        default="",
        validation_alias="POSTGRES_PASSWORD",
    )
    postgres_db: str = Field(
        default="energy_intel",
        validation_alias="POSTGRES_DB",
    )
    postgres_host: str = Field(
        default="postgres",
        validation_alias="POSTGRES_HOST",
    )
    postgres_port: int = Field(
        default=5432,
        validation_alias="POSTGRES_PORT",
    )
    echo: bool = Field(
        default=False,
        validation_alias="DB_ECHO",
    )

    @model_validator(mode="after")
    def build_database_url(self):
        """Assemble DATABASE_URL from the POSTGRES_* parts when it is not given."""
        if not self.database_url:
            self.database_url = (
                f"postgresql://{self.postgres_user}:{self.postgres_password}"
                f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
            )
        return self


class OpenAISettings(AppBaseSettings):
    """OpenAI API configuration settings."""

    api_key: Optional[str] = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
    )
    model: str = Field(
        default="gpt-4o-mini",
        validation_alias="OPENAI_MODEL",
    )
    max_tokens: int = Field(
        default=200,
        validation_alias="OPENAI_MAX_TOKENS",
    )
    temperature: float = Field(
        default=0.3,
        validation_alias="OPENAI_TEMPERATURE",
    )
    timeout: float = Field(
        default=30.0,
        validation_alias="OPENAI_TIMEOUT",
    )


class PipelineSettings(AppBaseSettings):
    """Pipeline behaviour: sources, pacing, time budgets and trigger auth."""

    feed_registry_path: Optional[str] = Field(
        default=None,
        validation_alias="FEED_REGISTRY_PATH",
    )
    category_rules_path: Optional[str] = Field(
        default=None,
        validation_alias="CATEGORY_RULES_PATH",
    )
    feed_timeout: float = Field(
        default=15.0,
        validation_alias="FEED_TIMEOUT",
    )
    feed_user_agent: str = Field(
        default="Mozilla/5.0 (compatible; EnergyIntelBot/1.0; +https://github.com/energy-intel)",
        validation_alias="FEED_USER_AGENT",
    )
    summary_delay: float = Field(
        default=0.1,
        validation_alias="SUMMARY_DELAY",
    )
    summary_content_chars: int = Field(
        default=2000,
        validation_alias="SUMMARY_CONTENT_CHARS",
    )
    fallback_summary_chars: int = Field(
        default=200,
        validation_alias="FALLBACK_SUMMARY_CHARS",
    )
    image_timeout: float = Field(
        default=10.0,
        validation_alias="IMAGE_TIMEOUT",
    )
    image_delay: float = Field(
        default=0.3,
        validation_alias="IMAGE_DELAY",
    )
    image_batch_limit: int = Field(
        default=15,
        validation_alias="IMAGE_BATCH_LIMIT",
    )
    image_max_html_chars: int = Field(
        default=100_000,
        validation_alias="IMAGE_MAX_HTML_CHARS",
    )
    archive_policy: Annotated[Dict[str, int], NoDecode] = Field(
        default={"finance": 6},
        validation_alias="ARCHIVE_POLICY",
    )
    execution_mode: str = Field(
        default="background",
        validation_alias="EXECUTION_MODE",
    )
    background_time_budget: float = Field(
        default=280.0,
        validation_alias="BACKGROUND_TIME_BUDGET",
    )
    inline_time_budget: float = Field(
        default=55.0,
        validation_alias="INLINE_TIME_BUDGET",
    )
    run_lease_seconds: int = Field(
        default=0,
        validation_alias="RUN_LEASE_SECONDS",
    )
    job_name: str = Field(
        default="orchestrator",
        validation_alias="JOB_NAME",
    )
    revalidate_url: Optional[str] = Field(
        default=None,
        validation_alias="REVALIDATE_URL",
    )
    revalidate_paths: Annotated[List[str], NoDecode] = Field(
        default=["/", "/about", "/finance"],
        validation_alias="REVALIDATE_PATHS",
    )
    cron_secret: Optional[str] = Field(
        default=None,
        validation_alias="CRON_SECRET",
    )
    max_retries: int = Field(
        default=2,
        validation_alias="MAX_RETRIES",
    )
    retry_delay: float = Field(
        default=1.0,
        validation_alias="RETRY_DELAY",
    )
    retry_backoff_factor: float = Field(
        default=2.0,
        validation_alias="RETRY_BACKOFF_FACTOR",
    )

    @field_validator("revalidate_paths", mode="before")
    @classmethod
    def parse_list_from_string(cls, v):
        """Parse comma-separated string into list if needed."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @field_validator("archive_policy", mode="before")
    @classmethod
    def parse_archive_policy(cls, v):
        """Accept "finance=6,policy=50" as well as a JSON object."""
        if isinstance(v, str) and v.strip().startswith("{"):
            return json.loads(v)
        if isinstance(v, str):
            policy = {}
            for pair in v.split(","):
                if not pair.strip():
                    continue
                segment, _, keep = pair.partition("=")
                policy[segment.strip()] = int(keep)
            return policy
        return v

    @field_validator("execution_mode")
    @classmethod
    def validate_execution_mode(cls, v):
        mode = v.lower().strip()
        if mode not in ("background", "inline"):
            raise ValueError("EXECUTION_MODE must be 'background' or 'inline'")
        return mode

    @field_validator("revalidate_url")
    @classmethod
    def validate_revalidate_url(cls, v):
        if not v:
            return None
        parsed = urlparse(v)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"REVALIDATE_URL must be an HTTP(S) URL: {v}")
        return v


class LoggingSettings(AppBaseSettings):
    """Logging configuration settings."""

    level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    include_correlation_id: bool = Field(
        default=True,
        validation_alias="LOG_INCLUDE_CORRELATION_ID",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="JSON_LOGS",
    )


class Settings(AppBaseSettings):
    """Main settings class that combines all configuration sections."""

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    service_name: str = Field(
        default="energyintel",
        validation_alias="SERVICE_NAME",
    )
    environment: str = Field(
        default="development",
        validation_alias="ENVIRONMENT",
    )
    version: str = Field(
        default="1.0.0",
        validation_alias="SERVICE_VERSION",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
