from __future__ import annotations

import re
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lycaon.constants import DB_SCHEMA, DEFAULT_CHANNEL_PREFIX

# Load .env once at module import so every BaseSettings subclass sees it
load_dotenv()

_CHANNEL_PREFIX_RE = re.compile(r"^[a-z0-9_-]{1,20}$")


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings. Env vars prefixed with DATABASE_."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    name: str = "lycaon"
    schema_: str = Field(DB_SCHEMA, validation_alias="DATABASE_SCHEMA")
    pool_size: int = Field(5, ge=1, le=50)
    max_overflow: int = Field(10, ge=0, le=100)

    @field_validator("schema_")
    @classmethod
    def _validate_schema(cls, v: str) -> str:
        if v != DB_SCHEMA:
            msg = f"DATABASE_SCHEMA must be '{DB_SCHEMA}' (got '{v}')"
            raise ValueError(msg)
        return v


class SlackSettings(BaseSettings):
    """Slack app settings. Env vars prefixed with SLACK_."""

    model_config = SettingsConfigDict(env_prefix="SLACK_")

    bot_token: str = ""
    signing_secret: str = ""  # empty = request signature check disabled
    channel_prefix: str = DEFAULT_CHANNEL_PREFIX

    @field_validator("channel_prefix")
    @classmethod
    def _validate_channel_prefix(cls, v: str) -> str:
        if not _CHANNEL_PREFIX_RE.match(v):
            msg = (
                "SLACK_CHANNEL_PREFIX must be 1-20 chars of lowercase letters, "
                f"digits, '-' or '_' (got '{v}')"
            )
            raise ValueError(msg)
        return v


class IncidentSettings(BaseSettings):
    """Incident workflow settings. Env vars prefixed with INCIDENT_."""

    model_config = SettingsConfigDict(env_prefix="INCIDENT_")

    config_path: Path | None = None  # categories / severities / assets YAML
    frontend_url: str = ""  # empty = no Web UI bookmark
    initial_triage: bool = True  # new incidents start in triage unless overridden
    request_ttl_minutes: int = Field(30, ge=1, le=1440)

    @field_validator("frontend_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")


class OpenAISettings(BaseSettings):
    """OpenAI-compatible API settings for incident summaries. Env vars prefixed with OPENAI_."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = ""  # empty = summarization disabled
    model: str = "gpt-4o-mini"
    base_url: str | None = None
    timeout_s: float = Field(20.0, gt=0)
    max_retries: int = Field(2, ge=0, le=5)  # SDK-level retries are disabled


class DispatchSettings(BaseSettings):
    """Background dispatch settings. Env vars prefixed with DISPATCH_."""

    model_config = SettingsConfigDict(env_prefix="DISPATCH_")

    max_concurrency: int = Field(8, gt=0, le=256)
    drain_timeout_s: float = Field(30.0, gt=0)


class GatewaySettings(BaseSettings):
    """HTTP gateway settings. Env vars prefixed with GATEWAY_."""

    model_config = SettingsConfigDict(env_prefix="GATEWAY_")

    host: str = "0.0.0.0"
    port: int = 8080


class LogSettings(BaseSettings):
    """Logging settings. Env vars prefixed with LOG_."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    json_output: bool = True
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = v.upper()
        if upper not in allowed:
            msg = f"LOG_LEVEL must be one of {allowed} (got '{v}')"
            raise ValueError(msg)
        return upper


class Settings(BaseSettings):
    """Root settings composing all sub-configurations."""

    model_config = SettingsConfigDict(extra="ignore")

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    slack: SlackSettings = Field(default_factory=SlackSettings)
    incident: IncidentSettings = Field(default_factory=IncidentSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    log: LogSettings = Field(default_factory=LogSettings)


def get_settings() -> Settings:
    """Load and validate settings. Raises ValidationError on invalid values."""
    return Settings()
