"""Tests for lycaon.config.settings."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from lycaon.config.settings import (
    DatabaseSettings,
    DispatchSettings,
    IncidentSettings,
    LogSettings,
    OpenAISettings,
    Settings,
    SlackSettings,
)


class TestDatabaseSettings:
    def test_defaults(self) -> None:
        s = DatabaseSettings()
        assert s.name == "lycaon"
        assert s.schema_ == "lycaon"

    def test_other_schema_rejected(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_SCHEMA", "public")
        with pytest.raises(ValidationError, match="DATABASE_SCHEMA must be 'lycaon'"):
            DatabaseSettings()

    def test_pool_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("DATABASE_POOL_SIZE", "12")
        s = DatabaseSettings()
        assert s.pool_size == 12
        assert s.max_overflow == 10

    def test_pool_size_positive(self) -> None:
        with pytest.raises(ValidationError):
            DatabaseSettings(pool_size=0)


class TestSlackSettings:
    def test_defaults(self) -> None:
        s = SlackSettings(bot_token="", signing_secret="")
        assert s.channel_prefix == "inc"

    def test_env_prefix(self, monkeypatch) -> None:
        monkeypatch.setenv("SLACK_BOT_TOKEN", "xoxb-test")
        monkeypatch.setenv("SLACK_CHANNEL_PREFIX", "sev")
        s = SlackSettings()
        assert s.bot_token == "xoxb-test"
        assert s.channel_prefix == "sev"

    @pytest.mark.parametrize("prefix", ["", "INC", "has space", "x" * 21])
    def test_invalid_prefix_rejected(self, prefix: str) -> None:
        with pytest.raises(ValidationError, match="SLACK_CHANNEL_PREFIX"):
            SlackSettings(channel_prefix=prefix)


class TestIncidentSettings:
    def test_defaults(self) -> None:
        s = IncidentSettings(frontend_url="")
        assert s.initial_triage is True
        assert s.request_ttl_minutes == 30

    def test_frontend_trailing_slash_stripped(self) -> None:
        s = IncidentSettings(frontend_url=" https://lycaon.example/ ")
        assert s.frontend_url == "https://lycaon.example"

    def test_ttl_bounds(self) -> None:
        with pytest.raises(ValidationError):
            IncidentSettings(request_ttl_minutes=0)

    def test_initial_triage_from_env(self, monkeypatch) -> None:
        monkeypatch.setenv("INCIDENT_INITIAL_TRIAGE", "false")
        assert IncidentSettings().initial_triage is False


class TestOtherSettings:
    def test_openai_disabled_by_default(self, monkeypatch) -> None:
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        assert OpenAISettings().api_key == ""

    def test_openai_retry_bounds(self) -> None:
        assert OpenAISettings().max_retries == 2
        with pytest.raises(ValidationError):
            OpenAISettings(max_retries=9)
        with pytest.raises(ValidationError):
            OpenAISettings(timeout_s=0)

    def test_dispatch_concurrency_positive(self) -> None:
        with pytest.raises(ValidationError):
            DispatchSettings(max_concurrency=0)

    def test_log_level_normalized(self) -> None:
        assert LogSettings(level="debug").level == "DEBUG"

    def test_log_level_invalid(self) -> None:
        with pytest.raises(ValidationError, match="LOG_LEVEL must be one of"):
            LogSettings(level="verbose")

    def test_root_composes_sections(self) -> None:
        s = Settings()
        assert s.gateway.port == 8080
        assert s.dispatch.drain_timeout_s == 30.0
