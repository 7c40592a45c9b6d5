"""Tests for connection URL building in lycaon.storage.database."""

from __future__ import annotations

from lycaon.config.settings import DatabaseSettings
from lycaon.storage.database import database_url


def _settings(**overrides) -> DatabaseSettings:
    fields = {"host": "db", "port": 5433, "user": "svc", "password": "", "name": "lycaon_x"}
    fields.update(overrides)
    return DatabaseSettings(**fields)


def test_asyncpg_by_default() -> None:
    url = database_url(_settings(password="secret"))
    assert url.drivername == "postgresql+asyncpg"
    assert url.render_as_string(hide_password=False) == (
        "postgresql+asyncpg://svc:secret@db:5433/lycaon_x"
    )


def test_sync_driver_for_migrations() -> None:
    assert database_url(_settings(), driver="psycopg").drivername == "postgresql+psycopg"


def test_password_special_characters_escaped() -> None:
    url = database_url(_settings(password="p@ss/word"))
    assert url.password == "p@ss/word"
    assert "p%40ss%2Fword@db" in url.render_as_string(hide_password=False)


def test_empty_password_omitted() -> None:
    url = database_url(_settings())
    assert url.password is None
    assert url.render_as_string(hide_password=False) == "postgresql+asyncpg://svc@db:5433/lycaon_x"
