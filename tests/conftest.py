"""Shared pytest fixtures for lycaon tests.

Unit tests run against MemoryRepository and FakeSlackClient.

Provides containerized PostgreSQL for integration tests via two modes:
1. TEST_DATABASE_* env vars present → connect to external PG (CI scenario)
2. Otherwise → testcontainers auto-starts a temporary PG container (local dev)

Safety: refuses to run against any database whose name doesn't contain '_test'.
"""

from __future__ import annotations

import asyncio
import itertools
import os
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lycaon.channels.slack import ChannelInfo, ChatMessage, DirectoryUser, UserGroup
from lycaon.config.incident_config import Asset, Category, IncidentConfig, Severity
from lycaon.constants import DB_SCHEMA
from lycaon.infra.errors import ChannelError
from lycaon.storage.memory import MemoryRepository
from lycaon.storage.models import Base

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeSlackClient:
    """In-memory SlackClient recording every call.

    Set ``failures[method] = exc`` to make a method raise.
    """

    def __init__(self) -> None:
        self.team_id = "T0001"
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.users: list[DirectoryUser] = []
        self.groups: list[UserGroup] = []
        self.group_members: dict[str, list[str]] = {}
        self.channel_members: dict[str, list[str]] = {}
        self.channel_names: dict[str, str] = {}
        self.history: list[ChatMessage] = []
        self.thread_replies: list[ChatMessage] = []
        self.created_channels: list[ChannelInfo] = []
        self.invites: list[tuple[str, list[str]]] = []
        self.posted: list[dict[str, Any]] = []
        self.updated: list[dict[str, Any]] = []
        self.ephemeral: list[dict[str, Any]] = []
        self.views: list[dict[str, Any]] = []
        self.bookmarks: list[tuple[str, str, str]] = []
        self.purposes: list[tuple[str, str]] = []
        self._channel_seq = itertools.count(1)
        self._ts_seq = itertools.count(1)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if method in self.failures:
            raise self.failures[method]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    async def auth_test(self) -> str:
        self._record("auth_test")
        return self.team_id

    async def create_channel(self, name: str, *, is_private: bool = False) -> ChannelInfo:
        self._record("create_channel", name, is_private)
        info = ChannelInfo(id=f"C{next(self._channel_seq):04d}", name=name, is_private=is_private)
        self.created_channels.append(info)
        return info

    async def set_purpose(self, channel_id: str, purpose: str) -> None:
        self._record("set_purpose", channel_id, purpose)
        self.purposes.append((channel_id, purpose))

    async def invite_users(self, channel_id: str, user_ids: list[str]) -> None:
        self._record("invite_users", channel_id, list(user_ids))
        self.invites.append((channel_id, list(user_ids)))

    async def add_bookmark(self, channel_id: str, title: str, link: str) -> None:
        self._record("add_bookmark", channel_id, title, link)
        self.bookmarks.append((channel_id, title, link))

    async def post_message(self, channel_id, text, *, blocks=None, thread_ts=None) -> str:
        self._record("post_message", channel_id, text)
        ts = f"1700000000.{next(self._ts_seq):06d}"
        self.posted.append(
            {
                "channel": channel_id,
                "text": text,
                "blocks": blocks,
                "thread_ts": thread_ts,
                "ts": ts,
            }
        )
        return ts

    async def post_ephemeral(self, channel_id, user_id, text, *, blocks=None) -> None:
        self._record("post_ephemeral", channel_id, user_id, text)
        self.ephemeral.append({"channel": channel_id, "user": user_id, "text": text})

    async def update_message(self, channel_id, ts, text, *, blocks=None) -> None:
        self._record("update_message", channel_id, ts, text)
        self.updated.append({"channel": channel_id, "ts": ts, "text": text, "blocks": blocks})

    async def open_view(self, trigger_id, view) -> None:
        self._record("open_view", trigger_id)
        self.views.append({"trigger_id": trigger_id, "view": view})

    async def get_conversation_info(self, channel_id: str) -> ChannelInfo:
        self._record("get_conversation_info", channel_id)
        return ChannelInfo(id=channel_id, name=self.channel_names.get(channel_id, "general"))

    async def list_conversation_members(self, channel_id: str) -> list[str]:
        self._record("list_conversation_members", channel_id)
        return list(self.channel_members.get(channel_id, []))

    async def list_users(self) -> list[DirectoryUser]:
        self._record("list_users")
        return list(self.users)

    async def list_user_groups(self) -> list[UserGroup]:
        self._record("list_user_groups")
        return list(self.groups)

    async def list_user_group_members(self, group_id: str) -> list[str]:
        self._record("list_user_group_members", group_id)
        if group_id not in self.group_members:
            raise ChannelError("usergroups.users.list failed: no_such_subteam")
        return list(self.group_members[group_id])

    async def get_conversation_history(
        self, channel_id: str, *, oldest: datetime | None = None, limit: int = 256
    ) -> list[ChatMessage]:
        self._record("get_conversation_history", channel_id, oldest, limit)
        return list(self.history)

    async def get_thread_replies(
        self, channel_id: str, thread_ts: str, *, limit: int = 256
    ) -> list[ChatMessage]:
        self._record("get_thread_replies", channel_id, thread_ts, limit)
        return list(self.thread_replies)


@pytest.fixture
def fake_slack() -> FakeSlackClient:
    return FakeSlackClient()


@pytest.fixture
def memory_repo() -> MemoryRepository:
    return MemoryRepository()


@pytest.fixture
def incident_config() -> IncidentConfig:
    return IncidentConfig(
        categories=[
            Category(
                id="security_incident",
                name="Security Incident",
                invite_users=["U0SECLEAD", "@oncall-bot"],
                invite_groups=["@sec-team"],
            ),
            Category(id="system_failure", name="System Failure"),
            Category(id="unknown", name="Unknown"),
        ],
        severities=[
            Severity(id="critical", name="Critical", level=90),
            Severity(id="low", name="Low", level=10),
        ],
        assets=[
            Asset(id="web", name="Web Frontend"),
            Asset(id="db", name="Database"),
        ],
    )


# ---------------------------------------------------------------------------
# PostgreSQL (integration)
# ---------------------------------------------------------------------------


def _validate_test_db_name(name: str) -> None:
    """Safety: refuse to truncate a database whose name doesn't contain '_test'."""
    if "_test" not in name.lower():
        raise RuntimeError(
            f"Refusing to run tests against database '{name}': "
            "name must contain '_test' to prevent accidental data loss. "
            "Set TEST_DATABASE_NAME to a test-specific database."
        )


def _build_pg_url_from_env() -> str | None:
    """Build async PG URL from TEST_DATABASE_* env vars, or return None."""
    host = os.getenv("TEST_DATABASE_HOST")
    if host is None:
        return None
    port = os.getenv("TEST_DATABASE_PORT", "5432")
    user = os.getenv("TEST_DATABASE_USER", "postgres")
    password = os.getenv("TEST_DATABASE_PASSWORD", "")
    name = os.getenv("TEST_DATABASE_NAME", "lycaon_test")
    _validate_test_db_name(name)
    return f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{name}"


@pytest.fixture(scope="session")
def _pg_container():
    """Manage testcontainers PostgreSQL lifecycle.

    Yields (url, container) where container is None if using external PG.
    """
    url = _build_pg_url_from_env()
    if url is not None:
        yield url, None
        return

    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer("postgres:16", dbname="lycaon_test")
    container.start()

    host = container.get_container_host_ip()
    port = container.get_exposed_port(5432)
    user = container.username
    password = container.password
    dbname = container.dbname
    _validate_test_db_name(dbname)

    url = f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{dbname}"

    yield url, container

    container.stop()


@pytest.fixture(scope="session")
def pg_url(_pg_container) -> str:
    """Provide an async PostgreSQL URL for integration tests."""
    url, _ = _pg_container
    return url


@pytest_asyncio.fixture(scope="session")
async def db_engine(pg_url: str):
    """Create async engine, set up schema + tables. Tear down after session."""
    engine = create_async_engine(pg_url, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {DB_SCHEMA}"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.execute(text(f"DROP SCHEMA IF EXISTS {DB_SCHEMA} CASCADE"))

    await engine.dispose()


@pytest_asyncio.fixture(scope="session")
async def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Provide an async session factory bound to the test engine."""
    return async_sessionmaker(db_engine, expire_on_commit=False)


@pytest_asyncio.fixture(autouse=True)
async def _integration_cleanup(request):
    """Truncate all tables after each integration test for isolation.

    Uses request.getfixturevalue() for lazy resolution: non-integration
    tests never trigger the db_session_factory → db_engine → _pg_container
    fixture chain.
    """
    yield

    if not any(m.name == "integration" for m in request.node.iter_markers()):
        return

    if not asyncio.iscoroutinefunction(request.node.obj):
        return

    factory = request.getfixturevalue("db_session_factory")

    async with factory() as db_session:
        await db_session.execute(
            text(
                f"TRUNCATE {DB_SCHEMA}.tasks, {DB_SCHEMA}.status_histories,"
                f" {DB_SCHEMA}.incidents, {DB_SCHEMA}.incident_requests,"
                f" {DB_SCHEMA}.users, {DB_SCHEMA}.counters CASCADE"
            )
        )
        await db_session.commit()


@pytest_asyncio.fixture
async def sql_repo(db_session_factory: async_sessionmaker[AsyncSession]):
    """Provide a SqlRepository bound to the test database."""
    from lycaon.storage.repository import SqlRepository

    yield SqlRepository(db_session_factory)
