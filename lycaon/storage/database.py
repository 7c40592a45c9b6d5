"""Engine, schema bootstrap and session factory for the incident store."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import URL, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from lycaon.constants import DB_SCHEMA, INCIDENT_COUNTER_ID
from lycaon.storage.models import Base, CounterRecord

if TYPE_CHECKING:
    from lycaon.config.settings import DatabaseSettings

logger = structlog.get_logger()


def database_url(settings: DatabaseSettings, *, driver: str = "asyncpg") -> URL:
    """Connection URL for ``settings``. Alembic passes ``driver="psycopg"``.

    Credentials are escaped by URL.create, so passwords may contain '@' or '/'.
    """
    return URL.create(
        f"postgresql+{driver}",
        username=settings.user,
        password=settings.password or None,
        host=settings.host,
        port=settings.port,
        database=settings.name,
    )


async def create_db_engine(settings: DatabaseSettings) -> AsyncEngine:
    engine = create_async_engine(
        database_url(settings),
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {
                "search_path": f"{settings.schema_}, public",
                "application_name": "lycaon",
            }
        },
    )
    logger.info(
        "db_engine_created",
        host=settings.host,
        database=settings.name,
        pool_size=settings.pool_size,
    )
    return engine


async def ensure_schema(engine: AsyncEngine, schema: str = DB_SCHEMA) -> None:
    """Create the schema, missing tables and the incident counter row.

    Idempotent. Alembic owns later schema changes; this only bootstraps an
    empty database so a fresh deployment can serve requests.
    """
    async with engine.begin() as conn:
        await conn.execute(text(f"CREATE SCHEMA IF NOT EXISTS {schema}"))
        await conn.run_sync(Base.metadata.create_all)
        # Seeded at 0 so the first allocation returns 1
        await conn.execute(
            pg_insert(CounterRecord)
            .values(id=INCIDENT_COUNTER_ID, current_number=0)
            .on_conflict_do_nothing(index_elements=["id"])
        )

    logger.info("db_schema_ensured", schema=schema, tables=len(Base.metadata.tables))


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
