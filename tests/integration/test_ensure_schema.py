"""Tests for ensure_schema bootstrap against a live PostgreSQL instance."""

from __future__ import annotations

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from lycaon.constants import DB_SCHEMA
from lycaon.storage.database import ensure_schema
from lycaon.storage.repository import SqlRepository


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ensure_schema_seeds_counter(db_engine: AsyncEngine, db_session_factory) -> None:
    """Idempotent, and the seeded counter makes the first incident number 1."""
    await ensure_schema(db_engine, DB_SCHEMA)
    await ensure_schema(db_engine, DB_SCHEMA)

    async with db_engine.connect() as conn:
        result = await conn.execute(
            text(f"SELECT current_number FROM {DB_SCHEMA}.counters WHERE id = 'incident'")
        )
        assert result.scalar_one() == 0

    repo = SqlRepository(db_session_factory)
    assert await repo.next_incident_number() == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_ensure_schema_keeps_existing_counter(
    db_engine: AsyncEngine, db_session_factory
) -> None:
    repo = SqlRepository(db_session_factory)
    await repo.next_incident_number()
    await repo.next_incident_number()

    await ensure_schema(db_engine, DB_SCHEMA)

    assert await repo.next_incident_number() == 3
