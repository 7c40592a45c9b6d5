"""Tests for StatusLedger.

Covers:
- Transitions: any-to-any, no-op rejection without writes
- Write ordering: history first, status second, no rollback
- Initial entry and actor enrichment with fallback
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from lycaon.constants import INCIDENT_CREATED_NOTE
from lycaon.domain.models import Incident, User
from lycaon.domain.types import IncidentStatus
from lycaon.incident.status import StatusLedger
from lycaon.infra.errors import (
    IncidentNotFoundError,
    InvalidInputError,
    NoOpTransitionError,
    StatusUpdateError,
    StorageError,
)


async def _seed(repo, *, status: IncidentStatus = IncidentStatus.triage) -> Incident:
    incident = Incident.new(
        prefix="inc",
        incident_id=await repo.next_incident_number(),
        title="Database outage",
        description="",
        category_id="",
        origin_channel_id="C0GENERAL",
        origin_channel_name="general",
        created_by="U0ALICE",
        initial_triage=status == IncidentStatus.triage,
    )
    incident.status = status
    await repo.put_incident(incident)
    return incident


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransition:
    @pytest.mark.asyncio
    async def test_changes_status_and_appends_history(self, memory_repo):
        incident = await _seed(memory_repo)
        ledger = StatusLedger(memory_repo)

        entry = await ledger.transition(incident.id, "handling", "U0BOB", "on it")

        assert entry.status == IncidentStatus.handling
        assert entry.changed_by == "U0BOB"
        stored = await memory_repo.get_incident(incident.id)
        assert stored.status == IncidentStatus.handling
        histories = await memory_repo.get_status_histories(incident.id)
        assert [h.id for h in histories] == [entry.id]

    @pytest.mark.asyncio
    async def test_closed_can_reopen(self, memory_repo):
        incident = await _seed(memory_repo, status=IncidentStatus.closed)
        ledger = StatusLedger(memory_repo)

        await ledger.transition(incident.id, IncidentStatus.triage, "U0BOB")

        assert (await memory_repo.get_incident(incident.id)).status == IncidentStatus.triage

    @pytest.mark.asyncio
    async def test_noop_transition_writes_nothing(self, memory_repo):
        incident = await _seed(memory_repo, status=IncidentStatus.handling)
        ledger = StatusLedger(memory_repo)

        with pytest.raises(NoOpTransitionError):
            await ledger.transition(incident.id, "handling", "U0BOB")

        assert await memory_repo.get_status_histories(incident.id) == []

    @pytest.mark.asyncio
    async def test_unknown_incident(self, memory_repo):
        ledger = StatusLedger(memory_repo)
        with pytest.raises(IncidentNotFoundError):
            await ledger.transition(99, "handling", "U0BOB")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "incident_id, status, actor",
        [(0, "handling", "U0BOB"), (1, "resolved", "U0BOB"), (1, "handling", "")],
    )
    async def test_invalid_input(self, memory_repo, incident_id, status, actor):
        await _seed(memory_repo)
        ledger = StatusLedger(memory_repo)
        with pytest.raises(InvalidInputError):
            await ledger.transition(incident_id, status, actor)

    @pytest.mark.asyncio
    async def test_history_failure_leaves_status_untouched(self, memory_repo):
        incident = await _seed(memory_repo)
        memory_repo.add_status_history = AsyncMock(side_effect=StorageError("db down"))
        memory_repo.update_incident_status = AsyncMock()
        ledger = StatusLedger(memory_repo)

        with pytest.raises(StatusUpdateError):
            await ledger.transition(incident.id, "handling", "U0BOB")

        memory_repo.update_incident_status.assert_not_awaited()
        assert (await memory_repo.get_incident(incident.id)).status == IncidentStatus.triage

    @pytest.mark.asyncio
    async def test_status_failure_keeps_history(self, memory_repo):
        incident = await _seed(memory_repo)
        memory_repo.update_incident_status = AsyncMock(side_effect=StorageError("db down"))
        ledger = StatusLedger(memory_repo)

        with pytest.raises(StatusUpdateError, match="failed to update status"):
            await ledger.transition(incident.id, "monitoring", "U0BOB")

        histories = await memory_repo.get_status_histories(incident.id)
        assert [h.status for h in histories] == [IncidentStatus.monitoring]
        assert (await memory_repo.get_incident(incident.id)).status == IncidentStatus.triage

    @pytest.mark.asyncio
    async def test_unexpected_storage_exception_wrapped(self, memory_repo):
        incident = await _seed(memory_repo)
        memory_repo.add_status_history = AsyncMock(side_effect=RuntimeError("boom"))
        ledger = StatusLedger(memory_repo)

        with pytest.raises(StatusUpdateError) as exc_info:
            await ledger.transition(incident.id, "handling", "U0BOB")
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ---------------------------------------------------------------------------
# Initial entry and history reads
# ---------------------------------------------------------------------------


class TestHistory:
    @pytest.mark.asyncio
    async def test_record_initial(self, memory_repo):
        incident = await _seed(memory_repo)
        ledger = StatusLedger(memory_repo)

        entry = await ledger.record_initial(incident)

        assert entry.note == INCIDENT_CREATED_NOTE
        assert entry.changed_at == incident.created_at
        assert entry.changed_by == incident.created_by
        assert entry.status == IncidentStatus.triage

    @pytest.mark.asyncio
    async def test_oldest_first_with_users(self, memory_repo):
        incident = await _seed(memory_repo)
        await memory_repo.save_user(User(slack_user_id="U0ALICE", name="alice"))
        ledger = StatusLedger(memory_repo)

        await ledger.record_initial(incident)
        await ledger.transition(incident.id, "handling", "U0ALICE")
        await ledger.transition(incident.id, "closed", "U0NOBODY")

        history = await ledger.history(incident.id)

        assert [h.history.status for h in history] == [
            IncidentStatus.triage,
            IncidentStatus.handling,
            IncidentStatus.closed,
        ]
        assert history[1].user.name == "alice"
        # unknown actor falls back to the raw ID
        assert history[2].user.slack_user_id == "U0NOBODY"
        assert history[2].user.name == "U0NOBODY"

    @pytest.mark.asyncio
    async def test_user_lookup_cached_per_actor(self, memory_repo):
        incident = await _seed(memory_repo)
        ledger = StatusLedger(memory_repo)
        await ledger.transition(incident.id, "handling", "U0BOB")
        await ledger.transition(incident.id, "monitoring", "U0BOB")
        memory_repo.get_user_by_slack_id = AsyncMock(side_effect=StorageError("db down"))

        history = await ledger.history(incident.id)

        assert len(history) == 2
        memory_repo.get_user_by_slack_id.assert_awaited_once_with("U0BOB")

    @pytest.mark.asyncio
    async def test_empty_history(self, memory_repo):
        ledger = StatusLedger(memory_repo)
        assert await ledger.history(5) == []
