"""Tests for lycaon.domain: channel names, Incident/StatusHistory/Task models, drafts."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from lycaon.constants import CHANNEL_NAME_MAX_LENGTH
from lycaon.domain.models import (
    Incident,
    IncidentRequest,
    InvitationResult,
    InviteDetail,
    StatusHistory,
    Task,
    format_channel_name,
    sanitize_for_channel_name,
)
from lycaon.domain.types import (
    IncidentStatus,
    InviteStatus,
    TaskStatus,
    validate_incident_id,
)
from lycaon.infra.errors import InvalidInputError


def _incident(**overrides) -> Incident:
    kwargs = dict(
        prefix="inc",
        incident_id=1,
        title="Database outage",
        description="",
        category_id="",
        origin_channel_id="C0GENERAL",
        origin_channel_name="general",
        created_by="U0ALICE",
        initial_triage=True,
    )
    kwargs.update(overrides)
    return Incident.new(**kwargs)


# ---------------------------------------------------------------------------
# Channel names
# ---------------------------------------------------------------------------


class TestChannelName:
    def test_simple_title(self):
        assert format_channel_name("inc", 1, "Database outage") == "inc-1-database-outage"

    def test_punctuation_collapsed_and_trimmed(self):
        assert format_channel_name("inc", 2, "Database DOWN!!") == "inc-2-database-down"

    def test_empty_title_has_no_suffix(self):
        assert format_channel_name("inc", 3, "") == "inc-3"

    def test_symbol_only_title_has_no_suffix(self):
        assert format_channel_name("inc", 4, "!!! ???") == "inc-4"

    def test_empty_prefix_uses_default(self):
        assert format_channel_name("", 5, "x") == "inc-5-x"

    def test_custom_prefix(self):
        assert format_channel_name("sec", 12, "Leak") == "sec-12-leak"

    def test_long_title_capped(self):
        name = format_channel_name("inc", 1, "a" * 200)
        assert len(name) == CHANNEL_NAME_MAX_LENGTH
        assert name.startswith("inc-1-aaa")

    def test_cap_does_not_leave_trailing_hyphen(self):
        # position 80 falls right after a word boundary
        title = "a" * 73 + " bbbbbbbb"
        name = format_channel_name("inc", 1, title)
        assert not name.endswith("-")
        assert len(name) <= CHANNEL_NAME_MAX_LENGTH

    def test_unicode_letters_kept(self):
        assert sanitize_for_channel_name("障害 発生") == "障害-発生"

    def test_dots_and_underscores(self):
        assert sanitize_for_channel_name("api.v2_gateway") == "api-v2_gateway"

    def test_whitespace_runs_collapse(self):
        assert sanitize_for_channel_name("  a \t\n b  ") == "a-b"


# ---------------------------------------------------------------------------
# Identifiers and statuses
# ---------------------------------------------------------------------------


class TestIdentifiers:
    @pytest.mark.parametrize("value", [0, -1, True, "1", 1.0])
    def test_invalid_incident_ids(self, value):
        with pytest.raises(InvalidInputError):
            validate_incident_id(value)

    def test_valid_incident_id(self):
        assert validate_incident_id(7) == 7

    def test_status_parse(self):
        assert IncidentStatus.parse("monitoring") is IncidentStatus.monitoring
        assert IncidentStatus.parse(IncidentStatus.closed) is IncidentStatus.closed

    def test_status_parse_unknown(self):
        with pytest.raises(InvalidInputError, match="invalid status"):
            IncidentStatus.parse("resolved")

    def test_history_ids_are_unique_uuids(self):
        ids = {StatusHistory.new(1, "triage", "U0ALICE").id for _ in range(5)}
        assert len(ids) == 5
        assert all(uuid.UUID(i).version == 4 for i in ids)


# ---------------------------------------------------------------------------
# Incident
# ---------------------------------------------------------------------------


class TestIncidentNew:
    def test_initial_triage_status(self):
        incident = _incident(initial_triage=True)
        assert incident.status == IncidentStatus.triage
        assert incident.channel_name == "inc-1-database-outage"
        assert incident.lead == ""
        assert incident.is_open

    def test_direct_to_handling(self):
        incident = _incident(initial_triage=False)
        assert incident.status == IncidentStatus.handling
        assert incident.initial_triage is False

    def test_asset_ids_copied(self):
        assets = ["web"]
        incident = _incident(asset_ids=assets)
        assets.append("db")
        assert incident.asset_ids == ["web"]

    @pytest.mark.parametrize(
        "field",
        ["origin_channel_id", "origin_channel_name", "created_by"],
    )
    def test_required_fields(self, field):
        with pytest.raises(InvalidInputError):
            _incident(**{field: ""})

    def test_invalid_id(self):
        with pytest.raises(InvalidInputError):
            _incident(incident_id=0)

    def test_closed_is_not_open(self):
        incident = _incident()
        incident.status = IncidentStatus.closed
        assert not incident.is_open


class TestStatusHistoryNew:
    def test_builds_entry(self):
        entry = StatusHistory.new(1, "handling", "U0BOB", "on it")
        assert entry.status == IncidentStatus.handling
        assert entry.note == "on it"
        assert entry.changed_at.tzinfo is not None

    def test_explicit_changed_at(self):
        at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
        entry = StatusHistory.new(1, IncidentStatus.triage, "U0BOB", changed_at=at)
        assert entry.changed_at == at

    def test_rejects_empty_actor(self):
        with pytest.raises(InvalidInputError):
            StatusHistory.new(1, "triage", "")

    def test_rejects_unknown_status(self):
        with pytest.raises(InvalidInputError):
            StatusHistory.new(1, "resolved", "U0BOB")

    def test_entries_are_frozen(self):
        entry = StatusHistory.new(1, "triage", "U0BOB")
        with pytest.raises(AttributeError):
            entry.note = "changed"  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Invitations and drafts
# ---------------------------------------------------------------------------


class TestInvitationResult:
    def test_partitions_details(self):
        result = InvitationResult(
            details=[
                InviteDetail(source_config="U1", user_id="U1", status=InviteStatus.success),
                InviteDetail.failed("@ghost", "user not found", username="@ghost"),
                InviteDetail(source_config="U2", user_id="U2"),
            ]
        )
        assert [d.user_id for d in result.succeeded] == ["U1"]
        assert [d.source_config for d in result.failed] == ["@ghost"]

    def test_failed_detail_not_invitable(self):
        assert not InviteDetail.failed("B1", "bot not found").is_invitable
        assert InviteDetail(source_config="U1", user_id="U1").is_invitable


class TestIncidentRequest:
    def test_new_sets_expiry(self):
        req = IncidentRequest.new(
            channel_id="C1", message_ts="1.0", requested_by="U1", ttl=timedelta(minutes=5)
        )
        assert req.expires_at - req.created_at == timedelta(minutes=5)
        assert not req.is_expired()

    def test_expired(self):
        req = IncidentRequest.new(channel_id="C1", message_ts="1.0", requested_by="U1")
        assert req.is_expired(req.created_at + timedelta(hours=1))

    def test_no_expiry_never_expires(self):
        req = IncidentRequest(channel_id="C1", message_ts="1.0", requested_by="U1")
        assert not req.is_expired(datetime(2999, 1, 1, tzinfo=UTC))


class TestTask:
    def test_new_defaults(self):
        task = Task.new(3, "Rotate keys", "U0ALICE", channel_id="C0INC")
        assert task.status == TaskStatus.todo
        assert task.created_at == task.updated_at
        assert task.completed_at is None
        assert uuid.UUID(task.id).version == 4

    @pytest.mark.parametrize(
        "incident_id, title, created_by", [(0, "x", "U1"), (1, "", "U1"), (1, "x", "")]
    )
    def test_new_rejects_invalid(self, incident_id, title, created_by):
        with pytest.raises(InvalidInputError):
            Task.new(incident_id, title, created_by)

    def test_complete_and_uncomplete(self):
        task = Task.new(3, "Rotate keys", "U0ALICE")
        task.complete()
        assert task.is_completed
        assert task.completed_at == task.updated_at
        with pytest.raises(InvalidInputError):
            task.complete()

        task.uncomplete()
        assert task.status == TaskStatus.todo
        assert task.completed_at is None
        with pytest.raises(InvalidInputError):
            task.uncomplete()

    def test_follow_up_can_be_uncompleted(self):
        task = Task.new(3, "Rotate keys", "U0ALICE")
        task.set_status(TaskStatus.follow_up)
        assert not task.is_completed
        task.uncomplete()
        assert task.status == TaskStatus.todo

    def test_message_url(self):
        task = Task.new(3, "x", "U1")
        assert task.message_url("C0INC") == ""
        task.message_ts = "1700000000.000100"
        assert task.message_url() == ""
        assert task.message_url("C0INC") == "https://slack.com/archives/C0INC/p1700000000000100"
        task.channel_id = "C0TASK"
        assert task.message_url("C0INC") == "https://slack.com/archives/C0TASK/p1700000000000100"

    def test_status_parse(self):
        assert TaskStatus.parse("follow-up") == TaskStatus.follow_up
        with pytest.raises(InvalidInputError):
            TaskStatus.parse("done")
