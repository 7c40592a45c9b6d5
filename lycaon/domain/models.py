"""Domain dataclasses: Incident aggregate, status history, invitations, drafts, tasks."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from lycaon.constants import CHANNEL_NAME_MAX_LENGTH, DEFAULT_CHANNEL_PREFIX
from lycaon.domain.types import (
    IncidentStatus,
    InviteStatus,
    TaskStatus,
    validate_incident_id,
)
from lycaon.infra.errors import InvalidInputError

_HYPHEN_RUN_RE = re.compile(r"-+")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def sanitize_for_channel_name(text: str) -> str:
    """Slug a title for Slack: lowercase ASCII, symbols to '-', other scripts kept."""
    out: list[str] = []
    for ch in text:
        if ch.isspace() or ch == ".":
            out.append("-")
        elif "A" <= ch <= "Z":
            out.append(ch.lower())
        elif ("a" <= ch <= "z") or ("0" <= ch <= "9") or ch in "-_":
            out.append(ch)
        elif ch.isalpha() or ch.isnumeric():
            out.append(ch)
        else:
            out.append("-")
    return _HYPHEN_RUN_RE.sub("-", "".join(out)).strip("-")


def format_channel_name(prefix: str, incident_id: int, title: str) -> str:
    """Derive '<prefix>-<id>[-<slug>]', capped at Slack's channel name limit."""
    base = f"{prefix or DEFAULT_CHANNEL_PREFIX}-{incident_id}"
    slug = sanitize_for_channel_name(title) if title else ""
    if not slug:
        return base
    full = f"{base}-{slug}"
    if len(full) > CHANNEL_NAME_MAX_LENGTH:
        full = full[:CHANNEL_NAME_MAX_LENGTH].rstrip("-")
    return full


@dataclass
class Incident:
    id: int
    title: str
    description: str
    category_id: str
    channel_name: str
    origin_channel_id: str
    origin_channel_name: str
    created_by: str
    status: IncidentStatus
    severity_id: str = ""
    asset_ids: list[str] = field(default_factory=list)
    channel_id: str = ""
    team_id: str = ""
    lead: str = ""
    initial_triage: bool = False
    private: bool = False
    joined_members: set[str] = field(default_factory=set)
    welcome_message_ts: str = ""
    declared_message_ts: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        *,
        prefix: str,
        incident_id: int,
        title: str,
        description: str,
        category_id: str,
        origin_channel_id: str,
        origin_channel_name: str,
        created_by: str,
        initial_triage: bool,
        severity_id: str = "",
        asset_ids: list[str] | None = None,
        team_id: str = "",
        private: bool = False,
    ) -> Incident:
        """Build a fresh incident; the channel name is derived here and never again."""
        validate_incident_id(incident_id)
        if not origin_channel_id:
            raise InvalidInputError("origin channel ID is required")
        if not origin_channel_name:
            raise InvalidInputError("origin channel name is required")
        if not created_by:
            raise InvalidInputError("creator user ID is required")

        return cls(
            id=incident_id,
            title=title,
            description=description,
            category_id=category_id,
            severity_id=severity_id,
            asset_ids=list(asset_ids or []),
            channel_name=format_channel_name(prefix, incident_id, title),
            origin_channel_id=origin_channel_id,
            origin_channel_name=origin_channel_name,
            team_id=team_id,
            created_by=created_by,
            status=IncidentStatus.triage if initial_triage else IncidentStatus.handling,
            initial_triage=initial_triage,
            private=private,
        )

    @property
    def is_open(self) -> bool:
        return self.status != IncidentStatus.closed


@dataclass(frozen=True)
class StatusHistory:
    """One immutable status change entry."""

    incident_id: int
    status: IncidentStatus
    changed_by: str
    note: str = ""
    changed_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def new(
        cls,
        incident_id: int,
        status: IncidentStatus | str,
        changed_by: str,
        note: str = "",
        *,
        changed_at: datetime | None = None,
    ) -> StatusHistory:
        validate_incident_id(incident_id)
        parsed = IncidentStatus.parse(status)
        if not changed_by:
            raise InvalidInputError("changed by user ID is required")
        return cls(
            incident_id=incident_id,
            status=parsed,
            changed_by=changed_by,
            note=note,
            changed_at=changed_at or _utcnow(),
        )


@dataclass
class User:
    slack_user_id: str
    name: str
    email: str = ""
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class StatusHistoryWithUser:
    history: StatusHistory
    user: User


@dataclass
class InviteDetail:
    """Outcome for one configured reference (or one group member)."""

    source_config: str
    user_id: str = ""
    username: str = ""
    status: InviteStatus = InviteStatus.resolved
    error: str = ""

    @classmethod
    def failed(cls, source_config: str, error: str, *, username: str = "") -> InviteDetail:
        return cls(
            source_config=source_config,
            username=username,
            status=InviteStatus.failed,
            error=error,
        )

    @property
    def is_invitable(self) -> bool:
        return self.status == InviteStatus.resolved and bool(self.user_id)


@dataclass
class InvitationResult:
    details: list[InviteDetail] = field(default_factory=list)

    @property
    def succeeded(self) -> list[InviteDetail]:
        return [d for d in self.details if d.status == InviteStatus.success]

    @property
    def failed(self) -> list[InviteDetail]:
        return [d for d in self.details if d.status == InviteStatus.failed]


@dataclass
class IncidentRequest:
    """Short-lived draft behind a 'Declare incident?' prompt."""

    channel_id: str
    message_ts: str
    requested_by: str
    title: str = ""
    description: str = ""
    category_id: str = ""
    severity_id: str = ""
    asset_ids: list[str] = field(default_factory=list)
    bot_message_ts: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    expires_at: datetime | None = None

    @classmethod
    def new(
        cls,
        *,
        channel_id: str,
        message_ts: str,
        requested_by: str,
        title: str = "",
        description: str = "",
        category_id: str = "",
        ttl: timedelta = timedelta(minutes=30),
    ) -> IncidentRequest:
        now = _utcnow()
        return cls(
            channel_id=channel_id,
            message_ts=message_ts,
            requested_by=requested_by,
            title=title,
            description=description,
            category_id=category_id,
            created_at=now,
            expires_at=now + ttl,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or _utcnow()) > self.expires_at


@dataclass
class CreateIncidentRequest:
    title: str
    origin_channel_id: str
    origin_channel_name: str
    created_by: str
    description: str = ""
    category_id: str = ""
    severity_id: str = ""
    asset_ids: list[str] = field(default_factory=list)
    initial_triage: bool | None = None  # None = configured default
    private: bool = False


@dataclass
class IncidentDetails:
    """Values edited in the create-incident modal before confirming."""

    title: str
    description: str = ""
    category_id: str = ""
    severity_id: str = ""
    asset_ids: list[str] = field(default_factory=list)
    private: bool = False


@dataclass
class UpdateIncidentRequest:
    """Partial update; None means 'leave unchanged'."""

    title: str | None = None
    description: str | None = None
    lead: str | None = None
    severity_id: str | None = None
    asset_ids: list[str] | None = None
    status: IncidentStatus | None = None
    note: str = ""


@dataclass
class Task:
    """Follow-up work item attached to an incident."""

    incident_id: int
    title: str
    created_by: str
    description: str = ""
    status: TaskStatus = TaskStatus.todo
    assignee_id: str = ""
    channel_id: str = ""
    message_ts: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @classmethod
    def new(
        cls, incident_id: int, title: str, created_by: str, *, channel_id: str = ""
    ) -> Task:
        validate_incident_id(incident_id)
        if not title:
            raise InvalidInputError("task title is required")
        if not created_by:
            raise InvalidInputError("creator user ID is required")
        now = _utcnow()
        return cls(
            incident_id=incident_id,
            title=title,
            created_by=created_by,
            channel_id=channel_id,
            created_at=now,
            updated_at=now,
        )

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.completed

    def complete(self) -> None:
        if self.is_completed:
            raise InvalidInputError(f"task {self.id} is already completed")
        self.set_status(TaskStatus.completed)

    def uncomplete(self) -> None:
        if self.status == TaskStatus.todo:
            raise InvalidInputError(f"task {self.id} is already todo")
        self.set_status(TaskStatus.todo)

    def set_status(self, status: TaskStatus) -> None:
        now = _utcnow()
        self.status = status
        self.completed_at = now if status == TaskStatus.completed else None
        self.updated_at = now

    def message_url(self, fallback_channel_id: str = "") -> str:
        """Slack permalink of the task message, '' when it was never posted."""
        channel_id = self.channel_id or fallback_channel_id
        if not self.message_ts or not channel_id:
            return ""
        return f"https://slack.com/archives/{channel_id}/p{self.message_ts.replace('.', '', 1)}"


@dataclass
class TaskUpdateRequest:
    """Partial task update; None means 'leave unchanged'."""

    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    assignee_id: str | None = None
