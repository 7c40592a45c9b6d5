"""Pydantic models for inbound Slack payloads and JSON API responses.

Slack payloads carry many more fields than listed here; unknown fields are
ignored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from lycaon.domain.models import Incident, StatusHistoryWithUser, Task
from lycaon.domain.types import IncidentStatus, TaskStatus

# ---------------------------------------------------------------------------
# Slack Events API
# ---------------------------------------------------------------------------


class _SlackModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SlackEvent(_SlackModel):
    type: str
    user: str = ""
    text: str = ""
    channel: str = ""
    ts: str = ""
    thread_ts: str = ""
    bot_id: str = ""


class SlackEventEnvelope(_SlackModel):
    type: str
    challenge: str = ""
    team_id: str = ""
    event_id: str = ""
    event: SlackEvent | None = None
    authorizations: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def bot_user_id(self) -> str:
        for auth in self.authorizations:
            if auth.get("is_bot") and auth.get("user_id"):
                return auth["user_id"]
        return ""


# ---------------------------------------------------------------------------
# Slack interactivity
# ---------------------------------------------------------------------------


class SlackUserRef(_SlackModel):
    id: str
    username: str = ""
    name: str = ""


class SlackChannelRef(_SlackModel):
    id: str = ""
    name: str = ""


class SlackContainer(_SlackModel):
    message_ts: str = ""
    channel_id: str = ""


class SlackAction(_SlackModel):
    action_id: str
    block_id: str = ""
    value: str = ""


class SlackView(_SlackModel):
    id: str = ""
    callback_id: str = ""
    private_metadata: str = ""
    state: dict[str, Any] = Field(default_factory=dict)


class SlackInteraction(_SlackModel):
    type: str
    user: SlackUserRef
    trigger_id: str = ""
    channel: SlackChannelRef | None = None
    container: SlackContainer | None = None
    actions: list[SlackAction] = Field(default_factory=list)
    view: SlackView | None = None

    @property
    def display_name(self) -> str:
        return self.user.name or self.user.username or self.user.id

    @property
    def channel_id(self) -> str:
        if self.channel and self.channel.id:
            return self.channel.id
        return self.container.channel_id if self.container else ""


# ---------------------------------------------------------------------------
# JSON API
# ---------------------------------------------------------------------------


class StatusChangeParams(BaseModel):
    status: IncidentStatus
    actor: str = Field(min_length=1)
    note: str = ""


class IncidentUpdateParams(BaseModel):
    """PATCH body; omitted fields stay unchanged."""

    actor: str = Field(min_length=1)
    title: str | None = None
    description: str | None = None
    lead: str | None = None
    severity_id: str | None = None
    asset_ids: list[str] | None = None
    status: IncidentStatus | None = None
    note: str = ""


class TaskCreateParams(BaseModel):
    title: str = Field(min_length=1)
    actor: str = Field(min_length=1)


class TaskUpdateParams(BaseModel):
    title: str | None = None
    description: str | None = None
    status: TaskStatus | None = None
    assignee_id: str | None = None


class IncidentView(BaseModel):
    id: int
    title: str
    description: str
    status: IncidentStatus
    lead: str
    category_id: str
    severity_id: str
    asset_ids: list[str]
    channel_id: str
    channel_name: str
    team_id: str
    origin_channel_id: str
    origin_channel_name: str
    created_by: str
    created_at: datetime
    private: bool

    @classmethod
    def from_incident(cls, incident: Incident) -> IncidentView:
        return cls(
            id=incident.id,
            title=incident.title,
            description=incident.description,
            status=incident.status,
            lead=incident.lead,
            category_id=incident.category_id,
            severity_id=incident.severity_id,
            asset_ids=list(incident.asset_ids),
            channel_id=incident.channel_id,
            channel_name=incident.channel_name,
            team_id=incident.team_id,
            origin_channel_id=incident.origin_channel_id,
            origin_channel_name=incident.origin_channel_name,
            created_by=incident.created_by,
            created_at=incident.created_at,
            private=incident.private,
        )


class StatusHistoryView(BaseModel):
    id: str
    status: IncidentStatus
    changed_by: str
    changed_by_name: str
    changed_at: datetime
    note: str

    @classmethod
    def from_entry(cls, entry: StatusHistoryWithUser) -> StatusHistoryView:
        return cls(
            id=entry.history.id,
            status=entry.history.status,
            changed_by=entry.history.changed_by,
            changed_by_name=entry.user.name,
            changed_at=entry.history.changed_at,
            note=entry.history.note,
        )


class TaskView(BaseModel):
    id: str
    incident_id: int
    title: str
    description: str
    status: TaskStatus
    assignee_id: str
    created_by: str
    message_url: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_task(cls, task: Task) -> TaskView:
        return cls(
            id=task.id,
            incident_id=task.incident_id,
            title=task.title,
            description=task.description,
            status=task.status,
            assignee_id=task.assignee_id,
            created_by=task.created_by,
            message_url=task.message_url(),
            created_at=task.created_at,
            updated_at=task.updated_at,
            completed_at=task.completed_at,
        )


class ErrorData(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorData
