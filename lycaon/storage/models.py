"""SQLAlchemy 2.0 async models for incident persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from lycaon.constants import DB_SCHEMA


class Base(DeclarativeBase):
    pass


class CounterRecord(Base):
    """Named monotonic counters; 'incident' backs incident numbering."""

    __tablename__ = "counters"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    current_number: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class IncidentRecord(Base):
    __tablename__ = "incidents"
    __table_args__ = (
        Index("idx_incidents_channel_id", "channel_id"),
        Index("idx_incidents_created_at", "created_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    category_id: Mapped[str] = mapped_column(String(128), default="")
    severity_id: Mapped[str] = mapped_column(String(128), default="")
    asset_ids: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    channel_id: Mapped[str] = mapped_column(String(32), default="")
    channel_name: Mapped[str] = mapped_column(String(80))
    origin_channel_id: Mapped[str] = mapped_column(String(32))
    origin_channel_name: Mapped[str] = mapped_column(String(256))
    team_id: Mapped[str] = mapped_column(String(32), default="")
    created_by: Mapped[str] = mapped_column(String(32))
    lead: Mapped[str] = mapped_column(String(32), default="")
    status: Mapped[str] = mapped_column(String(16))
    initial_triage: Mapped[bool] = mapped_column(Boolean, default=False)
    private: Mapped[bool] = mapped_column(Boolean, default=False)
    joined_members: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    welcome_message_ts: Mapped[str] = mapped_column(String(32), default="")
    declared_message_ts: Mapped[str] = mapped_column(String(32), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class StatusHistoryRecord(Base):
    """Append-only: rows are inserted, never updated or deleted."""

    __tablename__ = "status_histories"
    __table_args__ = (
        Index("idx_status_histories_incident", "incident_id", "changed_at"),
        {"schema": DB_SCHEMA},
    )

    # Surrogate key preserves insertion order when changed_at ties
    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True)
    incident_id: Mapped[int] = mapped_column(
        Integer, ForeignKey(f"{DB_SCHEMA}.incidents.id")
    )
    status: Mapped[str] = mapped_column(String(16))
    changed_by: Mapped[str] = mapped_column(String(32))
    changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    note: Mapped[str] = mapped_column(Text, default="")


class IncidentRequestRecord(Base):
    __tablename__ = "incident_requests"
    __table_args__ = {"schema": DB_SCHEMA}

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    channel_id: Mapped[str] = mapped_column(String(32))
    message_ts: Mapped[str] = mapped_column(String(32))
    bot_message_ts: Mapped[str] = mapped_column(String(32), default="")
    title: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str] = mapped_column(Text, default="")
    category_id: Mapped[str] = mapped_column(String(128), default="")
    severity_id: Mapped[str] = mapped_column(String(128), default="")
    asset_ids: Mapped[list[str]] = mapped_column(ARRAY(Text), default=list)
    requested_by: Mapped[str] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserRecord(Base):
    __tablename__ = "users"
    __table_args__ = {"schema": DB_SCHEMA}

    slack_user_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), default="")
    email: Mapped[str] = mapped_column(String(256), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TaskRecord(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        Index("idx_tasks_incident", "incident_id", "created_at"),
        {"schema": DB_SCHEMA},
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    incident_id: Mapped[int] = mapped_column(
        Integer, ForeignKey(f"{DB_SCHEMA}.incidents.id")
    )
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(16))
    assignee_id: Mapped[str] = mapped_column(String(32), default="")
    created_by: Mapped[str] = mapped_column(String(32))
    channel_id: Mapped[str] = mapped_column(String(32), default="")
    message_ts: Mapped[str] = mapped_column(String(32), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
