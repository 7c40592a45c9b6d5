"""Repository interface and its PostgreSQL implementation.

Every operation opens its own short session; no session is held across a
remote call. Not-found conditions surface as NotFoundError subclasses and
driver failures as StorageError.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any, Protocol

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from lycaon.constants import INCIDENT_COUNTER_ID
from lycaon.domain.models import Incident, IncidentRequest, StatusHistory, Task, User
from lycaon.domain.types import IncidentStatus, TaskStatus
from lycaon.infra.errors import (
    IncidentNotFoundError,
    IncidentRequestNotFoundError,
    InvalidInputError,
    StorageError,
    TaskNotFoundError,
    UserNotFoundError,
)
from lycaon.storage.models import (
    CounterRecord,
    IncidentRecord,
    IncidentRequestRecord,
    StatusHistoryRecord,
    TaskRecord,
    UserRecord,
)

logger = structlog.get_logger()

# Columns update_incident_fields may touch. Status changes only through
# update_incident_status; identity and origin never change.
INCIDENT_MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "lead",
        "severity_id",
        "asset_ids",
        "joined_members",
        "welcome_message_ts",
        "declared_message_ts",
    }
)


def check_incident_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - INCIDENT_MUTABLE_FIELDS
    if unknown:
        raise InvalidInputError(f"incident fields not updatable: {sorted(unknown)}")


class Repository(Protocol):
    async def next_incident_number(self) -> int: ...

    async def put_incident(self, incident: Incident) -> None: ...

    async def update_incident_fields(self, incident_id: int, **fields: Any) -> None: ...

    async def add_joined_members(self, incident_id: int, user_ids: Iterable[str]) -> None: ...

    async def remove_joined_member(self, incident_id: int, user_id: str) -> None: ...

    async def get_incident(self, incident_id: int) -> Incident: ...

    async def get_incident_by_channel(self, channel_id: str) -> Incident: ...

    async def list_incidents_since(self, since: datetime) -> list[Incident]: ...

    async def update_incident_status(
        self, incident_id: int, status: IncidentStatus
    ) -> None: ...

    async def add_status_history(self, history: StatusHistory) -> None: ...

    async def get_status_histories(self, incident_id: int) -> list[StatusHistory]: ...

    async def save_incident_request(self, request: IncidentRequest) -> None: ...

    async def get_incident_request(self, request_id: str) -> IncidentRequest: ...

    async def consume_incident_request(self, request_id: str) -> IncidentRequest: ...

    async def delete_incident_request(self, request_id: str) -> None: ...

    async def save_user(self, user: User) -> None: ...

    async def get_user_by_slack_id(self, slack_user_id: str) -> User: ...

    async def create_task(self, task: Task) -> None: ...

    async def get_task(self, incident_id: int, task_id: str) -> Task: ...

    async def update_task(self, task: Task) -> None: ...

    async def list_tasks(self, incident_id: int) -> list[Task]: ...

    async def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Row <-> domain mapping
# ---------------------------------------------------------------------------


def _incident_values(incident: Incident) -> dict:
    return {
        "id": incident.id,
        "title": incident.title,
        "description": incident.description,
        "category_id": incident.category_id,
        "severity_id": incident.severity_id,
        "asset_ids": list(incident.asset_ids),
        "channel_id": incident.channel_id,
        "channel_name": incident.channel_name,
        "origin_channel_id": incident.origin_channel_id,
        "origin_channel_name": incident.origin_channel_name,
        "team_id": incident.team_id,
        "created_by": incident.created_by,
        "lead": incident.lead,
        "status": incident.status.value,
        "initial_triage": incident.initial_triage,
        "private": incident.private,
        "joined_members": sorted(incident.joined_members),
        "welcome_message_ts": incident.welcome_message_ts,
        "declared_message_ts": incident.declared_message_ts,
        "created_at": incident.created_at,
    }


def _to_incident(row: IncidentRecord) -> Incident:
    return Incident(
        id=row.id,
        title=row.title,
        description=row.description,
        category_id=row.category_id,
        severity_id=row.severity_id,
        asset_ids=list(row.asset_ids or []),
        channel_id=row.channel_id,
        channel_name=row.channel_name,
        origin_channel_id=row.origin_channel_id,
        origin_channel_name=row.origin_channel_name,
        team_id=row.team_id,
        created_by=row.created_by,
        lead=row.lead,
        status=IncidentStatus(row.status),
        initial_triage=row.initial_triage,
        private=row.private,
        joined_members=set(row.joined_members or []),
        welcome_message_ts=row.welcome_message_ts,
        declared_message_ts=row.declared_message_ts,
        created_at=row.created_at,
    )


def _to_history(row: StatusHistoryRecord) -> StatusHistory:
    return StatusHistory(
        id=row.id,
        incident_id=row.incident_id,
        status=IncidentStatus(row.status),
        changed_by=row.changed_by,
        changed_at=row.changed_at,
        note=row.note,
    )


def _to_request(row: IncidentRequestRecord) -> IncidentRequest:
    return IncidentRequest(
        id=row.id,
        channel_id=row.channel_id,
        message_ts=row.message_ts,
        bot_message_ts=row.bot_message_ts,
        title=row.title,
        description=row.description,
        category_id=row.category_id,
        severity_id=row.severity_id,
        asset_ids=list(row.asset_ids or []),
        requested_by=row.requested_by,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


def _task_values(task: Task) -> dict:
    return {
        "id": task.id,
        "incident_id": task.incident_id,
        "title": task.title,
        "description": task.description,
        "status": task.status.value,
        "assignee_id": task.assignee_id,
        "created_by": task.created_by,
        "channel_id": task.channel_id,
        "message_ts": task.message_ts,
        "created_at": task.created_at,
        "updated_at": task.updated_at,
        "completed_at": task.completed_at,
    }


def _to_task(row: TaskRecord) -> Task:
    return Task(
        id=row.id,
        incident_id=row.incident_id,
        title=row.title,
        description=row.description,
        status=TaskStatus(row.status),
        assignee_id=row.assignee_id,
        created_by=row.created_by,
        channel_id=row.channel_id,
        message_ts=row.message_ts,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
    )


class SqlRepository:
    """PostgreSQL-backed repository (SQLAlchemy 2.0 async + asyncpg)."""

    def __init__(self, db_session_factory: async_sessionmaker) -> None:
        self._db: async_sessionmaker = db_session_factory

    async def next_incident_number(self) -> int:
        """Atomically bump and return the incident counter.

        Single upsert statement; the row lock serializes concurrent callers.
        """
        try:
            async with self._db() as db_session:
                stmt = (
                    pg_insert(CounterRecord)
                    .values(id=INCIDENT_COUNTER_ID, current_number=1)
                    .on_conflict_do_update(
                        index_elements=["id"],
                        set_={"current_number": CounterRecord.current_number + 1},
                    )
                    .returning(CounterRecord.current_number)
                )
                result = await db_session.execute(stmt)
                number = result.scalar_one()
                await db_session.commit()
                return number
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to allocate incident number: {exc}") from exc

    async def put_incident(self, incident: Incident) -> None:
        """Insert or overwrite an incident. An existing row keeps its status."""
        values = _incident_values(incident)
        try:
            async with self._db() as db_session:
                stmt = pg_insert(IncidentRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={k: v for k, v in values.items() if k not in ("id", "status")},
                )
                await db_session.execute(stmt)
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to save incident {incident.id}: {exc}") from exc

    async def _update_incident(self, incident_id: int, values: dict[str, Any]) -> None:
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    update(IncidentRecord)
                    .where(IncidentRecord.id == incident_id)
                    .values(**values)
                    .returning(IncidentRecord.id)
                )
                updated = result.scalar_one_or_none()
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to update incident {incident_id}: {exc}") from exc
        if updated is None:
            raise IncidentNotFoundError(f"incident {incident_id} not found")

    async def update_incident_fields(self, incident_id: int, **fields: Any) -> None:
        """Set only the named columns; concurrent writes to other columns survive."""
        check_incident_fields(fields)
        if not fields:
            return
        values = dict(fields)
        if "asset_ids" in values:
            values["asset_ids"] = list(values["asset_ids"])
        if "joined_members" in values:
            values["joined_members"] = sorted(values["joined_members"])
        await self._update_incident(incident_id, values)

    async def add_joined_members(self, incident_id: int, user_ids: Iterable[str]) -> None:
        # remove-then-append keeps each member once without reading the array
        members = IncidentRecord.joined_members
        for user_id in dict.fromkeys(user_ids):
            await self._update_incident(
                incident_id,
                {"joined_members": func.array_append(func.array_remove(members, user_id), user_id)},
            )

    async def remove_joined_member(self, incident_id: int, user_id: str) -> None:
        await self._update_incident(
            incident_id,
            {"joined_members": func.array_remove(IncidentRecord.joined_members, user_id)},
        )

    async def get_incident(self, incident_id: int) -> Incident:
        try:
            async with self._db() as db_session:
                row = await db_session.get(IncidentRecord, incident_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to load incident {incident_id}: {exc}") from exc
        if row is None:
            raise IncidentNotFoundError(f"incident {incident_id} not found")
        return _to_incident(row)

    async def get_incident_by_channel(self, channel_id: str) -> Incident:
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    select(IncidentRecord).where(IncidentRecord.channel_id == channel_id)
                )
                row = result.scalars().first()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to load incident for channel {channel_id}: {exc}"
            ) from exc
        if row is None:
            raise IncidentNotFoundError(f"no incident for channel {channel_id}")
        return _to_incident(row)

    async def list_incidents_since(self, since: datetime) -> list[Incident]:
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    select(IncidentRecord)
                    .where(IncidentRecord.created_at >= since)
                    .order_by(IncidentRecord.created_at.desc())
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to list incidents: {exc}") from exc
        return [_to_incident(r) for r in rows]

    async def update_incident_status(self, incident_id: int, status: IncidentStatus) -> None:
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    update(IncidentRecord)
                    .where(IncidentRecord.id == incident_id)
                    .values(status=status.value)
                    .returning(IncidentRecord.id)
                )
                updated = result.scalar_one_or_none()
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to update status of incident {incident_id}: {exc}"
            ) from exc
        if updated is None:
            raise IncidentNotFoundError(f"incident {incident_id} not found")

    async def add_status_history(self, history: StatusHistory) -> None:
        try:
            async with self._db() as db_session:
                db_session.add(
                    StatusHistoryRecord(
                        id=history.id,
                        incident_id=history.incident_id,
                        status=history.status.value,
                        changed_by=history.changed_by,
                        changed_at=history.changed_at,
                        note=history.note,
                    )
                )
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to append status history for incident {history.incident_id}: {exc}"
            ) from exc

    async def get_status_histories(self, incident_id: int) -> list[StatusHistory]:
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    select(StatusHistoryRecord)
                    .where(StatusHistoryRecord.incident_id == incident_id)
                    .order_by(StatusHistoryRecord.changed_at, StatusHistoryRecord.pk)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to load status history for incident {incident_id}: {exc}"
            ) from exc
        return [_to_history(r) for r in rows]

    async def save_incident_request(self, request: IncidentRequest) -> None:
        values = {
            "id": request.id,
            "channel_id": request.channel_id,
            "message_ts": request.message_ts,
            "bot_message_ts": request.bot_message_ts,
            "title": request.title,
            "description": request.description,
            "category_id": request.category_id,
            "severity_id": request.severity_id,
            "asset_ids": list(request.asset_ids),
            "requested_by": request.requested_by,
            "created_at": request.created_at,
            "expires_at": request.expires_at,
        }
        try:
            async with self._db() as db_session:
                stmt = pg_insert(IncidentRequestRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={k: v for k, v in values.items() if k != "id"},
                )
                await db_session.execute(stmt)
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to save incident request {request.id}: {exc}"
            ) from exc

    async def get_incident_request(self, request_id: str) -> IncidentRequest:
        """Load a draft. Expired drafts are removed and read as not found."""
        try:
            async with self._db() as db_session:
                row = await db_session.get(IncidentRequestRecord, request_id)
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to load incident request {request_id}: {exc}"
            ) from exc
        if row is None:
            raise IncidentRequestNotFoundError(f"incident request {request_id} not found")

        request = _to_request(row)
        if request.is_expired(datetime.now(UTC)):
            logger.info("incident_request_expired", request_id=request_id)
            await self.delete_incident_request(request_id)
            raise IncidentRequestNotFoundError(f"incident request {request_id} expired")
        return request

    async def consume_incident_request(self, request_id: str) -> IncidentRequest:
        """Delete a draft and return it. Of several concurrent callers only one
        gets the draft; the others see IncidentRequestNotFoundError."""
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    delete(IncidentRequestRecord)
                    .where(IncidentRequestRecord.id == request_id)
                    .returning(IncidentRequestRecord)
                )
                row = result.scalar_one_or_none()
                request = _to_request(row) if row is not None else None
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to consume incident request {request_id}: {exc}"
            ) from exc
        if request is None:
            raise IncidentRequestNotFoundError(f"incident request {request_id} not found")
        if request.is_expired(datetime.now(UTC)):
            logger.info("incident_request_expired", request_id=request_id)
            raise IncidentRequestNotFoundError(f"incident request {request_id} expired")
        return request

    async def delete_incident_request(self, request_id: str) -> None:
        try:
            async with self._db() as db_session:
                await db_session.execute(
                    delete(IncidentRequestRecord).where(IncidentRequestRecord.id == request_id)
                )
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(
                f"failed to delete incident request {request_id}: {exc}"
            ) from exc

    async def save_user(self, user: User) -> None:
        try:
            async with self._db() as db_session:
                stmt = (
                    pg_insert(UserRecord)
                    .values(
                        slack_user_id=user.slack_user_id,
                        name=user.name,
                        email=user.email,
                        created_at=user.created_at,
                        updated_at=user.updated_at,
                    )
                    .on_conflict_do_update(
                        index_elements=["slack_user_id"],
                        set_={
                            "name": user.name,
                            "email": user.email,
                            "updated_at": user.updated_at,
                        },
                    )
                )
                await db_session.execute(stmt)
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to save user {user.slack_user_id}: {exc}") from exc

    async def get_user_by_slack_id(self, slack_user_id: str) -> User:
        try:
            async with self._db() as db_session:
                row = await db_session.get(UserRecord, slack_user_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to load user {slack_user_id}: {exc}") from exc
        if row is None:
            raise UserNotFoundError(f"user {slack_user_id} not found")
        return User(
            slack_user_id=row.slack_user_id,
            name=row.name,
            email=row.email,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    async def create_task(self, task: Task) -> None:
        try:
            async with self._db() as db_session:
                db_session.add(TaskRecord(**_task_values(task)))
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to create task {task.id}: {exc}") from exc

    async def get_task(self, incident_id: int, task_id: str) -> Task:
        try:
            async with self._db() as db_session:
                row = await db_session.get(TaskRecord, task_id)
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to load task {task_id}: {exc}") from exc
        if row is None or row.incident_id != incident_id:
            raise TaskNotFoundError(f"task {task_id} not found in incident {incident_id}")
        return _to_task(row)

    async def update_task(self, task: Task) -> None:
        values = _task_values(task)
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    update(TaskRecord)
                    .where(TaskRecord.id == task.id, TaskRecord.incident_id == task.incident_id)
                    .values(**{k: v for k, v in values.items() if k not in ("id", "incident_id")})
                    .returning(TaskRecord.id)
                )
                updated = result.scalar_one_or_none()
                await db_session.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to update task {task.id}: {exc}") from exc
        if updated is None:
            raise TaskNotFoundError(f"task {task.id} not found in incident {task.incident_id}")

    async def list_tasks(self, incident_id: int) -> list[Task]:
        """Tasks of one incident, oldest first."""
        try:
            async with self._db() as db_session:
                result = await db_session.execute(
                    select(TaskRecord)
                    .where(TaskRecord.incident_id == incident_id)
                    .order_by(TaskRecord.created_at, TaskRecord.id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"failed to list tasks of incident {incident_id}: {exc}") from exc
        return [_to_task(r) for r in rows]

    async def close(self) -> None:
        """Engine disposal is owned by whoever created the engine."""
