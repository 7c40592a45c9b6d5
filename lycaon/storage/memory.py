"""In-memory Repository for tests and local development."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from lycaon.domain.models import Incident, IncidentRequest, StatusHistory, Task, User
from lycaon.domain.types import IncidentStatus
from lycaon.infra.errors import (
    IncidentNotFoundError,
    IncidentRequestNotFoundError,
    TaskNotFoundError,
    UserNotFoundError,
)
from lycaon.storage.repository import check_incident_fields


class MemoryRepository:
    """Dict-backed repository. Values are copied in and out so callers never
    share mutable state with the store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counter = 0
        self._incidents: dict[int, Incident] = {}
        self._histories: dict[int, list[StatusHistory]] = {}
        self._requests: dict[str, IncidentRequest] = {}
        self._users: dict[str, User] = {}
        self._tasks: dict[int, dict[str, Task]] = {}

    async def next_incident_number(self) -> int:
        with self._lock:
            self._counter += 1
            return self._counter

    async def put_incident(self, incident: Incident) -> None:
        with self._lock:
            stored = copy.deepcopy(incident)
            existing = self._incidents.get(incident.id)
            if existing is not None:
                stored.status = existing.status
            self._incidents[incident.id] = stored

    def _locked_incident(self, incident_id: int) -> Incident:
        incident = self._incidents.get(incident_id)
        if incident is None:
            raise IncidentNotFoundError(f"incident {incident_id} not found")
        return incident

    async def update_incident_fields(self, incident_id: int, **fields: Any) -> None:
        check_incident_fields(fields)
        with self._lock:
            incident = self._locked_incident(incident_id)
            for name, value in fields.items():
                setattr(incident, name, copy.deepcopy(value))
            if "joined_members" in fields:
                incident.joined_members = set(incident.joined_members)

    async def add_joined_members(self, incident_id: int, user_ids: Iterable[str]) -> None:
        with self._lock:
            self._locked_incident(incident_id).joined_members.update(user_ids)

    async def remove_joined_member(self, incident_id: int, user_id: str) -> None:
        with self._lock:
            self._locked_incident(incident_id).joined_members.discard(user_id)

    async def get_incident(self, incident_id: int) -> Incident:
        with self._lock:
            return copy.deepcopy(self._locked_incident(incident_id))

    async def get_incident_by_channel(self, channel_id: str) -> Incident:
        with self._lock:
            for incident in self._incidents.values():
                if incident.channel_id == channel_id:
                    return copy.deepcopy(incident)
        raise IncidentNotFoundError(f"no incident for channel {channel_id}")

    async def list_incidents_since(self, since: datetime) -> list[Incident]:
        with self._lock:
            found = [
                copy.deepcopy(i) for i in self._incidents.values() if i.created_at >= since
            ]
        found.sort(key=lambda i: i.created_at, reverse=True)
        return found

    async def update_incident_status(self, incident_id: int, status: IncidentStatus) -> None:
        with self._lock:
            self._locked_incident(incident_id).status = status

    async def add_status_history(self, history: StatusHistory) -> None:
        with self._lock:
            self._histories.setdefault(history.incident_id, []).append(history)

    async def get_status_histories(self, incident_id: int) -> list[StatusHistory]:
        with self._lock:
            entries = list(self._histories.get(incident_id, []))
        # sort is stable: insertion order breaks changed_at ties
        entries.sort(key=lambda h: h.changed_at)
        return entries

    async def save_incident_request(self, request: IncidentRequest) -> None:
        with self._lock:
            self._requests[request.id] = copy.deepcopy(request)

    async def get_incident_request(self, request_id: str) -> IncidentRequest:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise IncidentRequestNotFoundError(
                    f"incident request {request_id} not found"
                )
            if request.is_expired(datetime.now(UTC)):
                del self._requests[request_id]
                raise IncidentRequestNotFoundError(f"incident request {request_id} expired")
            return copy.deepcopy(request)

    async def consume_incident_request(self, request_id: str) -> IncidentRequest:
        with self._lock:
            request = self._requests.pop(request_id, None)
        if request is None:
            raise IncidentRequestNotFoundError(f"incident request {request_id} not found")
        if request.is_expired(datetime.now(UTC)):
            raise IncidentRequestNotFoundError(f"incident request {request_id} expired")
        return request

    async def delete_incident_request(self, request_id: str) -> None:
        with self._lock:
            self._requests.pop(request_id, None)

    async def save_user(self, user: User) -> None:
        with self._lock:
            existing = self._users.get(user.slack_user_id)
            stored = copy.deepcopy(user)
            if existing is not None:
                stored.created_at = existing.created_at
            self._users[user.slack_user_id] = stored

    async def get_user_by_slack_id(self, slack_user_id: str) -> User:
        with self._lock:
            user = self._users.get(slack_user_id)
            if user is None:
                raise UserNotFoundError(f"user {slack_user_id} not found")
            return copy.deepcopy(user)

    async def create_task(self, task: Task) -> None:
        with self._lock:
            self._tasks.setdefault(task.incident_id, {})[task.id] = copy.deepcopy(task)

    async def get_task(self, incident_id: int, task_id: str) -> Task:
        with self._lock:
            task = self._tasks.get(incident_id, {}).get(task_id)
            if task is None:
                raise TaskNotFoundError(f"task {task_id} not found in incident {incident_id}")
            return copy.deepcopy(task)

    async def update_task(self, task: Task) -> None:
        with self._lock:
            tasks = self._tasks.get(task.incident_id, {})
            if task.id not in tasks:
                raise TaskNotFoundError(
                    f"task {task.id} not found in incident {task.incident_id}"
                )
            tasks[task.id] = copy.deepcopy(task)

    async def list_tasks(self, incident_id: int) -> list[Task]:
        with self._lock:
            tasks = [copy.deepcopy(t) for t in self._tasks.get(incident_id, {}).values()]
        tasks.sort(key=lambda t: t.created_at)
        return tasks

    async def close(self) -> None:
        pass
