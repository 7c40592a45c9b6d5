from __future__ import annotations

from enum import StrEnum

from lycaon.infra.errors import InvalidInputError


class IncidentStatus(StrEnum):
    triage = "triage"
    handling = "handling"
    monitoring = "monitoring"
    closed = "closed"

    @classmethod
    def parse(cls, value: str | IncidentStatus) -> IncidentStatus:
        """Coerce a raw tag into a status. Raises InvalidInputError on unknown tags."""
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidInputError(f"invalid status '{value}'") from exc


class InviteStatus(StrEnum):
    resolved = "resolved"
    success = "success"
    failed = "failed"


class TaskStatus(StrEnum):
    todo = "todo"
    follow_up = "follow-up"
    completed = "completed"

    @classmethod
    def parse(cls, value: str | TaskStatus) -> TaskStatus:
        try:
            return cls(value)
        except ValueError as exc:
            raise InvalidInputError(f"invalid task status '{value}'") from exc


def validate_incident_id(incident_id: int) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(incident_id, bool) or not isinstance(incident_id, int) or incident_id <= 0:
        raise InvalidInputError(f"incident ID must be a positive integer (got {incident_id!r})")
    return incident_id
