"""Incident status machine with an append-only history.

Any status may move to any other status; only identity transitions are
rejected. The history entry is written before the status field. If the
second write fails the history already records the intended state and no
rollback is attempted.
"""

from __future__ import annotations

import structlog

from lycaon.constants import INCIDENT_CREATED_NOTE
from lycaon.domain.models import Incident, StatusHistory, StatusHistoryWithUser, User
from lycaon.domain.types import IncidentStatus, validate_incident_id
from lycaon.infra.errors import (
    InvalidInputError,
    NoOpTransitionError,
    StatusUpdateError,
)
from lycaon.storage.repository import Repository

logger = structlog.get_logger()


class StatusLedger:
    def __init__(self, repository: Repository) -> None:
        self._repo = repository

    async def transition(
        self,
        incident_id: int,
        new_status: IncidentStatus | str,
        actor: str,
        note: str = "",
    ) -> StatusHistory:
        """Move an incident to new_status and append the matching history entry.

        Raises:
            InvalidInputError: bad id, unknown status or empty actor.
            IncidentNotFoundError: no such incident.
            NoOpTransitionError: new_status equals the current status.
            StatusUpdateError: either write failed.
        """
        validate_incident_id(incident_id)
        status = IncidentStatus.parse(new_status)
        if not actor:
            raise InvalidInputError("actor user ID is required")

        incident = await self._repo.get_incident(incident_id)
        if incident.status == status:
            raise NoOpTransitionError(f"incident {incident_id} is already {status.value}")

        entry = StatusHistory.new(incident_id, status, actor, note)
        try:
            await self._repo.add_status_history(entry)
        except Exception as exc:
            logger.error(
                "status_history_append_failed",
                incident_id=incident_id,
                status=status.value,
                error=str(exc),
            )
            raise StatusUpdateError(
                f"failed to record status history for incident {incident_id}: {exc}"
            ) from exc

        try:
            await self._repo.update_incident_status(incident_id, status)
        except Exception as exc:
            # History already holds the intended state; status field is stale
            logger.error(
                "incident_status_update_failed",
                incident_id=incident_id,
                status=status.value,
                history_id=entry.id,
                error=str(exc),
            )
            raise StatusUpdateError(
                f"failed to update status of incident {incident_id}: {exc}"
            ) from exc

        logger.info(
            "incident_status_changed",
            incident_id=incident_id,
            old_status=incident.status.value,
            new_status=status.value,
            changed_by=actor,
        )
        return entry

    async def record_initial(self, incident: Incident) -> StatusHistory:
        """Write the creation entry. Storage errors propagate to the caller."""
        entry = StatusHistory.new(
            incident.id,
            incident.status,
            incident.created_by,
            INCIDENT_CREATED_NOTE,
            changed_at=incident.created_at,
        )
        await self._repo.add_status_history(entry)
        return entry

    async def history(self, incident_id: int) -> list[StatusHistoryWithUser]:
        """Oldest-first history, each entry paired with its actor.

        Actor lookup never fails the call: unknown users fall back to the raw ID.
        """
        validate_incident_id(incident_id)
        entries = await self._repo.get_status_histories(incident_id)

        users: dict[str, User] = {}
        result: list[StatusHistoryWithUser] = []
        for entry in entries:
            user = users.get(entry.changed_by)
            if user is None:
                user = await self._lookup_user(entry.changed_by)
                users[entry.changed_by] = user
            result.append(StatusHistoryWithUser(history=entry, user=user))
        return result

    async def _lookup_user(self, slack_user_id: str) -> User:
        try:
            return await self._repo.get_user_by_slack_id(slack_user_id)
        except Exception:
            logger.debug("status_history_user_fallback", user_id=slack_user_id)
            return User(slack_user_id=slack_user_id, name=slack_user_id)
