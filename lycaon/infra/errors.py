"""Custom exception hierarchy for lycaon.

All application-specific exceptions inherit from LycaonError,
which carries an error code for HTTP / Slack error mapping.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lycaon.domain.models import Incident


class LycaonError(Exception):
    """Base exception for all lycaon errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR") -> None:
        super().__init__(message)
        self.code = code


class InvalidInputError(LycaonError):
    """Bad input shape: empty identifiers, unknown severity/category, invalid status."""

    def __init__(self, message: str, *, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message, code=code)


class NoOpTransitionError(InvalidInputError):
    """Requested status equals the current status."""

    def __init__(self, message: str = "Status is already set to the same value") -> None:
        super().__init__(message, code="NOOP_TRANSITION")


class NotFoundError(LycaonError):
    """Requested record does not exist (or has expired)."""

    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(message, code=code)


class IncidentNotFoundError(NotFoundError):
    def __init__(self, message: str = "Incident not found") -> None:
        super().__init__(message, code="INCIDENT_NOT_FOUND")


class IncidentRequestNotFoundError(NotFoundError):
    def __init__(self, message: str = "Incident request not found") -> None:
        super().__init__(message, code="INCIDENT_REQUEST_NOT_FOUND")


class UserNotFoundError(NotFoundError):
    def __init__(self, message: str = "User not found") -> None:
        super().__init__(message, code="USER_NOT_FOUND")


class TaskNotFoundError(NotFoundError):
    def __init__(self, message: str = "Task not found") -> None:
        super().__init__(message, code="TASK_NOT_FOUND")


class StorageError(LycaonError):
    """Errors in the persistence layer."""

    def __init__(self, message: str, *, code: str = "STORAGE_ERROR") -> None:
        super().__init__(message, code=code)


class ChannelError(LycaonError):
    """Errors from the Slack Web API adapter."""

    def __init__(self, message: str, *, code: str = "CHANNEL_ERROR") -> None:
        super().__init__(message, code=code)


class LLMError(LycaonError):
    """Errors from LLM API calls (timeouts, rate limits, failures)."""

    def __init__(self, message: str, *, code: str = "LLM_ERROR") -> None:
        super().__init__(message, code=code)


class GatewayError(LycaonError):
    """Errors in the HTTP / Slack callback layer."""

    def __init__(self, message: str, *, code: str = "GATEWAY_ERROR") -> None:
        super().__init__(message, code=code)


class StatusUpdateError(LycaonError):
    """A status history append or status field update failed."""

    def __init__(self, message: str, *, code: str = "STATUS_UPDATE_FAILED") -> None:
        super().__init__(message, code=code)


class PipelineError(LycaonError):
    """Hard failure of one step of the incident creation pipeline."""

    def __init__(self, message: str, *, step: str, code: str = "PIPELINE_FAILED") -> None:
        super().__init__(message, code=code)
        self.step = step


class InconsistentIncidentError(PipelineError):
    """Incident was persisted but its initial status history could not be written."""

    def __init__(self, message: str, *, incident: Incident) -> None:
        super().__init__(message, step="initial_history", code="INCIDENT_INCONSISTENT")
        self.incident = incident
