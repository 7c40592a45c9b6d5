from __future__ import annotations

import structlog

from lycaon.storage.repository import Repository

logger = structlog.get_logger()


class SequenceAllocator:
    """Hands out incident numbers.

    Uniqueness and monotonicity come from the repository's atomic increment;
    no in-process lock is taken. Storage errors propagate unchanged.
    """

    def __init__(self, repository: Repository) -> None:
        self._repo = repository

    async def next(self) -> int:
        number = await self._repo.next_incident_number()
        logger.debug("incident_number_allocated", incident_id=number)
        return number
