"""Fire-and-forget execution of work that must outlive the HTTP request.

Slack expects interaction callbacks to be acknowledged within three seconds,
so slow work (channel creation, invitations, LLM calls) is dispatched onto
independent tasks. Each task runs in a copy of the caller's contextvars, so
structlog context bound by the request (request_id, user) is preserved.
Failures are logged and never propagate.
"""

from __future__ import annotations

import asyncio
import contextvars
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()


class AsyncDispatcher:
    def __init__(self, max_concurrency: int = 8) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1 (got {max_concurrency})")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        # Strong references: the loop only keeps weak ones
        self._tasks: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def dispatch(
        self, fn: Callable[[], Awaitable[Any]], *, name: str = "dispatch"
    ) -> asyncio.Task:
        """Schedule ``fn()`` on the running loop and return immediately."""
        ctx = contextvars.copy_context()
        task = asyncio.create_task(self._run(fn, name), name=name, context=ctx)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("dispatch_scheduled", unit=name, in_flight=len(self._tasks))
        return task

    async def _run(self, fn: Callable[[], Awaitable[Any]], name: str) -> None:
        async with self._semaphore:
            try:
                await fn()
            except asyncio.CancelledError:
                logger.warning("dispatch_cancelled", unit=name)
                raise
            except Exception:
                logger.exception("dispatch_failed", unit=name)
            else:
                logger.debug("dispatch_completed", unit=name)

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait for in-flight units. Returns False if some were cancelled on timeout."""
        if not self._tasks:
            return True
        pending_count = len(self._tasks)
        logger.info("dispatch_draining", in_flight=pending_count, timeout=timeout)
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not pending:
            return True

        logger.warning("dispatch_drain_timeout", cancelled=len(pending))
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        return False
