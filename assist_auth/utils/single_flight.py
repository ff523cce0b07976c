"""
Collapse concurrent calls onto one in-flight task.

Used for session validation and token recovery: when several requests
observe a 401 at the same time only one refresh runs, and every caller
receives its result. Refresh tokens rotate on use, so duplicate refreshes
would invalidate each other.

Usage:
    recovery = SingleFlight("session-recovery")
    ok = await recovery.run(self._recover_session)
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SingleFlight:
    """Re-entrancy guard: at most one running task per instance."""

    def __init__(self, name: str):
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Start `factory()` unless a run is already in flight, then await the shared result."""
        if self.in_flight:
            logger.debug(f"{self.name} already in progress, joining")
            return await asyncio.shield(self._task)

        task = asyncio.ensure_future(factory())
        self._task = task
        try:
            return await asyncio.shield(task)
        finally:
            # Cleared even when the task raised
            if self._task is task and task.done():
                self._task = None
