"""Time source and cooperative waits.

Every delay in the scheduler, recovery controller and scanner goes through a
Clock so tests can substitute a deterministic one instead of sleeping.
"""

import asyncio
from datetime import datetime, UTC
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend the caller for the given number of seconds."""
        ...


class SystemClock:
    """Wall clock backed by asyncio.sleep."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    async def sleep(self, seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
