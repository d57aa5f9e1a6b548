"""Time source used by the stream and parser, swappable in tests."""

import asyncio
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Protocol for time sources."""

    def now(self) -> datetime:
        """Return the current time (timezone-aware)."""
        ...

    async def sleep(self, seconds: float) -> None:
        """Suspend for the given number of seconds."""
        ...


class SystemClock:
    """Wall clock backed by asyncio."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
