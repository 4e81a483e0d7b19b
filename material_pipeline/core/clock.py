from __future__ import annotations

from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC. Every timestamp the queue writes comes from a Clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
