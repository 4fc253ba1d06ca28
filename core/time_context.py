"""TimeContext -- the single clock every scheduling decision reads.

In production mode, current_time is always real 'now'.
In manual mode, current_time is pinned and only moves when advanced, so
heartbeat ticks, retries and due queries can be stepped deterministically.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel


class TimeContext(BaseModel):
    """Controls what 'now' means for the scheduler, stores and executor."""

    mode: Literal["production", "manual"] = "production"
    pinned_time: datetime | None = None

    @classmethod
    def production(cls) -> TimeContext:
        """Create a production-mode TimeContext that follows the wall clock."""
        return cls(mode="production")

    @classmethod
    def at(cls, dt: datetime) -> TimeContext:
        """Create a manual-mode TimeContext pinned at a specific moment."""
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return cls(mode="manual", pinned_time=dt)

    @property
    def current_time(self) -> datetime:
        if self.mode == "manual" and self.pinned_time is not None:
            return self.pinned_time
        return datetime.now(timezone.utc)

    def advance(self, delta: timedelta) -> datetime:
        """Move pinned time forward by `delta` (only valid in manual mode)."""
        return self.advance_to(self.current_time + delta)

    def advance_to(self, dt: datetime) -> datetime:
        if self.mode != "manual":
            raise RuntimeError("Cannot advance time in production mode")
        self.pinned_time = dt
        return dt

    @property
    def is_manual(self) -> bool:
        return self.mode == "manual"
