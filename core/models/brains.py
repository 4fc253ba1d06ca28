"""Brain models -- configuration and observable state of an execution context."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class BrainStatus(str, Enum):
    IDLE = "IDLE"
    EXECUTING = "EXECUTING"


class BrainConfig(BaseModel):
    """Static description of a brain, as declared in config.yaml."""

    id: str
    name: str = ""
    description: str = ""
    auto_mode: bool = False
    # Agent identity handed to the external runner; defaults to the brain id
    agent_id: str | None = None
    # Notification channel for this brain's task announcements
    channel_id: str | None = None


class BrainState(BaseModel):
    id: str
    name: str
    auto_mode: bool
    status: BrainStatus
    ready_tasks: int = 0
