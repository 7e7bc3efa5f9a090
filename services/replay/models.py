"""Data models for replay service."""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PollState(str, Enum):
    """Outcome of one poll cycle."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PollOutcome(BaseModel):
    state: PollState
    new_events: int = 0
    rejected: int = 0
    cursor: Optional[str] = None
    rebuilt: bool = False
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class ReplayStatus(BaseModel):
    topic_id: str
    cursor: Optional[str]
    fetch_cursor: Optional[str] = None
    events: int
    applications: int
    models: int
    anomalies: int
    in_flight: bool
    polls: int
    failures: int
    last_poll: Optional[PollOutcome] = None
