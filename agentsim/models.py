from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    lifecycle = "lifecycle"
    decision = "decision"
    move = "move"
    arrival = "arrival"
    conversation = "conversation"
    speech = "speech"
    failure = "failure"
    scheduler = "scheduler"


class DecisionEvent(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    tick: int = Field(default=0, index=True)
    agent_id: Optional[str] = Field(default=None, index=True)
    event_type: EventType
    content: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
