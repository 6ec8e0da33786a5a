"""Shared data contracts for agent records and decision exchanges."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class Vec3:
    x: float
    y: float = 0.0
    z: float = 0.0

    def distance_to(self, other: "Vec3") -> float:
        return math.sqrt((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2)

    def to_dict(self) -> dict[str, float]:
        return {"x": round(self.x, 2), "y": round(self.y, 2), "z": round(self.z, 2)}


class AgentStatus(str, Enum):
    idle = "idle"
    moving = "moving"
    conversing = "conversing"
    error = "error"


class ActionType(str, Enum):
    move = "move"
    nothing = "nothing"
    converse = "converse"


@dataclass
class Agent:
    """Mutable per-agent record owned by the agent store."""

    agent_id: str
    personality: str = ""
    location: str = ""
    status: AgentStatus = AgentStatus.idle
    status_text: str = "Idle"
    feedback: str = "No action taken yet."
    desired_location: str = ""
    is_moving: bool = False
    is_in_conversation: bool = False
    conversation_partner_id: Optional[str] = None
    conversation_rounds_remaining: int = 0
    conversation_lead: bool = False
    inbox: list[str] = field(default_factory=list)
    system_prompt_sent: bool = False
    primed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.agent_id,
            "personality": self.personality,
            "location": self.location,
            "status": self.status.value,
            "status_text": self.status_text,
            "feedback": self.feedback,
            "desired_location": self.desired_location,
            "is_moving": self.is_moving,
            "is_in_conversation": self.is_in_conversation,
            "conversation_partner": self.conversation_partner_id,
            "conversation_rounds_remaining": self.conversation_rounds_remaining,
        }


@dataclass(frozen=True)
class DecisionRequest:
    """One decision request, built fresh per tick and never mutated."""

    agent_id: str
    user_input: str
    system_prompt: Optional[str] = None
    task: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"agent_id": self.agent_id, "user_input": self.user_input}
        if self.system_prompt:
            payload["system_prompt"] = self.system_prompt
        if self.task:
            payload["task"] = self.task
        return payload


@dataclass
class DecisionResponse:
    """Decoded backend answer for a decision request."""

    agent_id: str
    text: str
    action: str = ""
    location: str = ""


@dataclass
class ParsedDecision:
    """Normalized action extracted from a decision response."""

    action: str
    param: str
    reasoning: list[str] = field(default_factory=list)
