"""Pydantic schemas for the control surface and the decision backend wire format."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class AgentRegister(BaseModel):
    model_config = ConfigDict(extra="forbid")

    agentId: str = Field(min_length=1, max_length=128)
    personality: str = ""
    initialLocation: str = ""


class MoveCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    location: str = Field(min_length=1)


class SpeakCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1, max_length=2000)


class ConverseCommand(BaseModel):
    model_config = ConfigDict(extra="forbid")

    targetAgent: str = Field(min_length=1)


class LocationCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    x: float
    y: float = 0.0
    z: float = 0.0


class ApiEnvelope(BaseModel):
    status: Literal["success", "error"] = "success"
    message: str = ""
    data: Any = None


class GenerateResponsePayload(BaseModel):
    """Body of ``POST /generate`` as returned by the decision backend."""

    model_config = ConfigDict(extra="ignore")

    agent_id: str = ""
    text: str
    action: str = ""
    location: str | None = ""


def success(message: str = "", data: Any = None) -> dict[str, Any]:
    return ApiEnvelope(status="success", message=message, data=data).model_dump()


def error(message: str, data: Any = None) -> dict[str, Any]:
    return ApiEnvelope(status="error", message=message, data=data).model_dump()
