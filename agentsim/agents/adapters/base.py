"""Shared interface for pluggable decision backends."""

from typing import Any

from ..state import DecisionRequest, DecisionResponse


class BackendAdapter:
    """Minimal interface implemented by all decision backends.

    ``decide`` raises ``TransportFailure``, ``ApplicationError`` or
    ``InvalidResponseFormat``. The lifecycle calls return ``True`` on
    success and never raise for backend-side failures.
    """

    @property
    def is_connected(self) -> bool:
        raise NotImplementedError

    async def check_connection(self) -> bool:
        raise NotImplementedError

    async def register_agent(self, agent_id: str, initial_location: str) -> bool:
        raise NotImplementedError

    async def deregister_agent(self, agent_id: str) -> bool:
        raise NotImplementedError

    async def prime_agents(self, agent_ids: list[str], force: bool = False) -> bool:
        raise NotImplementedError

    async def decide(self, request: DecisionRequest) -> DecisionResponse:
        raise NotImplementedError

    async def push_environment(self, snapshot: dict[str, Any]) -> bool:
        raise NotImplementedError

    def stats(self) -> dict[str, Any]:
        return {}

    async def aclose(self) -> None:
        return None
