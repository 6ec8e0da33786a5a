"""Decision backend reached over HTTP through the retrying transport client."""

import json
import logging
from typing import Any

from pydantic import ValidationError

from ...errors import ApplicationError, InvalidResponseFormat, TransportFailure
from ...schemas import GenerateResponsePayload
from ...transport import TransportClient, TransportResult
from ..state import DecisionRequest, DecisionResponse
from .base import BackendAdapter

logger = logging.getLogger(__name__)


class HttpBackendAdapter(BackendAdapter):
    """Adapter that speaks the backend's JSON protocol."""

    def __init__(self, transport: TransportClient) -> None:
        self.transport = transport

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    async def check_connection(self) -> bool:
        return await self.transport.check_connection()

    async def register_agent(self, agent_id: str, initial_location: str) -> bool:
        result = await self.transport.send(
            "POST",
            "/agent/register",
            {"agent_id": agent_id, "initial_location": initial_location},
        )
        if result.success:
            logger.info("agent registered with backend agent=%s", agent_id)
        else:
            logger.warning("failed to register agent with backend agent=%s response=%s", agent_id, result.body[:200])
        return result.success

    async def deregister_agent(self, agent_id: str) -> bool:
        result = await self.transport.send("DELETE", f"/agent/{agent_id}")
        if result.success:
            logger.info("agent unregistered from backend agent=%s", agent_id)
        else:
            logger.warning("failed to unregister agent from backend agent=%s response=%s", agent_id, result.body[:200])
        return result.success

    async def prime_agents(self, agent_ids: list[str], force: bool = False) -> bool:
        if not agent_ids:
            return True
        batch = await self.transport.send("POST", "/agents/prime", {"agent_ids": list(agent_ids), "force": force})
        if batch.success:
            logger.info("primed agents count=%s", len(agent_ids))
            return True
        logger.warning("batch priming failed, priming per agent status=%s body=%s", batch.status_code, batch.body[:200])
        if batch.transport_error:
            return False
        for agent_id in agent_ids:
            result = await self.transport.send("POST", f"/profiles/{agent_id}", {"force": force})
            if not result.success:
                logger.warning("priming failed agent=%s body=%s", agent_id, result.body[:200])
                return False
        return True

    async def decide(self, request: DecisionRequest) -> DecisionResponse:
        result = await self.transport.send("POST", "/generate", request.to_payload())
        self._raise_for_result(result)
        try:
            payload = GenerateResponsePayload.model_validate(json.loads(result.body))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise InvalidResponseFormat(result.body, f"{type(exc).__name__}: {str(exc)[:160]}") from exc
        return DecisionResponse(
            agent_id=payload.agent_id or request.agent_id,
            text=payload.text,
            action=payload.action or "",
            location=payload.location or "",
        )

    async def push_environment(self, snapshot: dict[str, Any]) -> bool:
        result = await self.transport.send("POST", "/env/update", snapshot)
        if not result.success:
            logger.warning("failed to update environment state response=%s", result.body[:200])
        return result.success

    def stats(self) -> dict[str, Any]:
        return self.transport.stats()

    async def aclose(self) -> None:
        await self.transport.aclose()

    @staticmethod
    def _raise_for_result(result: TransportResult) -> None:
        if result.success:
            return
        if result.transport_error or result.status_code is None:
            raise TransportFailure(result.body)
        raise ApplicationError(result.status_code, result.body)
