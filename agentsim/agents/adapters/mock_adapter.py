"""Deterministic in-process backend for local development and repeatable tests.

Produces decision text in the same grammar as the real backend without any
network calls. Scripted replies can be queued per agent; otherwise a small
rule-based policy reads the feedback snapshot.
"""

import re
from collections import defaultdict, deque
from typing import Any, Optional

from ..state import DecisionRequest, DecisionResponse
from .base import BackendAdapter

_NEARBY = re.compile(r"Nearby agents:\s*(.*?)\. Nearby objects:")
_ROTATION = ["library", "park", "gym", "cantina"]


class MockBackendAdapter(BackendAdapter):
    """Simple deterministic policy plus optional per-agent scripts."""

    def __init__(self, scripts: Optional[dict[str, list[str]]] = None) -> None:
        self._scripts: dict[str, deque[str]] = defaultdict(deque)
        for agent_id, replies in (scripts or {}).items():
            self._scripts[agent_id].extend(replies)
        self._step: dict[str, int] = defaultdict(int)
        self.connected = True
        self.registered: list[str] = []
        self.deregistered: list[str] = []
        self.primed: list[str] = []
        self.requests: list[DecisionRequest] = []
        self.environment_updates: list[dict[str, Any]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def check_connection(self) -> bool:
        return self.connected

    def queue(self, agent_id: str, *replies: str) -> None:
        self._scripts[agent_id].extend(replies)

    async def register_agent(self, agent_id: str, initial_location: str) -> bool:
        self.registered.append(agent_id)
        return True

    async def deregister_agent(self, agent_id: str) -> bool:
        self.deregistered.append(agent_id)
        return True

    async def prime_agents(self, agent_ids: list[str], force: bool = False) -> bool:
        self.primed.extend(agent_ids)
        return True

    async def decide(self, request: DecisionRequest) -> DecisionResponse:
        self.requests.append(request)
        script = self._scripts.get(request.agent_id)
        if script:
            text = script.popleft()
        else:
            text = self._policy(request)
        return DecisionResponse(agent_id=request.agent_id, text=text)

    async def push_environment(self, snapshot: dict[str, Any]) -> bool:
        self.environment_updates.append(snapshot)
        return True

    def stats(self) -> dict[str, Any]:
        return {
            "backend_url": "mock://",
            "connected": self.connected,
            "successful_requests": len(self.requests),
            "failed_requests": 0,
        }

    def _policy(self, request: DecisionRequest) -> str:
        step = self._step[request.agent_id]
        self._step[request.agent_id] += 1
        if "[CONVERSE mode with" in request.user_input:
            return "I am listening to my partner.\nNOTHING: listening"
        nearby = _NEARBY.search(request.user_input)
        peers: list[str] = []
        if nearby and nearby.group(1).strip() != "none":
            peers = [chunk.split(" (")[0].strip() for chunk in nearby.group(1).split(";") if chunk.strip()]
        if peers and step % 3 == 2:
            return f"{peers[0]} is close, I should compare notes.\nCONVERSE: {peers[0]}"
        if "Moving to" in request.user_input:
            return "Still walking, nothing else to do.\nNOTHING: waiting"
        target = _ROTATION[(step + len(request.agent_id)) % len(_ROTATION)]
        return f"The {target} may hold a clue.\nMOVE: {target}"
