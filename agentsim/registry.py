"""Agent creation and removal."""

import logging
import random
from typing import Optional

from .agents.adapters.base import BackendAdapter
from .agents.state import Agent, Vec3
from .agents.store import AgentStore
from .config import settings
from .dispatcher import DecisionDispatcher
from .errors import ApplicationError, CapacityExceeded, DuplicateId, TransportFailure
from .events import EventRecorder
from .locations import LocationRegistry, normalize_location
from .models import EventType
from .world.movement import KinematicMovement
from .world.presentation import Presenter

logger = logging.getLogger(__name__)

SPAWN_RADIUS = 10.0

DEFAULT_AGENTS = [
    ("Agent_A", "Friendly and helpful. Expert in Mars environmental systems.", "library"),
    ("Agent_B", "Analytical and logical. Specializes in electronics and maintenance.", "cantina"),
]


def random_offset(rng: random.Random, radius: float) -> Vec3:
    """Uniform point inside a sphere of ``radius``."""

    while True:
        x, y, z = (rng.uniform(-1.0, 1.0) for _ in range(3))
        if x * x + y * y + z * z <= 1.0:
            return Vec3(x * radius, y * radius, z * radius)


class AgentRegistry:
    def __init__(
        self,
        store: AgentStore,
        backend: BackendAdapter,
        dispatcher: DecisionDispatcher,
        movement: KinematicMovement,
        locations: LocationRegistry,
        presenter: Presenter,
        recorder: Optional[EventRecorder] = None,
        *,
        max_agents: int = settings.max_agents,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.store = store
        self.backend = backend
        self.dispatcher = dispatcher
        self.movement = movement
        self.locations = locations
        self.presenter = presenter
        self.recorder = recorder or dispatcher.recorder
        self.max_agents = max_agents
        self.rng = rng or random.Random(0)
        self._pending: set[str] = set()

    @property
    def capacity_left(self) -> int:
        return max(0, self.max_agents - len(self.store) - len(self._pending))

    async def create_agent(self, agent_id: str, personality: str = "", initial_location: str = "") -> Agent:
        """Create, place and register a new agent.

        Capacity and id uniqueness are checked before anything else happens;
        creations still waiting on the backend count toward both.
        """

        agent_id = (agent_id or "").strip()
        if not agent_id:
            raise ValueError("agent_id must not be empty")
        if len(self.store) + len(self._pending) >= self.max_agents:
            logger.warning("cannot create agent=%s, maximum of %s reached", agent_id, self.max_agents)
            raise CapacityExceeded(f"Maximum number of agents reached ({self.max_agents})")
        if agent_id in self.store or agent_id in self._pending:
            logger.warning("agent already exists agent=%s", agent_id)
            raise DuplicateId(f"Agent with ID {agent_id} already exists")

        self._pending.add(agent_id)
        try:
            location_name = normalize_location(initial_location)
            position = self.locations.get(location_name) if location_name else None
            if position is None:
                origin = self.locations.get("center") or Vec3(0.0, 0.0, 0.0)
                offset = random_offset(self.rng, SPAWN_RADIUS)
                position = Vec3(origin.x + offset.x, origin.y + offset.y, origin.z + offset.z)
                location_name = ""

            agent = Agent(agent_id=agent_id, personality=personality, location=location_name)
            if location_name:
                agent.status_text = f"At {location_name}"

            try:
                registered = await self.backend.register_agent(agent_id, initial_location or location_name)
            except (TransportFailure, ApplicationError) as exc:
                logger.warning("backend registration failed agent=%s error=%s", agent_id, exc)
                registered = False
            if not registered:
                logger.warning("agent created without backend registration agent=%s", agent_id)

            self.movement.place(agent_id, position)
            self.store.add(agent)
        finally:
            self._pending.discard(agent_id)

        self.presenter.update_status(agent_id, agent.status_text)
        self.recorder.record(EventType.lifecycle, f"created at {location_name or position.to_dict()}", agent_id)
        logger.info("created agent=%s location=%s", agent_id, location_name or "spawn")
        return agent

    async def remove_agent(self, agent_id: str) -> bool:
        agent = self.store.get(agent_id)
        if agent is None:
            logger.warning("cannot remove agent=%s, not found", agent_id)
            return False

        partner_id = self.store.end_conversation(agent_id)
        partner = self.store.get(partner_id or "")
        if partner is not None:
            partner.feedback = f"Conversation ended: {agent_id} left the simulation."
            self.presenter.update_status(partner.agent_id, partner.status_text)

        self.dispatcher.cancel(agent_id)
        self.movement.remove(agent_id)
        self.store.remove(agent_id)
        self.presenter.forget(agent_id)

        try:
            await self.backend.deregister_agent(agent_id)
        except (TransportFailure, ApplicationError) as exc:
            logger.warning("backend deregistration failed agent=%s error=%s", agent_id, exc)

        self.recorder.record(EventType.lifecycle, "removed", agent_id)
        logger.info("removed agent=%s", agent_id)
        return True

    async def initialize_default_agents(self) -> list[Agent]:
        created = []
        for agent_id, personality, location in DEFAULT_AGENTS:
            if agent_id in self.store:
                continue
            try:
                created.append(await self.create_agent(agent_id, personality, location))
            except (CapacityExceeded, DuplicateId) as exc:
                logger.warning("default agent skipped agent=%s reason=%s", agent_id, exc)
        return created
