"""Wires the orchestration core together and owns its background tasks."""

import asyncio
import logging
import random
from collections.abc import Callable
from typing import Any, Optional

from sqlmodel import Session

from .agents.adapters.base import BackendAdapter
from .agents.adapters.http_adapter import HttpBackendAdapter
from .agents.adapters.mock_adapter import MockBackendAdapter
from .agents.store import AgentStore
from .config import settings
from .dispatcher import DecisionDispatcher
from .events import EventRecorder
from .locations import LocationRegistry
from .registry import AgentRegistry
from .scheduler import TickScheduler
from .transport import TransportClient
from .world.movement import KinematicMovement
from .world.perception import EnvironmentReporter
from .world.presentation import Presenter

logger = logging.getLogger(__name__)


def build_backend(mode: Optional[str] = None) -> BackendAdapter:
    mode = (mode or settings.backend_mode).lower()
    if mode == "mock":
        return MockBackendAdapter()
    if mode != "http":
        logger.warning("unknown backend mode=%s, using http", mode)
    transport = TransportClient(
        settings.backend_url,
        max_retries=settings.backend_max_retries,
        retry_delay=settings.backend_retry_delay_ms / 1000.0,
        timeout=settings.backend_timeout_ms / 1000.0,
        health_timeout=settings.backend_health_timeout_ms / 1000.0,
    )
    return HttpBackendAdapter(transport)


class SimulationRuntime:
    """Everything one running orchestrator needs, built from settings."""

    def __init__(
        self,
        backend: BackendAdapter,
        *,
        session_factory: Optional[Callable[[], Session]] = None,
        locations: Optional[LocationRegistry] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.backend = backend
        self.store = AgentStore()
        self.locations = locations or LocationRegistry()
        self.movement = KinematicMovement(settings.movement_speed, settings.arrival_tolerance)
        self.presenter = Presenter()
        self.recorder = EventRecorder(session_factory)
        self.perception = EnvironmentReporter(
            self.store,
            self.movement,
            self.locations,
            agent_radius=settings.agent_detection_radius,
            object_radius=settings.object_detection_radius,
            field_of_view=settings.field_of_view,
            require_line_of_sight=settings.require_line_of_sight,
        )
        self.dispatcher = DecisionDispatcher(
            self.store,
            backend,
            self.movement,
            self.perception,
            self.presenter,
            self.locations,
            self.recorder,
            conversation_rounds=settings.conversation_rounds,
            proximity_radius=settings.proximity_radius,
            speech_duration=settings.speech_duration,
            forward_conversation_opening=settings.forward_conversation_opening,
            task=settings.default_task,
        )
        self.scheduler = TickScheduler(
            self.store,
            backend,
            self.dispatcher,
            self.recorder,
            tick_interval=settings.tick_interval_ms / 1000.0,
            pause_on_error=settings.pause_on_error,
        )
        self.registry = AgentRegistry(
            self.store,
            backend,
            self.dispatcher,
            self.movement,
            self.locations,
            self.presenter,
            self.recorder,
            max_agents=settings.max_agents,
            rng=rng,
        )
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(cls, session_factory: Optional[Callable[[], Session]] = None) -> "SimulationRuntime":
        return cls(build_backend(), session_factory=session_factory)

    async def startup(self) -> None:
        connected = await self.backend.check_connection()
        logger.info("backend connection checked connected=%s mode=%s", connected, settings.backend_mode)
        if settings.auto_initialize_agents:
            await self.registry.initialize_default_agents()
        self._tasks.append(asyncio.create_task(self.movement.run()))
        if settings.send_environment_updates:
            self._tasks.append(asyncio.create_task(self._publish_environment_loop()))
        if settings.run_automatically:
            self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()
        await self.backend.aclose()

    async def publish_environment(self) -> bool:
        if not self.backend.is_connected:
            return False
        return await self.backend.push_environment(self.perception.get_environment_state())

    async def _publish_environment_loop(self) -> None:
        interval = settings.environment_update_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            await self.publish_environment()

    def health(self) -> dict[str, Any]:
        return {
            "backend": self.backend.stats(),
            "agents": len(self.store),
            "max_agents": self.registry.max_agents,
            "scheduler": self.scheduler.snapshot(),
        }
