"""Tick scheduler with a one-time priming gate."""

import asyncio
import logging
from enum import Enum
from typing import Optional

from .agents.adapters.base import BackendAdapter
from .agents.store import AgentStore
from .config import settings
from .dispatcher import DecisionDispatcher
from .errors import ApplicationError, TransportFailure
from .events import EventRecorder
from .models import EventType

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    idle = "idle"
    priming = "priming"
    running = "running"
    paused = "paused"
    stopped = "stopped"


class TickScheduler:
    """Offers every active agent one decision per tick.

    The first tick primes the whole fleet on the backend; until that
    succeeds no decisions are dispatched. After priming, ticks run
    either on demand via ``trigger`` or on a fixed interval via ``start``.
    """

    def __init__(
        self,
        store: AgentStore,
        backend: BackendAdapter,
        dispatcher: DecisionDispatcher,
        recorder: Optional[EventRecorder] = None,
        *,
        tick_interval: float = settings.tick_interval_ms / 1000.0,
        pause_on_error: bool = settings.pause_on_error,
    ) -> None:
        self.store = store
        self.backend = backend
        self.dispatcher = dispatcher
        self.recorder = recorder or dispatcher.recorder
        self.tick_interval = tick_interval
        self.pause_on_error = pause_on_error
        self.state = SchedulerState.idle
        self.tick_count = 0
        self.skipped_ticks = 0
        self.last_error: Optional[str] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def is_primed(self) -> bool:
        return self.state in (SchedulerState.running, SchedulerState.paused)

    @property
    def is_looping(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "tick": self.tick_count,
            "skipped_ticks": self.skipped_ticks,
            "automatic": self.is_looping,
            "tick_interval": self.tick_interval,
            "in_flight": self.dispatcher.in_flight(),
            "last_error": self.last_error,
        }

    async def trigger(self) -> list[asyncio.Task]:
        """Run one tick now; returns the dispatched decision tasks."""

        if self.state in (SchedulerState.stopped, SchedulerState.paused):
            logger.info("tick ignored state=%s", self.state.value)
            return []
        if self.state == SchedulerState.priming:
            logger.info("tick ignored while priming")
            return []
        if self.state == SchedulerState.idle:
            if not await self.prime():
                return []
        try:
            return await self.run_tick()
        except Exception as exc:
            self._tick_failed(exc)
            return []

    async def prime(self) -> bool:
        """Prime every registered agent; moves to ``running`` on success."""

        self.state = SchedulerState.priming
        agent_ids = self.store.ids()
        logger.info("priming agents count=%s", len(agent_ids))
        try:
            if not self.backend.is_connected:
                await self.backend.check_connection()
            ok = await self.backend.prime_agents(agent_ids, force=True) if agent_ids else True
        except (TransportFailure, ApplicationError) as exc:
            logger.warning("priming failed error=%s", exc)
            ok = False
        except Exception as exc:
            logger.exception("priming crashed error=%s", type(exc).__name__)
            if self.state == SchedulerState.priming:
                self.state = SchedulerState.idle
            self.last_error = f"priming failed: {type(exc).__name__}: {exc}"
            self.recorder.record(EventType.scheduler, self.last_error)
            return False
        if self.state != SchedulerState.priming:
            # stopped while the handshake was in flight
            return False
        if not ok:
            self.state = SchedulerState.idle
            self.last_error = "priming failed"
            self.recorder.record(EventType.scheduler, "priming failed")
            return False
        for agent_id in agent_ids:
            agent = self.store.get(agent_id)
            if agent is not None:
                agent.primed = True
        self.state = SchedulerState.running
        self.recorder.record(EventType.scheduler, f"primed {len(agent_ids)} agents")
        return True

    async def run_tick(self) -> list[asyncio.Task]:
        if not self.backend.is_connected:
            logger.info("backend disconnected, probing health before tick")
            if not await self.backend.check_connection():
                self.skipped_ticks += 1
                logger.warning("tick skipped, backend unavailable skipped=%s", self.skipped_ticks)
                return []

        self.tick_count += 1
        self.recorder.tick = self.tick_count
        agents = self.store.agents()
        logger.info("tick=%s agents=%s", self.tick_count, len(agents))

        late = [agent.agent_id for agent in agents if not agent.primed]
        if late:
            await self._prime_late(late)

        tasks = []
        for agent in agents:
            if agent.agent_id not in self.store:
                continue
            tasks.append(self.dispatcher.dispatch(agent.agent_id))
        return tasks

    async def _prime_late(self, agent_ids: list[str]) -> None:
        try:
            ok = await self.backend.prime_agents(agent_ids)
        except (TransportFailure, ApplicationError) as exc:
            logger.warning("late priming failed agents=%s error=%s", agent_ids, exc)
            ok = False
        for agent_id in agent_ids:
            agent = self.store.get(agent_id)
            if agent is not None:
                agent.primed = True
        if not ok:
            logger.warning("late priming unconfirmed agents=%s", agent_ids)

    def start(self) -> bool:
        """Launch the automatic tick loop on the running event loop."""

        if self.state == SchedulerState.stopped:
            return False
        if self.is_looping:
            return False
        if self.state == SchedulerState.paused:
            self.state = SchedulerState.running
        self._loop_task = asyncio.create_task(self._loop())
        logger.info("automatic ticks started interval=%s", self.tick_interval)
        return True

    def pause(self) -> bool:
        if self.state != SchedulerState.running:
            return False
        self.state = SchedulerState.paused
        logger.info("scheduler paused tick=%s", self.tick_count)
        return True

    def resume(self) -> bool:
        if self.state != SchedulerState.paused:
            return False
        self.state = SchedulerState.running
        self.last_error = None
        logger.info("scheduler resumed tick=%s", self.tick_count)
        return True

    async def stop(self) -> None:
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        cancelled = self.dispatcher.cancel_all()
        self.state = SchedulerState.stopped
        self.recorder.record(EventType.scheduler, f"stopped, cancelled {cancelled} decisions")
        logger.info("scheduler stopped tick=%s cancelled=%s", self.tick_count, cancelled)

    def restart(self) -> bool:
        if self.state != SchedulerState.stopped:
            return False
        self.state = SchedulerState.idle
        self.last_error = None
        for agent in self.store.agents():
            agent.primed = False
        logger.info("scheduler reset to idle")
        return True

    async def _loop(self) -> None:
        while True:
            if self.state in (SchedulerState.idle, SchedulerState.running):
                try:
                    await self.trigger()
                except Exception as exc:
                    self._tick_failed(exc)
            await asyncio.sleep(self.tick_interval)

    def _tick_failed(self, exc: Exception) -> None:
        self.last_error = f"{type(exc).__name__}: {exc}"
        logger.exception("tick failed tick=%s error=%s", self.tick_count, self.last_error)
        self.recorder.record(EventType.failure, f"tick failed: {self.last_error}")
        if self.pause_on_error and self.state == SchedulerState.running:
            self.state = SchedulerState.paused
            logger.warning("scheduler paused after error")
