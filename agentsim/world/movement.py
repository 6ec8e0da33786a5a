"""Kinematic stand-in for the navigation subsystem.

Agents walk in a straight line toward their target at a fixed speed. When
an agent gets within the arrival tolerance, registered arrival listeners
are notified with the agent id.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from typing import Optional

from ..agents.state import Vec3

logger = logging.getLogger(__name__)

ArrivalListener = Callable[[str], None]

FORWARD = Vec3(0.0, 0.0, 1.0)


def step_towards(current: Vec3, target: Vec3, max_step: float) -> Vec3:
    dx = target.x - current.x
    dy = target.y - current.y
    dz = target.z - current.z
    distance = math.sqrt(dx * dx + dy * dy + dz * dz)
    if distance < 1e-6 or max_step >= distance:
        return target
    ratio = max_step / distance
    return Vec3(current.x + dx * ratio, current.y + dy * ratio, current.z + dz * ratio)


class KinematicMovement:
    """Tracks positions, headings, and active destinations per agent."""

    def __init__(self, speed: float = 3.5, arrival_tolerance: float = 0.5) -> None:
        self.speed = speed
        self.arrival_tolerance = arrival_tolerance
        self._positions: dict[str, Vec3] = {}
        self._facing: dict[str, Vec3] = {}
        self._targets: dict[str, Vec3] = {}
        self._listeners: list[ArrivalListener] = []

    def on_arrival(self, listener: ArrivalListener) -> None:
        self._listeners.append(listener)

    def place(self, agent_id: str, position: Vec3, facing: Vec3 = FORWARD) -> None:
        self._positions[agent_id] = position
        self._facing[agent_id] = facing
        self._targets.pop(agent_id, None)

    def remove(self, agent_id: str) -> None:
        self._positions.pop(agent_id, None)
        self._facing.pop(agent_id, None)
        self._targets.pop(agent_id, None)

    def position_of(self, agent_id: str) -> Optional[Vec3]:
        return self._positions.get(agent_id)

    def facing_of(self, agent_id: str) -> Vec3:
        return self._facing.get(agent_id, FORWARD)

    def positions(self) -> dict[str, Vec3]:
        return dict(self._positions)

    def is_moving(self, agent_id: str) -> bool:
        return agent_id in self._targets

    def move_to(self, agent_id: str, position: Vec3) -> bool:
        current = self._positions.get(agent_id)
        if current is None:
            logger.warning("cannot move unplaced agent agent=%s", agent_id)
            return False
        self._targets[agent_id] = position
        self._face(agent_id, current, position)
        logger.debug("destination set agent=%s target=%s", agent_id, position)
        return True

    def stop(self, agent_id: str) -> None:
        self._targets.pop(agent_id, None)

    def arrive(self, agent_id: str) -> bool:
        """Finish the current move immediately and signal arrival."""

        target = self._targets.pop(agent_id, None)
        if target is None:
            return False
        self._positions[agent_id] = target
        self._notify(agent_id)
        return True

    def advance(self, dt: float) -> list[str]:
        arrived: list[str] = []
        for agent_id, target in list(self._targets.items()):
            current = self._positions.get(agent_id)
            if current is None:
                self._targets.pop(agent_id, None)
                continue
            position = step_towards(current, target, self.speed * dt)
            self._positions[agent_id] = position
            if position.distance_to(target) <= self.arrival_tolerance:
                self._targets.pop(agent_id, None)
                arrived.append(agent_id)
        for agent_id in arrived:
            self._notify(agent_id)
        return arrived

    async def run(self, interval: float = 0.1) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(interval)
            now = loop.time()
            self.advance(now - last)
            last = now

    def _face(self, agent_id: str, current: Vec3, target: Vec3) -> None:
        dx, dy, dz = target.x - current.x, target.y - current.y, target.z - current.z
        length = math.sqrt(dx * dx + dy * dy + dz * dz)
        if length > 1e-6:
            self._facing[agent_id] = Vec3(dx / length, dy / length, dz / length)

    def _notify(self, agent_id: str) -> None:
        for listener in list(self._listeners):
            listener(agent_id)
