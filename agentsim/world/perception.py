"""Environment perception: who and what each agent can currently see.

Detection applies a radius, a field-of-view cone around the agent's
heading, and an optional line-of-sight test against spherical obstacles.
Results are sorted by ascending distance and never include the observer.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional

from ..agents.state import Agent, Vec3
from ..agents.store import AgentStore
from ..locations import LocationRegistry
from .movement import KinematicMovement

DEFAULT_MARKER = "default"


@dataclass
class InteractableObject:
    name: str
    position: Vec3
    tag: str = "Untagged"
    description: str = ""


@dataclass
class Obstacle:
    center: Vec3
    radius: float


def _angle_between(a: Vec3, b: Vec3) -> float:
    la = math.sqrt(a.x * a.x + a.y * a.y + a.z * a.z)
    lb = math.sqrt(b.x * b.x + b.y * b.y + b.z * b.z)
    if la < 1e-6 or lb < 1e-6:
        return 0.0
    cos = (a.x * b.x + a.y * b.y + a.z * b.z) / (la * lb)
    return math.degrees(math.acos(max(-1.0, min(1.0, cos))))


def _segment_hits_sphere(start: Vec3, end: Vec3, obstacle: Obstacle) -> bool:
    dx, dy, dz = end.x - start.x, end.y - start.y, end.z - start.z
    length_sq = dx * dx + dy * dy + dz * dz
    if length_sq < 1e-12:
        return start.distance_to(obstacle.center) <= obstacle.radius
    t = ((obstacle.center.x - start.x) * dx + (obstacle.center.y - start.y) * dy + (obstacle.center.z - start.z) * dz) / length_sq
    t = max(0.0, min(1.0, t))
    closest = Vec3(start.x + dx * t, start.y + dy * t, start.z + dz * t)
    return closest.distance_to(obstacle.center) <= obstacle.radius


def is_default_marked(name: str, tag: str = "") -> bool:
    return DEFAULT_MARKER in (name or "").lower() or (tag or "").lower() == DEFAULT_MARKER


class EnvironmentReporter:
    """Answers nearby-entity queries from the movement and agent stores."""

    def __init__(
        self,
        store: AgentStore,
        movement: KinematicMovement,
        locations: LocationRegistry,
        *,
        agent_radius: float = 30.0,
        object_radius: float = 15.0,
        field_of_view: float = 120.0,
        require_line_of_sight: bool = True,
    ) -> None:
        self.store = store
        self.movement = movement
        self.locations = locations
        self.agent_radius = agent_radius
        self.object_radius = object_radius
        self.field_of_view = field_of_view
        self.require_line_of_sight = require_line_of_sight
        self._objects: dict[str, InteractableObject] = {}
        self._obstacles: list[Obstacle] = []

    def add_object(self, obj: InteractableObject) -> None:
        self._objects[obj.name] = obj

    def remove_object(self, name: str) -> None:
        self._objects.pop(name, None)

    def add_obstacle(self, obstacle: Obstacle) -> None:
        self._obstacles.append(obstacle)

    def is_within_field_of_view(self, observer_id: str, target: Vec3) -> bool:
        if self.field_of_view >= 360.0:
            return True
        origin = self.movement.position_of(observer_id)
        if origin is None:
            return False
        direction = Vec3(target.x - origin.x, target.y - origin.y, target.z - origin.z)
        return _angle_between(self.movement.facing_of(observer_id), direction) <= self.field_of_view * 0.5

    def has_line_of_sight(self, start: Vec3, end: Vec3) -> bool:
        return not any(_segment_hits_sphere(start, end, obstacle) for obstacle in self._obstacles)

    def _visible(self, observer_id: str, origin: Vec3, target: Vec3) -> bool:
        if not self.is_within_field_of_view(observer_id, target):
            return False
        return not self.require_line_of_sight or self.has_line_of_sight(origin, target)

    def get_nearby_agents(self, observer_id: str) -> list[dict[str, Any]]:
        origin = self.movement.position_of(observer_id)
        if origin is None:
            return []
        nearby: list[dict[str, Any]] = []
        for agent in self.store.agents():
            if agent.agent_id == observer_id:
                continue
            position = self.movement.position_of(agent.agent_id)
            if position is None:
                continue
            distance = origin.distance_to(position)
            if distance > self.agent_radius or not self._visible(observer_id, origin, position):
                continue
            nearby.append(
                {
                    "id": agent.agent_id,
                    "distance": round(distance, 2),
                    "position": position.to_dict(),
                    "status": agent.status_text,
                }
            )
        nearby.sort(key=lambda item: item["distance"])
        return nearby

    def get_nearby_objects(self, observer_id: str) -> list[dict[str, Any]]:
        origin = self.movement.position_of(observer_id)
        if origin is None:
            return []
        nearby: list[dict[str, Any]] = []
        for obj in self._objects.values():
            distance = origin.distance_to(obj.position)
            if distance > self.object_radius or not self._visible(observer_id, origin, obj.position):
                continue
            item: dict[str, Any] = {
                "id": obj.name,
                "name": obj.name,
                "distance": round(distance, 2),
                "position": obj.position.to_dict(),
                "tag": obj.tag,
            }
            if obj.description:
                item["description"] = obj.description
            nearby.append(item)
        nearby.sort(key=lambda item: item["distance"])
        return nearby

    def get_nearby_entities(self, observer_id: str) -> dict[str, list[dict[str, Any]]]:
        return {
            "agents": self.get_nearby_agents(observer_id),
            "objects": self.get_nearby_objects(observer_id),
        }

    def find_agent_in_proximity(self, observer_id: str, name: str, radius: float) -> Optional[tuple[Agent, Vec3]]:
        """Locate ``name`` within ``radius`` of the observer, ignoring view cone."""

        target = self.store.find(name)
        origin = self.movement.position_of(observer_id)
        if target is None or target.agent_id == observer_id or origin is None:
            return None
        position = self.movement.position_of(target.agent_id)
        if position is None or origin.distance_to(position) > radius:
            return None
        return target, position

    def narrate(self, observer_id: str) -> str:
        entities = self.get_nearby_entities(observer_id)
        agents = [
            f"{item['id']} ({item['position']['x']:.1f},{item['position']['y']:.1f},{item['position']['z']:.1f})"
            for item in entities["agents"]
        ]
        objects = [
            f"{item['name']} ({item['distance']:.1f}m)"
            for item in entities["objects"]
            if not is_default_marked(item["name"], item.get("tag", ""))
        ]
        return f"Nearby agents: {'; '.join(agents) or 'none'}. Nearby objects: {'; '.join(objects) or 'none'}."

    def get_environment_state(self, agent_id: Optional[str] = None) -> dict[str, Any]:
        agents: list[dict[str, Any]] = []
        for agent in self.store.agents():
            state = agent.to_dict()
            position = self.movement.position_of(agent.agent_id)
            state["position"] = position.to_dict() if position else None
            if agent.agent_id == agent_id:
                state["nearby_agents"] = self.get_nearby_agents(agent.agent_id)
                state["nearby_objects"] = self.get_nearby_objects(agent.agent_id)
            agents.append(state)
        objects = [
            {"id": obj.name, "name": obj.name, "position": obj.position.to_dict(), "tag": obj.tag}
            for obj in self._objects.values()
        ]
        return {"agents": agents, "locations": self.locations.to_list(), "objects": objects}
