"""Symbolic location registry shared by movement and decision dispatch."""

import logging
from typing import Optional

from .agents.state import Vec3

logger = logging.getLogger(__name__)


DEFAULT_LOCATIONS: dict[str, Vec3] = {
    "home": Vec3(336.7, 47.5, 428.61),
    "park": Vec3(350.47, 49.63, 432.7607),
    "library": Vec3(325.03, 50.29, 407.87),
    "cantina": Vec3(324.3666, 50.33723, 463.2347),
    "gym": Vec3(300.5, 50.23723, 420.8247),
    "o2_regulator_room": Vec3(324.3666, 50.33723, 463.2347),
    "center": Vec3(325.0, 50.0, 425.0),
}


def normalize_location(name: str) -> str:
    return (name or "").strip().lower()


class LocationRegistry:
    """Case-insensitive name -> world position map."""

    def __init__(self, locations: Optional[dict[str, Vec3]] = None, use_defaults: bool = True) -> None:
        self._positions: dict[str, Vec3] = {}
        if use_defaults:
            for name, position in DEFAULT_LOCATIONS.items():
                self._positions[name] = position
        for name, position in (locations or {}).items():
            self._positions[normalize_location(name)] = position

    def add_known_location(self, name: str, position: Vec3) -> None:
        key = normalize_location(name)
        if not key:
            raise ValueError("Location name must not be empty")
        if key in self._positions:
            logger.info("updated known location name=%s position=%s", key, position)
        else:
            logger.info("added known location name=%s position=%s", key, position)
        self._positions[key] = position

    def get(self, name: str) -> Optional[Vec3]:
        return self._positions.get(normalize_location(name))

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_location(name) in self._positions

    def names(self) -> list[str]:
        return list(self._positions.keys())

    def to_list(self) -> list[dict]:
        return [{"name": name, "position": pos.to_dict()} for name, pos in self._positions.items()]
