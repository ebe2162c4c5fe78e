#!/usr/bin/env python3
"""
sim/model.py
============
Plain data entities shared by the intersection and the phase controller.

* :class:`Direction` — the four approach arms plus pair helpers.
* :class:`VehicleType` — vehicle category with a derived priority level.
* :class:`Vehicle` — immutable arrival record, ordered for the queues.
* :class:`LightState` / :class:`TrafficLight` — one signal per arm.
"""

from __future__ import annotations

import itertools
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Tuple

from sim.errors import InvalidDirection


class Direction(Enum):
    """Approach arm a vehicle arrives from.  Declaration order is scan order."""
    NORTH = "NORTH"
    SOUTH = "SOUTH"
    EAST = "EAST"
    WEST = "WEST"


_SCAN_ORDER = list(Direction)


_OPPOSING: Dict[Direction, Direction] = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST: Direction.WEST,
    Direction.WEST: Direction.EAST,
}

# Representative direction of the *other* pair.
_ORTHOGONAL: Dict[Direction, Direction] = {
    Direction.NORTH: Direction.EAST,
    Direction.SOUTH: Direction.EAST,
    Direction.EAST: Direction.NORTH,
    Direction.WEST: Direction.NORTH,
}


def opposing(direction: Direction) -> Direction:
    """Return the arm facing *direction* (North↔South, East↔West)."""
    try:
        return _OPPOSING[direction]
    except (KeyError, TypeError):
        raise InvalidDirection(f"no opposing direction for {direction!r}") from None


def orthogonal(direction: Direction) -> Direction:
    """Return the representative (``NORTH`` or ``EAST``) of the crossing pair."""
    try:
        return _ORTHOGONAL[direction]
    except (KeyError, TypeError):
        raise InvalidDirection(f"no orthogonal pair for {direction!r}") from None


def pair_of(direction: Direction) -> Tuple[Direction, Direction]:
    """Both arms of the pair *direction* belongs to."""
    return direction, opposing(direction)


def pair_label(direction: Direction) -> str:
    """Short label such as ``NORTH/SOUTH``."""
    first, second = sorted(pair_of(direction), key=_SCAN_ORDER.index)
    return f"{first.value}/{second.value}"


class VehicleType(Enum):
    """Vehicle category.  Higher priority level is served first."""
    CAR = "CAR"
    MOTORCYCLE = "MOTORCYCLE"
    BUS = "BUS"
    TRUCK = "TRUCK"
    POLICE = "POLICE"
    AMBULANCE = "AMBULANCE"
    FIRE_TRUCK = "FIRE_TRUCK"

    @property
    def priority_level(self) -> int:
        return _PRIORITY_LEVELS[self]

    @property
    def is_emergency(self) -> bool:
        return self.priority_level >= EMERGENCY_PRIORITY_LEVEL


EMERGENCY_PRIORITY_LEVEL: int = 9

_PRIORITY_LEVELS: Dict[VehicleType, int] = {
    VehicleType.CAR: 1,
    VehicleType.MOTORCYCLE: 1,
    VehicleType.BUS: 2,
    VehicleType.TRUCK: 2,
    VehicleType.POLICE: 9,
    VehicleType.AMBULANCE: 10,
    VehicleType.FIRE_TRUCK: 10,
}


_id_counter = itertools.count(1)
_id_lock = threading.Lock()


def _next_vehicle_id() -> int:
    with _id_lock:
        return next(_id_counter)


@dataclass(frozen=True, eq=False)
class Vehicle:
    """An arrival waiting at the intersection.

    Attributes
    ----------
    id : int
        Unique, monotonically issued identifier.  Equality uses it alone.
    type : VehicleType
        Category; decides priority and emergency status.
    origin : Direction
        Arm the vehicle queues on for its whole life.
    arrival_ts : float
        Clock reading when the vehicle arrived (seconds).
    """

    id: int
    type: VehicleType
    origin: Direction
    arrival_ts: float

    @classmethod
    def create(
        cls,
        vehicle_type: VehicleType,
        origin: Direction,
        clock: Callable[[], float] = time.monotonic,
    ) -> "Vehicle":
        """Issue a fresh id and stamp the arrival with *clock*."""
        return cls(
            id=_next_vehicle_id(),
            type=VehicleType(vehicle_type),
            origin=Direction(origin),
            arrival_ts=clock(),
        )

    @property
    def priority_level(self) -> int:
        return self.type.priority_level

    @property
    def is_emergency(self) -> bool:
        return self.type.is_emergency

    @property
    def sort_key(self) -> Tuple[int, float, int]:
        """Priority descending, then arrival ascending, then id (FIFO)."""
        return (-self.priority_level, self.arrival_ts, self.id)

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "origin": self.origin.value,
            "priority_level": self.priority_level,
            "emergency": self.is_emergency,
            "arrival_ts": self.arrival_ts,
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Vehicle):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __str__(self) -> str:
        return f"{self.type.value}#{self.id} (from {self.origin.value})"


class LightState(Enum):
    """Signal aspect shown to one approach arm."""
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"


@dataclass
class TrafficLight:
    """Three-state signal for a single direction.  Starts RED."""
    direction: Direction
    state: LightState = field(default=LightState.RED)

    def __str__(self) -> str:
        return f"Light[{self.direction.value}={self.state.value}]"
