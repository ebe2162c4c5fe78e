#!/usr/bin/env python3
"""
sim/intersection.py
===================
Four-way intersection state: one priority queue and one traffic light
per :class:`~sim.model.Direction`.

Each queue is a ``heapq`` list guarded by its own lock, so producers,
the phase controller and display readers may call in from different
threads.  Lights share one lock; :meth:`Intersection.set_pair_state`
switches both arms of a pair under it, so a reader never sees a pair
half-switched.

The phase controller and producers only touch the queues through the
methods below.
"""

from __future__ import annotations

import heapq
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from sim.model import (
    Direction,
    LightState,
    TrafficLight,
    Vehicle,
    pair_of,
)

log = logging.getLogger("intersection")

_HeapEntry = Tuple[Tuple[int, float, int], Vehicle]


class _DirectionQueue:
    """Binary-heap priority queue for one approach arm."""

    def __init__(self) -> None:
        self._heap: List[_HeapEntry] = []
        self._lock = threading.Lock()

    def push(self, vehicle: Vehicle) -> int:
        with self._lock:
            heapq.heappush(self._heap, (vehicle.sort_key, vehicle))
            return len(self._heap)

    def pop(self) -> Optional[Vehicle]:
        with self._lock:
            if not self._heap:
                return None
            return heapq.heappop(self._heap)[1]

    def peek(self) -> Optional[Vehicle]:
        with self._lock:
            return self._heap[0][1] if self._heap else None

    def pop_if(self, predicate: Callable[[Vehicle], bool]) -> Optional[Vehicle]:
        """Pop the head only if it satisfies *predicate* (one atomic step)."""
        with self._lock:
            if not self._heap or not predicate(self._heap[0][1]):
                return None
            return heapq.heappop(self._heap)[1]

    def size(self) -> int:
        with self._lock:
            return len(self._heap)

    def preview(self, count: int) -> List[Vehicle]:
        with self._lock:
            return [entry[1] for entry in heapq.nsmallest(count, self._heap)]


@dataclass(frozen=True)
class IntersectionSnapshot:
    """Read-only copy of the intersection taken at one instant."""
    lights: Dict[Direction, LightState]
    queue_sizes: Dict[Direction, int]
    previews: Dict[Direction, Tuple[Vehicle, ...]]
    max_wait_s: Dict[Direction, float]

    def as_dict(self) -> dict:
        return {
            "lights": {d.value: s.value for d, s in self.lights.items()},
            "queue_sizes": {d.value: n for d, n in self.queue_sizes.items()},
            "previews": {
                d.value: [v.as_dict() for v in vs] for d, vs in self.previews.items()
            },
            "max_wait_s": {d.value: round(w, 3) for d, w in self.max_wait_s.items()},
        }


class Intersection:
    """Owner of the four approach queues and the four traffic lights.

    Parameters
    ----------
    clock : callable
        Time source used for the max-wait statistic.  Must match the
        clock vehicles are stamped with.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._queues: Dict[Direction, _DirectionQueue] = {
            d: _DirectionQueue() for d in Direction
        }
        self._lights: Dict[Direction, TrafficLight] = {
            d: TrafficLight(d) for d in Direction
        }
        self._light_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._max_wait: Dict[Direction, float] = {d: 0.0 for d in Direction}

    # ── Vehicle management ────────────────────────────────────────────────────

    def enqueue(self, vehicle: Vehicle) -> None:
        """Queue *vehicle* on its origin arm.  Always succeeds."""
        size = self._queues[vehicle.origin].push(vehicle)
        self._record_wait(vehicle)
        log.debug("queued %s on %s (size=%d)", vehicle, vehicle.origin.value, size)

    def dequeue_next(self, direction: Direction) -> Optional[Vehicle]:
        """Remove and return the head of *direction*'s queue, or ``None``."""
        vehicle = self._queues[direction].pop()
        if vehicle is not None:
            self._record_wait(vehicle)
        return vehicle

    def dequeue_next_if(
        self,
        direction: Direction,
        predicate: Callable[[Vehicle], bool],
    ) -> Optional[Vehicle]:
        """Dequeue the head only if *predicate* holds for it.

        The check and the removal happen under the queue lock, so a
        producer enqueueing a higher-priority vehicle in between cannot
        make the caller remove a vehicle it never inspected.
        """
        vehicle = self._queues[direction].pop_if(predicate)
        if vehicle is not None:
            self._record_wait(vehicle)
        return vehicle

    def peek_next(self, direction: Direction) -> Optional[Vehicle]:
        return self._queues[direction].peek()

    def queue_size(self, direction: Direction) -> int:
        return self._queues[direction].size()

    def all_queue_sizes(self) -> Dict[Direction, int]:
        return {d: self.queue_size(d) for d in Direction}

    def queue_preview(self, direction: Direction, count: int) -> List[Vehicle]:
        """Up to *count* vehicles in dequeue order, without removing them."""
        if count <= 0:
            return []
        return self._queues[direction].preview(count)

    # ── Traffic lights ────────────────────────────────────────────────────────

    def get_light(self, direction: Direction) -> TrafficLight:
        """Copy of the light for *direction*; changes go through the setters."""
        with self._light_lock:
            return TrafficLight(direction, self._lights[direction].state)

    def light_state(self, direction: Direction) -> LightState:
        with self._light_lock:
            return self._lights[direction].state

    def set_light_state(self, direction: Direction, state: LightState) -> None:
        with self._light_lock:
            self._set_locked(direction, state)

    def set_pair_state(
        self,
        direction: Direction,
        state: LightState,
        only_from: Optional[LightState] = None,
    ) -> None:
        """Switch both arms of *direction*'s pair in one step.

        With *only_from*, arms not currently in that state are left alone
        (used to turn a GREEN pair YELLOW without touching a RED arm).
        """
        with self._light_lock:
            for d in pair_of(direction):
                if only_from is None or self._lights[d].state is only_from:
                    self._set_locked(d, state)

    def light_states(self) -> Dict[Direction, LightState]:
        with self._light_lock:
            return {d: light.state for d, light in self._lights.items()}

    def _set_locked(self, direction: Direction, state: LightState) -> None:
        light = self._lights[direction]
        if light.state is not state:
            log.debug("light %s %s -> %s", direction.value, light.state.value, state.value)
        light.state = state

    # ── Priority detection ────────────────────────────────────────────────────

    def scan_for_priority_request(self) -> Optional[Direction]:
        """First direction (in :class:`Direction` order) headed by an emergency vehicle."""
        for direction in Direction:
            head = self.peek_next(direction)
            if head is not None and head.is_emergency:
                return direction
        return None

    # ── Statistics / snapshot ─────────────────────────────────────────────────

    def max_wait_times(self) -> Dict[Direction, float]:
        with self._stats_lock:
            return dict(self._max_wait)

    def snapshot(self, preview_size: int = 5) -> IntersectionSnapshot:
        return IntersectionSnapshot(
            lights=self.light_states(),
            queue_sizes=self.all_queue_sizes(),
            previews={
                d: tuple(self.queue_preview(d, preview_size)) for d in Direction
            },
            max_wait_s=self.max_wait_times(),
        )

    def _record_wait(self, vehicle: Vehicle) -> None:
        waited = max(0.0, self._clock() - vehicle.arrival_ts)
        with self._stats_lock:
            if waited > self._max_wait[vehicle.origin]:
                self._max_wait[vehicle.origin] = waited
