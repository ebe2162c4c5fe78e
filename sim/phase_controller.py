#!/usr/bin/env python3
"""
sim/phase_controller.py
=======================
Tick-driven traffic-light controller for one :class:`~sim.intersection.Intersection`.

A background thread calls :meth:`PhaseController.tick` every
``policy.tick_period_s`` seconds.  Each tick, in order:

1. *Priority detection* (only while :class:`Idle`): look for an emergency
   vehicle at the head of any queue and start an override.
2. *Priority advancement* (only while an override is running): walk
   :class:`YellowTransition` → :class:`GreenActive` → :class:`EndingYellow`
   → :class:`Idle` as the timers expire.
3. *Normal cycle* (only while :class:`Idle` and nothing was detected this
   tick): GREEN → YELLOW → RED for the current pair, then hand over to
   the crossing pair.
4. *Queue advancement*: at most one vehicle passes per GREEN direction.
5. *Notification*: publish a :class:`SimulationSnapshot` on the bus.

The tick that raises a priority request runs neither 2 nor 3, so every
transition costs at least one tick even with very short timers.

Public API consumed by :mod:`server.api` and :mod:`main`
--------------------------------------------------------
* ``start()`` / ``stop()``  → idempotent lifecycle
* ``tick(now=None)``        → run one step (the ticker calls this)
* ``add_vehicle(type, dir)``→ producer entry point
* ``get_snapshot()``        → latest :class:`SimulationSnapshot`
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

from config import DEFAULT_PREVIEW_SIZE
from bus.event_bus import EVENTS_TOPIC, SNAPSHOT_TOPIC, EventBus
from bus.utils import event_payload
from sim.errors import InvalidDirection
from sim.intersection import Intersection, IntersectionSnapshot
from sim.model import (
    Direction,
    LightState,
    Vehicle,
    VehicleType,
    orthogonal,
    pair_label,
    pair_of,
)
from sim.timing_policy import TimingPolicy

log = logging.getLogger("phase_controller")

SENDER = "phase_controller"


# ── Priority sub-states ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Idle:
    """No override; the normal cycle owns the lights."""
    name = "IDLE"


@dataclass(frozen=True)
class YellowTransition:
    """Crossing pair is YELLOW, clearing the way for ``direction``."""
    direction: Direction
    name = "YELLOW_TRANSITION"


@dataclass(frozen=True)
class GreenActive:
    """``direction``'s pair is GREEN for the emergency vehicle."""
    direction: Direction
    name = "GREEN_ACTIVE"


@dataclass(frozen=True)
class EndingYellow:
    """``direction``'s pair is YELLOW before normal flow resumes."""
    direction: Direction
    name = "ENDING_YELLOW"


PriorityState = Union[Idle, YellowTransition, GreenActive, EndingYellow]

IDLE = Idle()


@dataclass(frozen=True)
class SimulationSnapshot:
    """Immutable view published after every tick."""
    tick: int
    running: bool
    green_pair: Direction
    priority_state: str
    priority_direction: Optional[Direction]
    phase_elapsed_s: float
    passed: Tuple[Vehicle, ...]
    intersection: IntersectionSnapshot

    def as_dict(self) -> dict:
        return {
            "tick": self.tick,
            "running": self.running,
            "green_pair": pair_label(self.green_pair),
            "priority_state": self.priority_state,
            "priority_direction": (
                self.priority_direction.value if self.priority_direction else None
            ),
            "phase_elapsed_s": round(self.phase_elapsed_s, 3),
            "passed": [v.as_dict() for v in self.passed],
            **self.intersection.as_dict(),
        }


class PhaseController:
    """Phase/priority state machine plus the ticker thread that drives it.

    Parameters
    ----------
    intersection : Intersection
        The intersection whose lights and queues are controlled.
    bus : EventBus or None
        Where events and snapshots are published.  A private bus is
        created if omitted.
    policy : TimingPolicy or None
        Tick period and phase durations.
    clock : callable
        Monotonic time source in seconds.
    preview_size : int
        Vehicles per direction included in published snapshots.
    """

    def __init__(
        self,
        intersection: Intersection,
        bus: Optional[EventBus] = None,
        policy: Optional[TimingPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        preview_size: int = DEFAULT_PREVIEW_SIZE,
    ) -> None:
        self.intersection = intersection
        self.bus = bus if bus is not None else EventBus()
        self.policy = policy or TimingPolicy()
        self._clock = clock
        self._preview_size = preview_size

        self._state_lock = threading.RLock()
        self._lifecycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._tick_count = 0
        self._green_pair = Direction.NORTH
        self._phase_started_at = self._clock()
        self._priority: PriorityState = IDLE
        self._snapshot = self._build_snapshot(self._phase_started_at, ())

    # ── Read accessors ────────────────────────────────────────────────────────

    @property
    def green_pair(self) -> Direction:
        return self._green_pair

    @property
    def priority_state(self) -> PriorityState:
        return self._priority

    @property
    def priority_direction(self) -> Optional[Direction]:
        return getattr(self._priority, "direction", None)

    def is_running(self) -> bool:
        return self._running

    def get_snapshot(self) -> SimulationSnapshot:
        """Latest snapshot; safe to call from any thread."""
        return self._snapshot

    def subscribe_snapshots(self, callback: Callable[[SimulationSnapshot], None]) -> None:
        """Call *callback* with each new snapshot (on the bus dispatcher thread)."""
        self.bus.subscribe(SNAPSHOT_TOPIC, lambda msg: callback(msg.payload["snapshot"]))

    # ── Producer entry point ──────────────────────────────────────────────────

    def add_vehicle(self, vehicle_type: VehicleType, direction: Direction) -> Vehicle:
        """Create a vehicle of *vehicle_type* arriving from *direction* and queue it."""
        vehicle = Vehicle.create(vehicle_type, direction, clock=self._clock)
        self.intersection.enqueue(vehicle)
        if vehicle.is_emergency:
            self._emit(
                "vehicle_queued",
                f"Emergency vehicle {vehicle} added to {vehicle.origin.value} queue.",
                direction=vehicle.origin.value,
                vehicle=vehicle.as_dict(),
            )
        return vehicle

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def reset(self, now: Optional[float] = None) -> None:
        """Put lights and state back to the initial phase: N/S GREEN, E/W RED."""
        with self._state_lock:
            now = self._clock() if now is None else now
            self.intersection.set_pair_state(Direction.EAST, LightState.RED)
            self.intersection.set_pair_state(Direction.NORTH, LightState.GREEN)
            self._green_pair = Direction.NORTH
            self._priority = IDLE
            self._phase_started_at = now
            self._tick_count = 0
            self._snapshot = self._build_snapshot(now, ())

    def start(self) -> bool:
        """Reset the phase state and spawn the ticker.  No-op if already running."""
        with self._lifecycle_lock:
            if self._running:
                log.info("PhaseController already running")
                return False
            self._running = True
            self.reset()
            # One event per run: a ticker that outlived stop() keeps its own.
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._loop, args=(self._stop_event,),
                daemon=True, name="PhaseController",
            )
            self._thread.start()
        log.info("PhaseController started, tick=%.2fs", self.policy.tick_period_s)
        self._emit(
            "simulation_started",
            "Simulation started. Initial state: NORTH/SOUTH Green.",
            green_pair=pair_label(Direction.NORTH),
        )
        return True

    def stop(self) -> bool:
        """Halt the ticker and clear any override.  No-op if already stopped."""
        with self._lifecycle_lock:
            if not self._running:
                return False
            self._running = False
            self._stop_event.set()
            thread, self._thread = self._thread, None
            if thread is not None and thread is not threading.current_thread():
                thread.join(timeout=max(2.0, 2 * self.policy.tick_period_s))
            with self._state_lock:
                now = self._clock()
                self._priority = IDLE
                self._phase_started_at = now
                self._snapshot = self._build_snapshot(now, ())
        log.info("PhaseController stopped")
        self._emit("simulation_stopped", "Simulation stopped.")
        return True

    def _loop(self, stop_event: threading.Event) -> None:
        period = self.policy.tick_period_s
        while not stop_event.wait(period):
            try:
                self.tick()
            except InvalidDirection:
                log.critical("invariant violated, halting ticker", exc_info=True)
                stop_event.set()
                self._halt_from_ticker()
                raise
            except Exception:
                log.exception("PhaseController tick error")

    def _halt_from_ticker(self) -> None:
        # A concurrent stop() holds the lock and does the cleanup itself.
        if not self._lifecycle_lock.acquire(blocking=False):
            return
        try:
            if self._thread is not threading.current_thread():
                return
            self._thread = None
            self._running = False
            with self._state_lock:
                now = self._clock()
                self._priority = IDLE
                self._phase_started_at = now
                self._snapshot = self._build_snapshot(now, ())
        finally:
            self._lifecycle_lock.release()
        self._emit(
            "simulation_stopped",
            "Simulation halted after an internal error.",
            reason="invalid_direction",
        )

    # ── Tick ──────────────────────────────────────────────────────────────────

    def tick(self, now: Optional[float] = None) -> SimulationSnapshot:
        """Run one controller step and publish the resulting snapshot."""
        with self._state_lock:
            now = self._clock() if now is None else now
            self._tick_count += 1

            # 1. Priority detection
            raised = False
            if isinstance(self._priority, Idle):
                raised = self._detect_priority(now)

            # 2. / 3. Override or normal cycle
            forced = None
            if not raised:
                if isinstance(self._priority, Idle):
                    self._advance_normal_cycle(now)
                else:
                    forced = self._advance_priority(now)

            # 4. Queue advancement
            passed = self._advance_queues()
            if forced is not None:
                passed = (forced,) + passed

            # 5. Notification
            snapshot = self._build_snapshot(now, passed)
            self._snapshot = snapshot
            self.bus.publish(SNAPSHOT_TOPIC, SENDER, {"snapshot": snapshot})
            return snapshot

    def _elapsed(self, now: float) -> float:
        return now - self._phase_started_at

    def _detect_priority(self, now: float) -> bool:
        direction = self.intersection.scan_for_priority_request()
        if direction is None:
            return False

        log.info(">>> EMERGENCY OVERRIDE ACTIVATED for %s <<<", direction.value)
        self._emit(
            "emergency_detected",
            f"Emergency vehicle detected from {direction.value}! Prioritizing traffic light.",
            direction=direction.value,
        )

        crossing = orthogonal(direction)
        crossing_states = {self.intersection.light_state(d) for d in pair_of(crossing)}
        if crossing_states & {LightState.GREEN, LightState.YELLOW}:
            self.intersection.set_pair_state(
                crossing, LightState.YELLOW, only_from=LightState.GREEN
            )
            if any(self.intersection.light_state(d) is not LightState.RED
                   for d in pair_of(direction)):
                log.warning("priority pair %s was not RED, forcing RED", pair_label(direction))
                self.intersection.set_pair_state(direction, LightState.RED)
            self._priority = YellowTransition(direction)
            log.info("crossing pair %s to YELLOW", pair_label(crossing))
        else:
            self.intersection.set_pair_state(direction, LightState.RED)
            self.intersection.set_pair_state(direction, LightState.GREEN)
            self._priority = GreenActive(direction)
            log.info("no conflicting traffic, %s GREEN immediately", pair_label(direction))
        self._phase_started_at = now
        return True

    def _advance_priority(self, now: float) -> Optional[Vehicle]:
        """Step the override; returns the emergency vehicle cleared at the cap, if any."""
        state = self._priority
        direction = state.direction
        elapsed = self._elapsed(now)

        if isinstance(state, YellowTransition):
            if elapsed >= self.policy.yellow_s:
                self.intersection.set_pair_state(orthogonal(direction), LightState.RED)
                self.intersection.set_pair_state(direction, LightState.GREEN)
                self._priority = GreenActive(direction)
                self._phase_started_at = now
                log.info("priority GREEN for %s", pair_label(direction))

        elif isinstance(state, GreenActive):
            head = self.intersection.peek_next(direction)
            still_emergency = head is not None and head.is_emergency
            if elapsed >= self.policy.priority_green_s or not still_emergency:
                if still_emergency:
                    log.info("priority GREEN expired for %s", direction.value)
                else:
                    log.info("emergency vehicle from %s has passed", direction.value)
                self.intersection.set_pair_state(
                    direction, LightState.YELLOW, only_from=LightState.GREEN
                )
                self._priority = EndingYellow(direction)
                self._phase_started_at = now
                self._emit(
                    "priority_ending",
                    f"Emergency vehicle passed/priority time ended for {direction.value}. "
                    "Resuming normal flow soon.",
                    direction=direction.value,
                )
                if still_emergency:
                    forced = self.intersection.dequeue_next_if(
                        direction, lambda v: v == head
                    )
                    if forced is not None:
                        log.info("explicitly removing %s after priority green", forced)
                        return forced

        elif isinstance(state, EndingYellow):
            if elapsed >= self.policy.yellow_s:
                self.intersection.set_pair_state(direction, LightState.RED)
                self._priority = IDLE
                self._green_pair = orthogonal(direction)
                self.intersection.set_pair_state(self._green_pair, LightState.GREEN)
                self._phase_started_at = now
                label = pair_label(self._green_pair)
                log.info("resuming normal flow, %s GREEN", label)
                self._emit(
                    "normal_flow_resumed",
                    f"Normal traffic flow resumed ({label} Green).",
                    green_pair=label,
                )

    def _advance_normal_cycle(self, now: float) -> None:
        current = self.intersection.light_state(self._green_pair)
        elapsed = self._elapsed(now)

        if current is LightState.GREEN and elapsed >= self.policy.normal_green_s:
            log.info("normal cycle: %s to YELLOW", pair_label(self._green_pair))
            self.intersection.set_pair_state(
                self._green_pair, LightState.YELLOW, only_from=LightState.GREEN
            )
            self._phase_started_at = now
        elif current is LightState.YELLOW and elapsed >= self.policy.yellow_s:
            self.intersection.set_pair_state(self._green_pair, LightState.RED)
            self._green_pair = orthogonal(self._green_pair)
            self.intersection.set_pair_state(self._green_pair, LightState.GREEN)
            self._phase_started_at = now
            log.info("normal cycle: %s to GREEN", pair_label(self._green_pair))

    def _advance_queues(self) -> Tuple[Vehicle, ...]:
        passed: List[Vehicle] = []
        state = self._priority
        for direction in Direction:
            if self.intersection.light_state(direction) is not LightState.GREEN:
                continue
            if isinstance(state, Idle):
                # Emergency heads wait here for detection on a later tick.
                vehicle = self.intersection.dequeue_next_if(
                    direction, lambda v: not v.is_emergency
                )
            elif isinstance(state, GreenActive) and direction is state.direction:
                vehicle = self.intersection.dequeue_next_if(
                    direction, lambda v: v.is_emergency
                )
            else:
                vehicle = None
            if vehicle is not None:
                log.debug("PASS %s on %s", vehicle, direction.value)
                passed.append(vehicle)
        return tuple(passed)

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _build_snapshot(
        self, now: float, passed: Tuple[Vehicle, ...]
    ) -> SimulationSnapshot:
        return SimulationSnapshot(
            tick=self._tick_count,
            running=self._running,
            green_pair=self._green_pair,
            priority_state=self._priority.name,
            priority_direction=self.priority_direction,
            phase_elapsed_s=max(0.0, now - self._phase_started_at),
            passed=passed,
            intersection=self.intersection.snapshot(self._preview_size),
        )

    def _emit(self, kind: str, text: str, **details) -> None:
        self.bus.publish(EVENTS_TOPIC, SENDER, event_payload(kind, text, **details))
