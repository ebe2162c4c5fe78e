#!/usr/bin/env python3
"""
sim/arrivals.py
===============
Background producer that feeds random vehicles into a
:class:`~sim.phase_controller.PhaseController`.

Arrivals are a Poisson process of ``rate_per_s`` vehicles per second
spread uniformly over the four approaches; each arrival is an emergency
vehicle with probability ``emergency_rate``.  Uses its own seeded
:class:`random.Random` so runs are reproducible.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Optional, Sequence

from sim.model import Direction, Vehicle, VehicleType

log = logging.getLogger("arrivals")

_ORDINARY_TYPES: Sequence[VehicleType] = tuple(t for t in VehicleType if not t.is_emergency)
_EMERGENCY_TYPES: Sequence[VehicleType] = tuple(t for t in VehicleType if t.is_emergency)

# Relative frequency of ordinary traffic.
_ORDINARY_WEIGHTS = {
    VehicleType.CAR: 6,
    VehicleType.MOTORCYCLE: 2,
    VehicleType.BUS: 1,
    VehicleType.TRUCK: 1,
}


class RandomArrivals:
    """Random vehicle generator running on its own daemon thread.

    Parameters
    ----------
    controller : PhaseController
        Target; vehicles are submitted through ``controller.add_vehicle``.
    rate_per_s : float
        Mean arrivals per second (must be positive to start the thread).
    emergency_rate : float
        Probability (0.0–1.0) that an arrival is an emergency vehicle.
    seed : int or None
        Seed for reproducibility.
    """

    def __init__(
        self,
        controller,
        rate_per_s: float,
        emergency_rate: float = 0.05,
        seed: Optional[int] = None,
    ) -> None:
        if rate_per_s <= 0:
            raise ValueError(f"rate_per_s must be positive, got {rate_per_s!r}")
        if not 0.0 <= emergency_rate <= 1.0:
            raise ValueError(f"emergency_rate must be within [0, 1], got {emergency_rate!r}")
        self._controller = controller
        self.rate_per_s = rate_per_s
        self.emergency_rate = emergency_rate
        self._rng = random.Random(seed)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def spawn_once(self) -> Vehicle:
        """Submit one random vehicle and return it."""
        direction = self._rng.choice(list(Direction))
        if self._rng.random() < self.emergency_rate:
            vehicle_type = self._rng.choice(_EMERGENCY_TYPES)
        else:
            vehicle_type = self._rng.choices(
                _ORDINARY_TYPES,
                weights=[_ORDINARY_WEIGHTS[t] for t in _ORDINARY_TYPES],
            )[0]
        vehicle = self._controller.add_vehicle(vehicle_type, direction)
        log.debug("spawned %s", vehicle)
        return vehicle

    def start(self) -> bool:
        with self._lock:
            if self._thread is not None:
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._loop, daemon=True, name="RandomArrivals"
            )
            self._thread.start()
        log.info("RandomArrivals started at %.2f veh/s", self.rate_per_s)
        return True

    def stop(self) -> bool:
        with self._lock:
            thread, self._thread = self._thread, None
            if thread is None:
                return False
            self._stop_event.set()
            thread.join(timeout=2.0)
        log.info("RandomArrivals stopped")
        return True

    def _loop(self) -> None:
        while not self._stop_event.wait(self._rng.expovariate(self.rate_per_s)):
            try:
                self.spawn_once()
            except Exception:
                log.exception("RandomArrivals spawn error")
