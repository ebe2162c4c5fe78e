#!/usr/bin/env python3
"""
sim/timing_policy.py
====================
Tunable timing parameters for the phase controller.  Every constant lives
in the frozen :class:`TimingPolicy` dataclass so that experiments can swap
policies without touching code.

Durations are validated on construction; a zero, negative or non-numeric
value raises :class:`~sim.errors.MisconfiguredDuration` and the simulation
never starts.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields

from config import (
    DEFAULT_NORMAL_GREEN_S,
    DEFAULT_PRIORITY_GREEN_S,
    DEFAULT_TICK_PERIOD_S,
    DEFAULT_YELLOW_S,
)
from sim.errors import MisconfiguredDuration


@dataclass(frozen=True)
class TimingPolicy:
    """Immutable bag of phase-controller timings (all in seconds)."""

    tick_period_s: float = DEFAULT_TICK_PERIOD_S
    """Interval between two controller ticks."""

    normal_green_s: float = DEFAULT_NORMAL_GREEN_S
    """Green duration of a pair in the normal cycle."""

    yellow_s: float = DEFAULT_YELLOW_S
    """Yellow duration for every transition, normal or priority."""

    priority_green_s: float = DEFAULT_PRIORITY_GREEN_S
    """Upper bound on a priority green, measured from its start."""

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise MisconfiguredDuration(f.name, value)
            if not math.isfinite(value) or value <= 0:
                raise MisconfiguredDuration(f.name, value)

    def as_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
