"""
sim — Intersection core
=======================

Modules
-------
model
    :class:`Direction`, :class:`VehicleType`, :class:`Vehicle`,
    :class:`TrafficLight` and the pair helpers.
intersection
    :class:`Intersection` queues, lights and read-only snapshots.
phase_controller
    :class:`PhaseController` tick-driven light / priority state machine.
timing_policy
    :class:`TimingPolicy` validated timing constants.
arrivals
    :class:`RandomArrivals` background vehicle producer.
errors
    :class:`InvalidDirection`, :class:`MisconfiguredDuration`.
"""
