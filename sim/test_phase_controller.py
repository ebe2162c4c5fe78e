#!/usr/bin/env python3
"""
Tests for the phase / priority state machine and its ticker thread.

Timing tests drive :meth:`PhaseController.tick` with explicit timestamps
(one tick per second) instead of sleeping.
"""

from __future__ import annotations

import random
import threading
import time
import unittest
from typing import Dict, List

from bus.event_bus import EVENTS_TOPIC, EventBus
from sim.errors import InvalidDirection
from sim.intersection import Intersection
from sim.model import Direction, LightState, Vehicle, VehicleType
from sim.phase_controller import PhaseController
from sim.timing_policy import TimingPolicy

G, Y, R = LightState.GREEN, LightState.YELLOW, LightState.RED


class _LateArrivalIntersection(Intersection):
    """Queues ``late`` right after the next head inspection returns."""

    def __init__(self) -> None:
        super().__init__()
        self.late = None

    def peek_next(self, direction):
        head = super().peek_next(direction)
        late, self.late = self.late, None
        if late is not None:
            self.enqueue(late)
        return head


class _CorruptedScanIntersection(Intersection):
    def scan_for_priority_request(self):
        raise InvalidDirection("scan produced a non-direction")


class _Recorder:
    def __init__(self) -> None:
        self.payloads: List[dict] = []

    def __call__(self, msg) -> None:
        self.payloads.append(msg.payload)

    @property
    def kinds(self) -> List[str]:
        return [p["kind"] for p in self.payloads]


class _ControllerTestCase(unittest.TestCase):
    policy = TimingPolicy(
        tick_period_s=1.0, normal_green_s=10.0, yellow_s=2.0, priority_green_s=8.0
    )

    def setUp(self) -> None:
        self.bus = EventBus()
        self.events = _Recorder()
        self.bus.subscribe(EVENTS_TOPIC, self.events)
        self.intersection = Intersection()
        self.ctrl = PhaseController(self.intersection, bus=self.bus, policy=self.policy)
        self.ctrl.reset(now=0.0)

    def tearDown(self) -> None:
        self.ctrl.stop()
        self.bus.close()

    def lights(self) -> Dict[Direction, LightState]:
        return self.intersection.light_states()

    def assert_pairs(self, ns: LightState, ew: LightState) -> None:
        lights = self.lights()
        self.assertEqual((lights[Direction.NORTH], lights[Direction.SOUTH]), (ns, ns))
        self.assertEqual((lights[Direction.EAST], lights[Direction.WEST]), (ew, ew))

    def assert_no_conflict(self) -> None:
        lights = self.lights()
        ns = {lights[Direction.NORTH], lights[Direction.SOUTH]}
        ew = {lights[Direction.EAST], lights[Direction.WEST]}
        if G in ns:
            self.assertEqual(ew, {R})
        if G in ew:
            self.assertEqual(ns, {R})


class NormalCycleTests(_ControllerTestCase):
    def test_reset_state(self) -> None:
        self.assert_pairs(G, R)
        self.assertIs(self.ctrl.green_pair, Direction.NORTH)
        self.assertEqual(self.ctrl.priority_state.name, "IDLE")

    def test_one_flip_after_green_plus_yellow(self) -> None:
        flips = 0
        previous = self.ctrl.green_pair
        for t in range(1, 13):
            self.ctrl.tick(now=float(t))
            self.assert_no_conflict()
            if self.ctrl.green_pair is not previous:
                flips += 1
                previous = self.ctrl.green_pair
            if t < 10:
                self.assert_pairs(G, R)
            elif t < 12:
                self.assert_pairs(Y, R)
        self.assertEqual(flips, 1)
        self.assert_pairs(R, G)
        self.assertIs(self.ctrl.green_pair, Direction.EAST)

    def test_cycle_returns_to_north_south(self) -> None:
        for t in range(1, 25):
            self.ctrl.tick(now=float(t))
        self.assert_pairs(G, R)
        self.assertIs(self.ctrl.green_pair, Direction.NORTH)

    def test_one_vehicle_per_green_direction_per_tick(self) -> None:
        for _ in range(3):
            self.ctrl.add_vehicle(VehicleType.CAR, Direction.NORTH)
        self.ctrl.add_vehicle(VehicleType.CAR, Direction.SOUTH)
        self.ctrl.add_vehicle(VehicleType.CAR, Direction.EAST)

        snap = self.ctrl.tick(now=1.0)
        self.assertEqual(len(snap.passed), 2)
        self.assertEqual(self.intersection.queue_size(Direction.NORTH), 2)
        self.assertEqual(self.intersection.queue_size(Direction.SOUTH), 0)
        self.assertEqual(self.intersection.queue_size(Direction.EAST), 1)


class PriorityOverrideTests(_ControllerTestCase):
    def test_end_to_end_ambulance_on_red_approach(self) -> None:
        car = self.ctrl.add_vehicle(VehicleType.CAR, Direction.NORTH)
        ambulance = self.ctrl.add_vehicle(VehicleType.AMBULANCE, Direction.EAST)

        snap = self.ctrl.tick(now=1.0)
        self.assertEqual(snap.priority_state, "YELLOW_TRANSITION")
        self.assertIs(snap.priority_direction, Direction.EAST)
        self.assert_pairs(Y, R)
        self.assertEqual(snap.passed, ())

        self.ctrl.tick(now=2.0)
        self.assert_pairs(Y, R)

        snap = self.ctrl.tick(now=3.0)
        self.assertEqual(snap.priority_state, "GREEN_ACTIVE")
        self.assert_pairs(R, G)
        self.assertEqual(snap.passed, (ambulance,))

        snap = self.ctrl.tick(now=4.0)
        self.assertEqual(snap.priority_state, "ENDING_YELLOW")
        self.assert_pairs(R, Y)
        self.assertEqual(self.intersection.queue_size(Direction.NORTH), 1)

        self.ctrl.tick(now=5.0)
        self.assert_pairs(R, Y)

        snap = self.ctrl.tick(now=6.0)
        self.assertEqual(snap.priority_state, "IDLE")
        self.assertIsNone(snap.priority_direction)
        self.assert_pairs(G, R)
        self.assertIs(self.ctrl.green_pair, Direction.NORTH)
        self.assertEqual(snap.passed, (car,))

        self.assertTrue(self.bus.flush())
        self.assertEqual(
            self.events.kinds,
            ["vehicle_queued", "emergency_detected", "priority_ending", "normal_flow_resumed"],
        )
        self.assertEqual(self.events.payloads[1]["direction"], "EAST")
        self.assertEqual(self.events.payloads[2]["direction"], "EAST")
        self.assertIn("NORTH/SOUTH", self.events.payloads[3]["text"])

    def test_direct_entry_when_crossing_pair_is_red(self) -> None:
        waiting_car = self.ctrl.add_vehicle(VehicleType.CAR, Direction.SOUTH)
        ambulance = self.ctrl.add_vehicle(VehicleType.AMBULANCE, Direction.NORTH)

        snap = self.ctrl.tick(now=1.0)
        self.assertEqual(snap.priority_state, "GREEN_ACTIVE")
        self.assert_pairs(G, R)
        # Only the emergency vehicle on the priority arm moves; SOUTH is frozen.
        self.assertEqual(snap.passed, (ambulance,))
        self.assertEqual(self.intersection.peek_next(Direction.SOUTH), waiting_car)

        snap = self.ctrl.tick(now=2.0)
        self.assertEqual(snap.priority_state, "ENDING_YELLOW")
        self.assert_pairs(Y, R)

        snap = self.ctrl.tick(now=4.0)
        self.assertEqual(snap.priority_state, "IDLE")
        self.assert_pairs(R, G)
        self.assertIs(self.ctrl.green_pair, Direction.EAST)
        self.assertEqual(self.intersection.queue_size(Direction.SOUTH), 1)

    def test_crossing_pair_already_yellow(self) -> None:
        for t in range(1, 11):
            self.ctrl.tick(now=float(t))
        self.assert_pairs(Y, R)

        self.ctrl.add_vehicle(VehicleType.POLICE, Direction.WEST)
        snap = self.ctrl.tick(now=11.0)
        self.assertEqual(snap.priority_state, "YELLOW_TRANSITION")
        self.assert_pairs(Y, R)

        self.ctrl.tick(now=12.0)
        self.assert_pairs(Y, R)
        snap = self.ctrl.tick(now=13.0)
        self.assertEqual(snap.priority_state, "GREEN_ACTIVE")
        self.assert_pairs(R, G)

    def test_priority_green_is_capped_and_head_is_forced_out(self) -> None:
        for _ in range(20):
            self.ctrl.add_vehicle(VehicleType.AMBULANCE, Direction.EAST)

        green_ticks = []
        for t in range(1, 14):
            snap = self.ctrl.tick(now=float(t))
            if snap.intersection.lights[Direction.EAST] is G:
                green_ticks.append(t)

        self.assertEqual(green_ticks, list(range(3, 11)))
        self.assertLessEqual(green_ticks[-1] - green_ticks[0], self.policy.priority_green_s)
        # 8 passed during GREEN_ACTIVE plus 1 removed at the transition.
        self.assertEqual(self.intersection.queue_size(Direction.EAST), 11)
        self.assertEqual(self.ctrl.priority_state.name, "IDLE")
        self.assert_pairs(G, R)

    def test_emergency_never_left_at_head_after_ending_yellow_begins(self) -> None:
        now = [0.0]
        ctrl = PhaseController(
            self.intersection,
            bus=self.bus,
            policy=TimingPolicy(tick_period_s=1.0, normal_green_s=10.0,
                                yellow_s=2.0, priority_green_s=1.0),
            clock=lambda: now[0],
        )
        ctrl.reset(now=0.0)
        first = ctrl.add_vehicle(VehicleType.FIRE_TRUCK, Direction.NORTH)
        second = ctrl.add_vehicle(VehicleType.FIRE_TRUCK, Direction.NORTH)

        snap = ctrl.tick(now=1.0)
        self.assertEqual(snap.passed, (first,))
        self.assertEqual(ctrl.intersection.peek_next(Direction.NORTH), second)

        snap = ctrl.tick(now=2.0)
        self.assertEqual(snap.priority_state, "ENDING_YELLOW")
        self.assertEqual(snap.passed, (second,))
        self.assertIsNone(ctrl.intersection.peek_next(Direction.NORTH))

    def test_arrival_during_release_keeps_its_place(self) -> None:
        intersection = _LateArrivalIntersection()
        ctrl = PhaseController(intersection, bus=self.bus, policy=self.policy)
        ctrl.reset(now=0.0)
        first = ctrl.add_vehicle(VehicleType.AMBULANCE, Direction.NORTH)

        snap = ctrl.tick(now=1.0)
        self.assertEqual(snap.passed, (first,))

        # Arrives after the head check that ends GREEN_ACTIVE.
        late = Vehicle.create(VehicleType.AMBULANCE, Direction.NORTH, clock=lambda: 1.5)
        intersection.late = late
        snap = ctrl.tick(now=2.0)
        self.assertEqual(snap.priority_state, "ENDING_YELLOW")
        self.assertEqual(snap.passed, ())
        self.assertEqual(intersection.queue_size(Direction.NORTH), 1)
        self.assertEqual(intersection.peek_next(Direction.NORTH), late)

        # Detected again once normal flow resumes, then given its own green.
        released = None
        for t in range(3, 12):
            snap = ctrl.tick(now=float(t))
            if late in snap.passed:
                released = snap
                break
        self.assertIsNotNone(released)
        self.assertEqual(released.priority_state, "GREEN_ACTIVE")
        self.assertIs(released.intersection.lights[Direction.NORTH], G)

    def test_cap_only_clears_the_inspected_head(self) -> None:
        intersection = _LateArrivalIntersection()
        ctrl = PhaseController(
            intersection,
            bus=self.bus,
            policy=TimingPolicy(tick_period_s=1.0, normal_green_s=10.0,
                                yellow_s=2.0, priority_green_s=1.0),
        )
        ctrl.reset(now=0.0)
        first = ctrl.add_vehicle(VehicleType.POLICE, Direction.NORTH)
        ctrl.add_vehicle(VehicleType.POLICE, Direction.NORTH)
        self.assertEqual(ctrl.tick(now=1.0).passed, (first,))

        # Outranks the inspected head, so it must not be the one removed.
        ambulance = Vehicle.create(VehicleType.AMBULANCE, Direction.NORTH, clock=lambda: 1.5)
        intersection.late = ambulance
        snap = ctrl.tick(now=2.0)
        self.assertEqual(snap.priority_state, "ENDING_YELLOW")
        self.assertEqual(snap.passed, ())
        self.assertEqual(intersection.peek_next(Direction.NORTH), ambulance)
        self.assertEqual(intersection.queue_size(Direction.NORTH), 2)

    def test_notification_failure_does_not_stop_the_tick(self) -> None:
        def broken_sink(msg) -> None:
            raise RuntimeError("delivery failed")

        self.bus.subscribe(EVENTS_TOPIC, broken_sink)
        self.ctrl.add_vehicle(VehicleType.AMBULANCE, Direction.WEST)
        for t in range(1, 7):
            self.ctrl.tick(now=float(t))

        self.assertTrue(self.bus.flush())
        self.assertGreaterEqual(self.bus.metrics.report()["failed"], 4)
        self.assertIn("normal_flow_resumed", self.events.kinds)
        self.assertEqual(self.ctrl.priority_state.name, "IDLE")

    def test_snapshots_reach_subscribers(self) -> None:
        received = []
        self.ctrl.subscribe_snapshots(received.append)
        for t in range(1, 4):
            self.ctrl.tick(now=float(t))
        self.assertTrue(self.bus.flush())
        self.assertEqual([s.tick for s in received], [1, 2, 3])
        self.assertEqual(received[-1].as_dict()["green_pair"], "NORTH/SOUTH")


class RandomTrafficInvariantTests(_ControllerTestCase):
    def test_invariants_hold_under_random_arrivals(self) -> None:
        rng = random.Random(2024)
        types = list(VehicleType)
        cap_ticks = int(self.policy.priority_green_s / self.policy.tick_period_s)
        green_active_run = 0

        for t in range(1, 400):
            for _ in range(rng.randint(0, 2)):
                weights = [1 if vt.is_emergency else 12 for vt in types]
                self.ctrl.add_vehicle(
                    rng.choices(types, weights=weights)[0], rng.choice(list(Direction))
                )
            snap = self.ctrl.tick(now=float(t))
            lights = snap.intersection.lights

            self.assertIs(lights[Direction.NORTH], lights[Direction.SOUTH])
            self.assertIs(lights[Direction.EAST], lights[Direction.WEST])
            self.assert_no_conflict()

            for v in snap.passed:
                if v.is_emergency and snap.priority_state == "ENDING_YELLOW":
                    # Cleared at the priority cap as the pair turned YELLOW.
                    self.assertIs(v.origin, snap.priority_direction)
                    self.assertIs(lights[v.origin], Y)
                    continue
                if v.is_emergency:
                    self.assertEqual(snap.priority_state, "GREEN_ACTIVE")
                    self.assertIs(v.origin, snap.priority_direction)
                else:
                    self.assertEqual(snap.priority_state, "IDLE")
                self.assertIs(lights[v.origin], G)
            self.assertLessEqual(len(snap.passed), 4)

            if snap.priority_state == "GREEN_ACTIVE":
                green_active_run += 1
                self.assertLessEqual(green_active_run, cap_ticks)
            else:
                green_active_run = 0


class LifecycleTests(unittest.TestCase):
    def setUp(self) -> None:
        self.bus = EventBus()
        self.events = _Recorder()
        self.bus.subscribe(EVENTS_TOPIC, self.events)
        self.intersection = Intersection()

    def tearDown(self) -> None:
        self.bus.close()

    def _ticker_threads(self) -> List[threading.Thread]:
        return [t for t in threading.enumerate() if t.name == "PhaseController" and t.is_alive()]

    def test_start_and_stop_are_idempotent(self) -> None:
        ctrl = PhaseController(
            self.intersection, bus=self.bus, policy=TimingPolicy(tick_period_s=60.0)
        )
        self.assertTrue(ctrl.start())
        self.assertFalse(ctrl.start())
        self.assertEqual(len(self._ticker_threads()), 1)

        # Corrupt the lights, then cycle stop/start.
        self.intersection.set_pair_state(Direction.EAST, LightState.GREEN)
        self.intersection.set_pair_state(Direction.NORTH, LightState.YELLOW)
        self.assertTrue(ctrl.stop())
        self.assertFalse(ctrl.stop())
        self.assertEqual(self._ticker_threads(), [])
        self.assertFalse(ctrl.is_running())

        self.assertTrue(ctrl.start())
        lights = self.intersection.light_states()
        self.assertEqual(
            lights,
            {Direction.NORTH: G, Direction.SOUTH: G, Direction.EAST: R, Direction.WEST: R},
        )
        self.assertEqual(ctrl.priority_state.name, "IDLE")
        self.assertIs(ctrl.green_pair, Direction.NORTH)
        self.assertTrue(ctrl.stop())

        self.assertTrue(self.bus.flush())
        self.assertEqual(
            self.events.kinds,
            ["simulation_started", "simulation_stopped",
             "simulation_started", "simulation_stopped"],
        )

    def test_stop_clears_active_override(self) -> None:
        ctrl = PhaseController(
            self.intersection, bus=self.bus, policy=TimingPolicy(tick_period_s=60.0)
        )
        ctrl.start()
        self.intersection.enqueue(Vehicle.create(VehicleType.AMBULANCE, Direction.EAST))
        ctrl.tick()
        self.assertEqual(ctrl.priority_state.name, "YELLOW_TRANSITION")
        ctrl.stop()
        self.assertEqual(ctrl.priority_state.name, "IDLE")
        self.assertIsNone(ctrl.priority_direction)

    def test_each_run_gets_its_own_stop_signal(self) -> None:
        ctrl = PhaseController(
            self.intersection, bus=self.bus, policy=TimingPolicy(tick_period_s=60.0)
        )
        ctrl.start()
        first_run = ctrl._stop_event
        ctrl.stop()
        ctrl.start()
        # A ticker left over from the first run can never be revived.
        self.assertTrue(first_run.is_set())
        self.assertIsNot(ctrl._stop_event, first_run)
        self.assertFalse(ctrl._stop_event.is_set())
        ctrl.stop()

    def test_invalid_direction_halts_and_reports_stop(self) -> None:
        ctrl = PhaseController(
            _CorruptedScanIntersection(),
            bus=self.bus,
            policy=TimingPolicy(tick_period_s=0.05),
        )
        self.assertTrue(ctrl.start())
        deadline = time.monotonic() + 3.0
        while (ctrl.is_running() or self._ticker_threads()) and time.monotonic() < deadline:
            time.sleep(0.01)

        self.assertFalse(ctrl.is_running())
        self.assertEqual(self._ticker_threads(), [])
        self.assertFalse(ctrl.get_snapshot().running)
        self.assertFalse(ctrl.stop())

        self.assertTrue(self.bus.flush())
        self.assertCountEqual(self.events.kinds, ["simulation_started", "simulation_stopped"])
        stopped = [p for p in self.events.payloads if p["kind"] == "simulation_stopped"]
        self.assertEqual(stopped[0]["reason"], "invalid_direction")

    def test_ticker_runs_and_halts(self) -> None:
        ctrl = PhaseController(
            self.intersection,
            bus=self.bus,
            policy=TimingPolicy(tick_period_s=0.01, normal_green_s=0.05,
                                yellow_s=0.02, priority_green_s=0.05),
        )
        ctrl.start()
        deadline = time.monotonic() + 3.0
        while ctrl.get_snapshot().tick < 5 and time.monotonic() < deadline:
            time.sleep(0.01)
        ctrl.stop()

        ticks_at_stop = ctrl.get_snapshot().tick
        self.assertGreaterEqual(ticks_at_stop, 5)
        time.sleep(0.05)
        self.assertEqual(ctrl.get_snapshot().tick, ticks_at_stop)
        self.assertFalse(ctrl.get_snapshot().running)


if __name__ == "__main__":
    unittest.main()
