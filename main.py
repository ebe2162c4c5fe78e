#!/usr/bin/env python3
"""
main.py
=======
Runs the intersection: phase controller, notification sinks, optional
random arrivals and optional HTTP API.

Configuration comes from environment variables (defaults in :mod:`config`)::

    TRAFFIC_TICK_S  TRAFFIC_GREEN_S  TRAFFIC_YELLOW_S  TRAFFIC_PRIORITY_GREEN_S
    TRAFFIC_ARRIVAL_RATE  TRAFFIC_EMERGENCY_RATE  TRAFFIC_SEED
    TRAFFIC_API  TRAFFIC_API_HOST  TRAFFIC_API_PORT
    TRAFFIC_TELEGRAM_TOKEN  TRAFFIC_TELEGRAM_CHAT_ID
    TRAFFIC_LOG_LEVEL
"""

import logging
import os
import sys
import time
from typing import Optional

import config
# Logging
from logging_setup import setup_logging
# Event bus and notification sinks
from bus import EventBus, LogNotifier, TelegramNotifier, attach_notifier
# Intersection core
from sim.arrivals import RandomArrivals
from sim.errors import MisconfiguredDuration
from sim.intersection import Intersection
from sim.phase_controller import PhaseController
from sim.timing_policy import TimingPolicy


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, default).strip() or default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise MisconfiguredDuration(name, raw) from None


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


def policy_from_env() -> TimingPolicy:
    """Build the timing policy; raises MisconfiguredDuration on bad values."""
    return TimingPolicy(
        tick_period_s=_env_float("TRAFFIC_TICK_S", config.DEFAULT_TICK_PERIOD_S),
        normal_green_s=_env_float("TRAFFIC_GREEN_S", config.DEFAULT_NORMAL_GREEN_S),
        yellow_s=_env_float("TRAFFIC_YELLOW_S", config.DEFAULT_YELLOW_S),
        priority_green_s=_env_float(
            "TRAFFIC_PRIORITY_GREEN_S", config.DEFAULT_PRIORITY_GREEN_S
        ),
    )


def main() -> int:
    setup_logging(_env_str("TRAFFIC_LOG_LEVEL", "INFO"))
    log = logging.getLogger("main")

    try:
        policy = policy_from_env()
    except MisconfiguredDuration as exc:
        log.error("Refusing to start: %s", exc)
        return 2

    bus = EventBus(history=config.DEFAULT_BUS_HISTORY)
    attach_notifier(bus, LogNotifier())

    token = os.environ.get("TRAFFIC_TELEGRAM_TOKEN", "")
    chat_id = os.environ.get("TRAFFIC_TELEGRAM_CHAT_ID", "")
    if token and chat_id:
        attach_notifier(bus, TelegramNotifier(token, chat_id))
    else:
        log.info("Telegram not configured, notifications go to the log only")

    controller = PhaseController(Intersection(), bus=bus, policy=policy)

    arrivals = None
    rate = _env_float("TRAFFIC_ARRIVAL_RATE", config.DEFAULT_ARRIVAL_RATE_PER_S)
    if rate > 0:
        arrivals = RandomArrivals(
            controller,
            rate_per_s=rate,
            emergency_rate=_env_float("TRAFFIC_EMERGENCY_RATE", config.DEFAULT_EMERGENCY_RATE),
            seed=_env_int("TRAFFIC_SEED", None),
        )

    log.info("Starting intersection with %s", policy.as_dict())
    controller.start()
    if arrivals is not None:
        arrivals.start()

    try:
        if _env_flag("TRAFFIC_API"):
            from server.api import serve

            serve(
                controller,
                host=_env_str("TRAFFIC_API_HOST", config.DEFAULT_API_HOST),
                port=_env_int("TRAFFIC_API_PORT", config.DEFAULT_API_PORT),
            )
        else:
            while True:
                time.sleep(1.0)
    except KeyboardInterrupt:
        log.info("Shutting down...")
    finally:
        if arrivals is not None:
            arrivals.stop()
        controller.stop()
        bus.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
