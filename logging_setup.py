#!/usr/bin/env python3
"""
logging_setup.py
================
Configures the root logger for the traffic light service: console output
plus a rotating ``traffic.log`` (1 MB, 2 backups).  Every light change
and vehicle passage also lands in ``controller_debug.log`` regardless of
the console level.

Call :func:`setup_logging` once at startup, before the controller and
the API server are built.
"""

import logging
from logging.handlers import RotatingFileHandler
from typing import Union

# Loggers that log every request or retry at INFO.
_NOISY_LOGGERS = ("uvicorn.access", "urllib3")

# Loggers whose DEBUG output is kept in the controller debug file.
_DEBUG_LOGGERS = ("phase_controller", "intersection")


def setup_logging(level: Union[int, str] = logging.INFO) -> None:
    """Install the console, file and controller debug handlers.

    Parameters
    ----------
    level : int or str
        Minimum severity for console and ``traffic.log``, either a
        ``logging`` constant or a name such as ``"debug"``.  Unknown
        names fall back to INFO.
    """
    if isinstance(level, str):
        level = getattr(logging, level.strip().upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
    )

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(fmt)

    traffic_log = RotatingFileHandler("traffic.log", maxBytes=1_000_000, backupCount=2)
    traffic_log.setLevel(level)
    traffic_log.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(console)
    root.addHandler(traffic_log)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    # ── Controller debug file ─────────────────────────────────────────
    debug_log = RotatingFileHandler(
        "controller_debug.log", maxBytes=5_000_000, backupCount=2
    )
    debug_log.setLevel(logging.DEBUG)
    debug_log.setFormatter(fmt)
    for name in _DEBUG_LOGGERS:
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        logger.handlers.clear()
        logger.addHandler(debug_log)
