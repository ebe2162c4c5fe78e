#!/usr/bin/env python3
"""
config.py
=========
Application-wide configuration constants.

Values can be overridden via environment variables (see :mod:`main`).
This module is a thin, import-safe leaf — it never imports from
other project packages.
"""

# ── Phase timing defaults (seconds) ──────────────────────────────────────────
DEFAULT_TICK_PERIOD_S: float = 1.0
DEFAULT_NORMAL_GREEN_S: float = 10.0
DEFAULT_YELLOW_S: float = 2.0
DEFAULT_PRIORITY_GREEN_S: float = 8.0

# ── Display defaults ─────────────────────────────────────────────────────────
DEFAULT_PREVIEW_SIZE: int = 5

# ── Event bus defaults ───────────────────────────────────────────────────────
DEFAULT_BUS_HISTORY: int = 200

# ── Random arrivals (0 disables the generator) ───────────────────────────────
DEFAULT_ARRIVAL_RATE_PER_S: float = 0.0
DEFAULT_EMERGENCY_RATE: float = 0.05

# ── HTTP API ─────────────────────────────────────────────────────────────────
DEFAULT_API_HOST: str = "127.0.0.1"
DEFAULT_API_PORT: int = 8000

# ── Telegram notifications ───────────────────────────────────────────────────
TELEGRAM_API_URL: str = "https://api.telegram.org"
TELEGRAM_TIMEOUT_S: float = 2.0
