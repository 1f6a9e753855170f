"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
API_VERSION: str = "0.1.0"
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info").upper()

# Bind address for the uvicorn launcher (root main.py)
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
API_RELOAD: bool = os.getenv("API_RELOAD", "false").lower() == "true"

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file (host store for courts, templates, bookings, blocks)
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "venue_availability.db"))

# ── Change notifier ───────────────────────────────────────────────────────

# Bursts of change events closer together than this collapse into a single
# recompute (seconds).
NOTIFY_DEBOUNCE_SECONDS: float = float(os.getenv("NOTIFY_DEBOUNCE_SECONDS", "0.25"))

# How often the SQLite change feed polls the change_log table (seconds).
CHANGE_FEED_INTERVAL: float = float(os.getenv("CHANGE_FEED_INTERVAL", "1.0"))

# Consecutive failed polls before subscribers are told the feed is lost.
CHANGE_FEED_MAX_FAILURES: int = int(os.getenv("CHANGE_FEED_MAX_FAILURES", "3"))

# ── Cache ─────────────────────────────────────────────────────────────────

# Upper bound on cached (court, date, audience) results; the least recently
# used entry is evicted past it.
CACHE_MAX_ENTRIES: int = int(os.getenv("CACHE_MAX_ENTRIES", "1024"))

# ── Rate limiting ─────────────────────────────────────────────────────────

RATE_LIMIT_DEFAULT: str = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
