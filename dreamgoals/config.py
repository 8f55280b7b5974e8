"""
Goal engine configuration
Single source of truth for environment settings & scoring points
"""
import os


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# =========================
# Logging
# =========================

LOG_LEVEL = os.getenv("DREAMGOALS_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("DREAMGOALS_LOG_FILE") or None
JSON_LOGS = _env_flag("DREAMGOALS_JSON_LOGS")

# =========================
# Persistence collaborators
# =========================

# Base URL of the item store HTTP API (saveDreams, getCurrentWeek, ...)
ITEM_STORE_URL = os.getenv("ITEM_STORE_URL", "http://localhost:7071/api")
ITEM_STORE_TIMEOUT = float(os.getenv("ITEM_STORE_TIMEOUT", "10.0"))

# Used by the SQL-backed item store
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./dreamgoals.db")

# Which item store the API process wires up: "http" | "sql" | "memory"
ITEM_STORE_BACKEND = os.getenv("ITEM_STORE_BACKEND", "memory")

# =========================
# HTTP surface
# =========================

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173"
).split(",")

# =========================
# Scoring points (defaults)
# =========================

SCORING_RULES = {
    "dream_completed": 10,
    "weekly_goal_completed": 3,
    "milestone_completed": 15,
    # connects award 3..5 depending on the connect
    "connect": 3,
}

# =========================
# Calendar
# =========================

# 52 weeks / 12 months, rounded the way user-facing durations are shown
WEEKS_PER_MONTH = "4.33"

# Default completions per period when a recurring goal has no frequency
DEFAULT_FREQUENCY = {
    "weekly": 1,
    "monthly": 2,
}
