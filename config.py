"""
Runtime configuration for the TransSync driver map layer.

All values come from environment variables (a local .env file is loaded
first) so the same build can point at a laptop backend during development
and at the fleet API in production.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes")


# ---------------------------------------------------------------------------
# Backend API
# ---------------------------------------------------------------------------

# Root of the TransSync REST API. The "/api" suffix is appended here so
# TRANSSYNC_API_URL can be the bare host the backend team hands out.
API_BASE_URL = os.environ.get("TRANSSYNC_API_URL", "http://localhost:5000").rstrip("/") + "/api"

# Per-request timeout (seconds). A timed-out call is a transport failure.
REQUEST_TIMEOUT = float(os.environ.get("TRANSSYNC_REQUEST_TIMEOUT", "15"))

DEBUG_MODE = _env_bool("TRANSSYNC_DEBUG_MODE")

# ---------------------------------------------------------------------------
# Local storage (bearer token)
# ---------------------------------------------------------------------------

STORAGE_PREFIX = os.environ.get("TRANSSYNC_STORAGE_PREFIX", "transsync_")
CREDENTIALS_PATH = os.environ.get(
    "TRANSSYNC_CREDENTIALS_PATH",
    os.path.join(os.path.expanduser("~"), ".transsync", "credentials.json"),
)

# ---------------------------------------------------------------------------
# Map data layer
# ---------------------------------------------------------------------------

DEFAULT_COUNTRY = os.environ.get("TRANSSYNC_DEFAULT_COUNTRY", "co")
CACHE_TTL_SECONDS = float(os.environ.get("MAP_CACHE_TTL_SECONDS", "300"))

SEARCH_MIN_QUERY_LENGTH = 2
ADDRESS_MIN_QUERY_LENGTH = 3
RECENT_SEARCHES_LIMIT = 5

# Assumed average speed for straight-line fallback estimates.
FALLBACK_SPEED_KMH = 50

# ---------------------------------------------------------------------------
# Map screen simulation
# ---------------------------------------------------------------------------

SIMULATION_INTERVAL_SECONDS = float(os.environ.get("SIMULATION_INTERVAL_SECONDS", "3"))
SIMULATION_SPEED_KMH = float(os.environ.get("SIMULATION_SPEED_KMH", "30"))

# ---------------------------------------------------------------------------
# Driver console / ops
# ---------------------------------------------------------------------------

HEALTH_CHECK_INTERVAL = int(os.environ.get("HEALTH_CHECK_INTERVAL", "300"))
RATE_LIMIT_DEFAULT = os.environ.get("RATE_LIMIT_DEFAULT", "120/minute")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
