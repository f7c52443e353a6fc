"""
Agent orchestration core configuration.

All values come from the process environment, with an optional JSON overlay at
data/config.json for the non-secret settings. Required credentials are checked
by validate_config() at startup.
"""
import os
import json
import logging
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

# Project root
BASE_DIR = Path(__file__).resolve().parent.parent

config_data = {}
_config_file = BASE_DIR / "data" / "config.json"
if _config_file.exists():
    try:
        with open(_config_file, "r", encoding="utf-8") as _f:
            config_data = json.load(_f)
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config overlay {_config_file}: {e}")


def _int(name: str, default: int) -> int:
    raw = os.getenv(name, config_data.get(name, default))
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _csv(raw: Optional[str]) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


# Model provider
MODEL_API_KEY = os.getenv("MODEL_API_KEY") or os.getenv("GEMINI_API_KEY", "")
MODEL_ID = os.getenv("MODEL_ID") or os.getenv("AI_MODEL") or config_data.get("MODEL_ID", "gemini-2.0-flash-001")
MODEL_BASE_URL = os.getenv("MODEL_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
# Upper bound for AgentConfig.max_tokens
MODEL_MAX_OUTPUT_TOKENS = _int("MODEL_MAX_OUTPUT_TOKENS", 8192)

# Auth collaborator
AUTH_PROVIDER_URL = os.getenv("AUTH_PROVIDER_URL", "")
AUTH_SERVICE_KEY = os.getenv("AUTH_SERVICE_KEY", "")
JWT_SECRET = os.getenv("JWT_SECRET", "")

# HTTP server - default to localhost only for security
HOST = os.getenv("HOST", config_data.get("HOST", "127.0.0.1"))
PORT = _int("PORT", 5000)
FRONTEND_URL = os.getenv("FRONTEND_URL", config_data.get("FRONTEND_URL", "http://localhost:3000"))
ALLOWED_ORIGINS = sorted(set(_csv(os.getenv("ALLOWED_ORIGINS")) + ([FRONTEND_URL] if FRONTEND_URL else [])))

LOG_LEVEL = os.getenv("LOG_LEVEL", config_data.get("LOG_LEVEL", "INFO")).upper()

# Interaction log store (SQLite)
_repo_default_db = BASE_DIR / "data" / "agentcore.db"
_user_default_db = Path.home() / ".agentcore" / "agentcore.db"
if os.getenv("AGENTCORE_DB"):
    DB_PATH = os.getenv("AGENTCORE_DB")
elif _repo_default_db.parent.exists():
    DB_PATH = str(_repo_default_db)
else:
    # Installed package mode normally runs outside repository checkout.
    DB_PATH = str(_user_default_db)
INTERACTION_LOG_QUEUE_SIZE = _int("INTERACTION_LOG_QUEUE_SIZE", 1000)
# Stored interactions older than this are pruned at startup (0 = keep forever)
INTERACTION_LOG_RETENTION_DAYS = _int("INTERACTION_LOG_RETENTION_DAYS", 30)

# Response cache
CACHE_TTL_SECONDS = _int("CACHE_TTL_SECONDS", 600)
CACHE_MAX_ENTRIES = _int("CACHE_MAX_ENTRIES", 1000)

# Hard deadline for a model call made on behalf of a task (seconds)
TASK_TIMEOUT_SECONDS = _int("TASK_TIMEOUT_SECONDS", 10)

# Realtime replay buffer: max messages per user, and how long a disconnected
# user's room subscriptions keep collecting events.
REALTIME_BUFFER_SIZE = _int("REALTIME_BUFFER_SIZE", 100)
REALTIME_BUFFER_WINDOW_SECONDS = _int("REALTIME_BUFFER_WINDOW_SECONDS", 300)

# Rate limiting: (max requests, window seconds) per class. 0 disables a class.
RATE_LIMIT_MAX = _int("RATE_LIMIT_MAX", 100)
RATE_LIMIT_WINDOW_MS = _int("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000)
RATE_LIMITS = {
    "api": (RATE_LIMIT_MAX, max(1, RATE_LIMIT_WINDOW_MS // 1000)),
    "ai": (_int("RATE_LIMIT_AI_MAX", 50), 60 * 60),
    "agents": (_int("RATE_LIMIT_AGENTS_MAX", 30), 5 * 60),
}

# Agents started at boot: "all", or a comma separated list of agent types (empty = none)
AGENT_AUTOSTART = os.getenv("AGENT_AUTOSTART", config_data.get("AGENT_AUTOSTART", ""))
# Optional per-type concurrency limits, e.g. "orderProcessing=1,contentGeneration=4"
AGENT_CONCURRENCY = os.getenv("AGENT_CONCURRENCY", config_data.get("AGENT_CONCURRENCY", ""))

# Interval of system:health broadcasts on the realtime gateway (0 = disabled)
HEALTH_BROADCAST_SECONDS = _int("HEALTH_BROADCAST_SECONDS", 60)

SERVICE_VERSION = "0.1.0"


# ─────────────────────────────────────────────
# Startup validation
# ─────────────────────────────────────────────

REQUIRED_VARS = {
    "MODEL_API_KEY": "Create an API key for the model provider and export it as MODEL_API_KEY (GEMINI_API_KEY is also accepted).",
    "AUTH_PROVIDER_URL": "Set AUTH_PROVIDER_URL to the base URL of the authentication service.",
    "AUTH_SERVICE_KEY": "Set AUTH_SERVICE_KEY to the service-role key of the authentication service.",
    "JWT_SECRET": "Generate one with: python -c \"import secrets; print(secrets.token_hex(32))\"",
}

_PLACEHOLDERS = {
    "your_gemini_api_key_here",
    "your_model_api_key_here",
    "your_supabase_service_key_here",
    "your_jwt_secret_here_generate_a_secure_32_char_string",
}

_INT_VARS = (
    "PORT", "RATE_LIMIT_MAX", "RATE_LIMIT_WINDOW_MS", "CACHE_TTL_SECONDS",
    "CACHE_MAX_ENTRIES", "TASK_TIMEOUT_SECONDS", "REALTIME_BUFFER_SIZE",
    "REALTIME_BUFFER_WINDOW_SECONDS", "INTERACTION_LOG_QUEUE_SIZE", "HEALTH_BROADCAST_SECONDS",
)


def validate_config(env: Optional[Mapping[str, str]] = None) -> list[str]:
    """
    Check the environment for missing or malformed settings.

    Returns a list of human-readable problems; an empty list means the
    configuration is usable.
    """
    env = os.environ if env is None else env
    problems: list[str] = []

    values = dict(env)
    if not values.get("MODEL_API_KEY") and values.get("GEMINI_API_KEY"):
        values["MODEL_API_KEY"] = values["GEMINI_API_KEY"]

    for name, hint in REQUIRED_VARS.items():
        value = (values.get(name) or "").strip()
        if not value:
            problems.append(f"{name} is required but not set. {hint}")
        elif value in _PLACEHOLDERS:
            problems.append(f"{name} still holds a placeholder value. {hint}")

    jwt_secret = values.get("JWT_SECRET") or ""
    if jwt_secret and len(jwt_secret) < 32:
        problems.append("JWT_SECRET should be at least 32 characters long.")

    auth_url = values.get("AUTH_PROVIDER_URL") or ""
    if auth_url:
        parsed = urlparse(auth_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            problems.append(f"AUTH_PROVIDER_URL is not a valid http(s) URL: {auth_url!r}")

    for name in _INT_VARS:
        raw = values.get(name)
        if raw is None or raw == "":
            continue
        try:
            if int(raw) < 0:
                problems.append(f"{name} must be a non-negative integer, got {raw!r}")
        except ValueError:
            problems.append(f"{name} must be an integer, got {raw!r}")

    return problems


def require_valid_config(env: Optional[Mapping[str, str]] = None) -> None:
    """Abort the process with an explanation when the configuration is unusable."""
    problems = validate_config(env)
    if not problems:
        return
    logger.error("Configuration is invalid:")
    for problem in problems:
        logger.error(f"  - {problem}")
    raise SystemExit(1)


def parse_concurrency(raw: Optional[str]) -> dict[str, int]:
    """Parse ``type=limit`` pairs; malformed pairs are logged and skipped."""
    limits: dict[str, int] = {}
    for pair in _csv(raw):
        name, _, value = pair.partition("=")
        try:
            limit = int(value)
        except ValueError:
            logger.warning(f"Ignoring malformed AGENT_CONCURRENCY entry: {pair!r}")
            continue
        if limit >= 1:
            limits[name.strip()] = limit
    return limits
