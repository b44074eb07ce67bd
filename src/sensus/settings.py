"""Static configuration for sensus.

Operational knobs (paths, rate limit, retry policy, throttle, logging) live in
a single optional config.json for quick edits without touching Python.
Secrets and live flags come from the environment (and a .env file).
"""

from __future__ import annotations

import json
import os

from dotenv import load_dotenv

from sensus.adapters.gemini_client import GEMINI_BASE_URL as DEFAULT_GEMINI_BASE_URL
from sensus.core.config import (
    DEFAULT_TEXT_MODEL,
    ClassifierConfig,
    RateLimitConfig,
    RetryPolicy,
    SessionThrottleConfig,
)

load_dotenv()

PROJECT_ROOT = os.path.abspath(os.getenv("SENSUS_HOME", os.getcwd()))

CONFIG_PATH = os.getenv("SENSUS_CONFIG", os.path.join(PROJECT_ROOT, "config.json"))


def _load_json_config(path: str) -> dict:
    """Load config.json if present; every key has a default."""

    if not os.path.exists(path):
        return {}

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def resolve_path(path: str) -> str:
    return path if os.path.isabs(path) else os.path.join(PROJECT_ROOT, path)


def build_rate_limit(raw: dict) -> RateLimitConfig:
    return RateLimitConfig(
        window_seconds=float(raw.get("window_seconds", 60)),
        max_requests=int(raw.get("max_requests", 1)),
    )


def build_retry_policy(raw: dict) -> RetryPolicy:
    # Retries default to off: every retry is a billed classifier call.
    return RetryPolicy(
        max_retries=int(raw.get("max_retries", 0)),
        base_delay=float(raw.get("base_delay_seconds", 5)),
        multiplier=float(raw.get("multiplier", 3)),
    )


def build_session_throttle(raw: dict) -> SessionThrottleConfig:
    return SessionThrottleConfig(cooldown_seconds=float(raw.get("cooldown_hours", 24)) * 3600)


def classifier_config() -> ClassifierConfig:
    """Read the live classifier flags; called once per classification."""

    text_model = os.getenv("GEMINI_MODEL") or DEFAULT_TEXT_MODEL
    return ClassifierConfig(
        disabled=os.getenv("DISABLE_GEMINI", "false").lower() == "true",
        text_model=text_model,
        vision_model=os.getenv("GEMINI_VISION_MODEL") or text_model,
    )


def gemini_api_key() -> str:
    return os.getenv("GEMINI_API_KEY", "")


_CONFIG = _load_json_config(CONFIG_PATH)

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Storage locations. The database path can be overridden per deployment.
_storage = _CONFIG.get("storage", {})
DB_PATH = resolve_path(os.getenv("SENSUS_DB_PATH", _storage.get("db_path", "data/sensus.db")))
CACHE_PATH = resolve_path(_storage.get("cache_path", "cache/emotional_vectors.json"))
AUDIT_LOG_PATH = resolve_path(_storage.get("audit_log_path", "logs/gemini_calls.log"))

# Admission and retry controls, tuned operationally rather than fixed.
RATE_LIMIT = build_rate_limit(_CONFIG.get("rate_limit", {}))
RETRY_POLICY = build_retry_policy(_CONFIG.get("retry", {}))
SESSION_THROTTLE = build_session_throttle(_CONFIG.get("session_throttle", {}))

_classifier = _CONFIG.get("classifier", {})
REQUEST_TIMEOUT_SECONDS = float(_classifier.get("timeout_seconds", 30))
GEMINI_BASE_URL = _classifier.get("base_url", DEFAULT_GEMINI_BASE_URL)

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
