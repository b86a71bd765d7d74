"""
Configuration for the segment pull engine.

All knobs are env-driven (loaded from .env when present). The only required
secret is the audience provider API key, and even that is optional at import
time: a missing key makes the run soft-skip instead of crashing the scheduler.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_BASE_URL = "https://api.audiencelab.io"
DEFAULT_SOURCE_TAG = "segment_pull"


# -----------------------------
# Env helpers
# -----------------------------
def _env_str(name: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    raw = raw.strip()
    return raw or default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, str(default)) or str(default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, str(default)) or str(default))
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y", "on")


@dataclass
class EngineSettings:
    # provider
    api_key: Optional[str] = None
    base_url: str = DEFAULT_BASE_URL
    request_timeout_s: float = 30.0

    # volume caps
    max_records_per_run: int = 500
    max_pages: int = 5
    page_size: int = 500
    days_back: int = 7
    min_quality_score: int = 20

    # routing
    route_window_minutes: int = 15
    source_tag: str = DEFAULT_SOURCE_TAG

    # orchestration
    step_retries: int = 2
    retry_backoff_s: float = 10.0
    timeout_s: int = 600

    # notification
    webhook_url: Optional[str] = None
    notify_when_empty: bool = True

    @property
    def has_provider_credential(self) -> bool:
        return bool((self.api_key or "").strip())

    @classmethod
    def from_env(cls) -> "EngineSettings":
        return cls(
            api_key=_env_str("AUDIENCE_API_KEY"),
            base_url=_env_str("AUDIENCE_API_BASE_URL", DEFAULT_BASE_URL) or DEFAULT_BASE_URL,
            request_timeout_s=_env_float("AUDIENCE_API_TIMEOUT_S", 30.0),
            max_records_per_run=max(0, _env_int("SEGMENT_PULL_MAX_RECORDS_PER_RUN", 500)),
            max_pages=max(1, _env_int("SEGMENT_PULL_MAX_PAGES", 5)),
            page_size=max(1, _env_int("SEGMENT_PULL_PAGE_SIZE", 500)),
            days_back=_env_int("SEGMENT_PULL_DAYS_BACK", 7),
            min_quality_score=_env_int("SEGMENT_PULL_MIN_QUALITY_SCORE", 20),
            route_window_minutes=_env_int("SEGMENT_PULL_ROUTE_WINDOW_MINUTES", 15),
            source_tag=_env_str("SEGMENT_PULL_SOURCE_TAG", DEFAULT_SOURCE_TAG) or DEFAULT_SOURCE_TAG,
            step_retries=max(0, _env_int("SEGMENT_PULL_STEP_RETRIES", 2)),
            retry_backoff_s=_env_float("SEGMENT_PULL_RETRY_BACKOFF_S", 10.0),
            timeout_s=_env_int("SEGMENT_PULL_TIMEOUT_S", 600),
            # Prefer the main webhook, fall back to the legacy alerts URL.
            webhook_url=_env_str("DISCORD_WEBHOOK_MAIN") or _env_str("DISCORD_ALERTS_URL"),
            notify_when_empty=_env_bool("SEGMENT_PULL_NOTIFY_WHEN_EMPTY", True),
        )
