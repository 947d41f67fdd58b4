"""
Collector settings. Loaded from the environment (and a .env file if present).
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

APICAR_BASE_URL = "https://api.apicar.store/api/history-cars"


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class CollectorSettings:
    """Tunables for providers, workers and the scheduler."""

    api_key: str = ""
    base_url: str = APICAR_BASE_URL
    page_size: int = 50
    pages_per_run: int = 25
    min_request_interval: float = 1.0
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 60.0
    rate_limit_factor: float = 4.0
    failure_threshold: int = 5
    idle_wait: float = 30.0
    stall_after: float = 60.0
    estimated_total_pages: int = 50
    auto_start_on_urgent: bool = False
    store: str = "json"
    store_path: Path | None = None  # None uses the backend default under data/

    @classmethod
    def from_env(cls, **overrides) -> "CollectorSettings":
        """Build settings from COLLECTOR_* / APICAR_* variables; keyword overrides win."""
        load_dotenv()
        env = os.environ
        store_path = env.get("COLLECTOR_STORE_PATH")
        settings = cls(
            api_key=env.get("APICAR_API_KEY", ""),
            base_url=env.get("APICAR_BASE_URL", APICAR_BASE_URL),
            page_size=int(env.get("COLLECTOR_PAGE_SIZE", 50)),
            pages_per_run=int(env.get("COLLECTOR_PAGES_PER_RUN", 25)),
            min_request_interval=float(env.get("COLLECTOR_MIN_REQUEST_INTERVAL", 1.0)),
            request_timeout=float(env.get("COLLECTOR_REQUEST_TIMEOUT", 30.0)),
            max_retries=int(env.get("COLLECTOR_MAX_RETRIES", 3)),
            backoff_base=float(env.get("COLLECTOR_BACKOFF_BASE", 1.0)),
            backoff_max=float(env.get("COLLECTOR_BACKOFF_MAX", 60.0)),
            rate_limit_factor=float(env.get("COLLECTOR_RATE_LIMIT_FACTOR", 4.0)),
            failure_threshold=int(env.get("COLLECTOR_FAILURE_THRESHOLD", 5)),
            idle_wait=float(env.get("COLLECTOR_IDLE_WAIT", 30.0)),
            stall_after=float(env.get("COLLECTOR_STALL_AFTER", 60.0)),
            estimated_total_pages=int(env.get("COLLECTOR_ESTIMATED_TOTAL_PAGES", 50)),
            auto_start_on_urgent=_env_bool("COLLECTOR_AUTO_START_ON_URGENT", False),
            store=env.get("COLLECTOR_STORE", "json"),
            store_path=Path(store_path) if store_path else None,
        )
        for key, value in overrides.items():
            if value is not None:
                setattr(settings, key, value)
        return settings
