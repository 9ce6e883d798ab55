"""Runtime configuration for FormForge.

Policy knobs that are not part of the core's correctness contract live here:
the anti-automation thresholds, the slug shape and the event log bound.
Values are read from the environment (prefix ``FORMFORGE_``) or an optional
``.env`` file.

    FORMFORGE_MIN_DWELL_MS=1500
    FORMFORGE_RATE_LIMIT_PER_WINDOW=0   # disable per-IP limiting
"""

from functools import lru_cache
import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_FILE = os.getenv("FORMFORGE_ENV_FILE", ".env")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="FORMFORGE_", env_file=ENV_FILE, extra="ignore"
    )

    # Anti-automation
    honeypot_enabled: bool = True
    min_dwell_ms: int = Field(default=2000, ge=0)
    require_load_timestamp: bool = False
    rate_limit_per_window: int = Field(default=20, ge=0)  # 0 disables
    rate_limit_window_seconds: int = Field(default=3600, gt=0)

    # Slugs
    slug_max_length: int = Field(default=50, gt=0)
    slug_suffix_length: int = Field(default=6, ge=4)

    # Events
    event_log_max_events: int = Field(default=1000, ge=0)  # oldest dropped first


@lru_cache
def get_settings() -> Settings:
    return Settings()


__all__ = [
    "Settings",
    "get_settings",
]
