"""
Runtime configuration for the BaziGPT service.

Settings come from environment variables, optionally seeded from a ``.env``
file that sits next to this module.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(dotenv_path=BASE_DIR / ".env")

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


class Settings(BaseModel):
    """All tunables of the service in one place."""

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"
    openai_followup_model: Optional[str] = None
    openai_temperature: float = Field(0.7, ge=0.0, le=2.0)

    cache_dir: Path = BASE_DIR / ".cache"
    daily_min_interval_seconds: float = Field(60.0, ge=0.0)
    personal_min_interval_seconds: float = Field(1.0, ge=0.0)
    peer_wait_timeout_seconds: float = Field(5.0, gt=0.0)
    cache_retention_buckets: int = Field(3, ge=0)
    bucket_timezone: str = "UTC"
    pillar_strategy: str = Field("lunar", pattern="^(lunar|simplified)$")

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    log_level: str = "INFO"
    perf_log: bool = False
    environment: str = "development"

    @property
    def followup_model(self) -> str:
        return self.openai_followup_model or self.openai_model

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment, ignoring unset variables."""
        env = os.environ
        values = {
            "openai_api_key": env.get("OPENAI_API_KEY"),
            "openai_base_url": env.get("OPENAI_BASE_URL"),
            "openai_model": env.get("OPENAI_MODEL"),
            "openai_followup_model": env.get("OPENAI_FOLLOWUP_MODEL"),
            "openai_temperature": env.get("OPENAI_TEMPERATURE"),
            "cache_dir": env.get("BAZI_CACHE_DIR"),
            "daily_min_interval_seconds": env.get("DAILY_MIN_INTERVAL_SECONDS"),
            "personal_min_interval_seconds": env.get("PERSONAL_MIN_INTERVAL_SECONDS"),
            "peer_wait_timeout_seconds": env.get("PEER_WAIT_TIMEOUT_SECONDS"),
            "cache_retention_buckets": env.get("CACHE_RETENTION_BUCKETS"),
            "bucket_timezone": env.get("BUCKET_TIMEZONE"),
            "pillar_strategy": env.get("PILLAR_STRATEGY"),
            "supabase_url": env.get("SUPABASE_URL"),
            "supabase_key": (
                env.get("SUPABASE_KEY")
                or env.get("SUPABASE_SERVICE_ROLE_KEY")
                or env.get("SUPABASE_ANON_KEY")
            ),
            "log_level": env.get("LOG_LEVEL"),
            "perf_log": env.get("PERF_LOG") == "1",
            "environment": env.get("APP_ENV"),
        }
        return cls(**{name: value for name, value in values.items() if value is not None})


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings.from_env()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
