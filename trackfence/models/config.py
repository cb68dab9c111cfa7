"""Engine and scheduler configuration."""

import os
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class RefreshInterval(int, Enum):
    """Polling intervals offered to operators, in seconds."""
    ONE_SECOND = 1
    FIVE_SECONDS = 5
    TEN_SECONDS = 10
    THIRTY_SECONDS = 30
    ONE_MINUTE = 60


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"


class EngineConfig(BaseModel):
    """Configuration for a tracking session."""

    api_url: str = "http://localhost:3000/api"
    event_id: Optional[str] = None
    fetch_limit: int = Field(default=5000, ge=1)   # Enforced by the provider
    refresh_interval: RefreshInterval = RefreshInterval.FIVE_SECONDS
    auto_refresh: bool = True
    fetch_timeout_seconds: float = Field(default=10.0, gt=0)
    max_concurrency: int = Field(default=8, ge=1)
    viewport_padding: float = Field(default=0.1, ge=0)
    db_path: str = ":memory:"
    event_keycode: Optional[str] = None           # Enables the server-side geofence

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a config from TRACKFENCE_* environment variables."""
        fields = {
            "api_url": "TRACKFENCE_API_URL",
            "event_id": "TRACKFENCE_EVENT_ID",
            "fetch_limit": "TRACKFENCE_FETCH_LIMIT",
            "refresh_interval": "TRACKFENCE_REFRESH_INTERVAL",
            "auto_refresh": "TRACKFENCE_AUTO_REFRESH",
            "fetch_timeout_seconds": "TRACKFENCE_FETCH_TIMEOUT",
            "max_concurrency": "TRACKFENCE_MAX_CONCURRENCY",
            "viewport_padding": "TRACKFENCE_VIEWPORT_PADDING",
            "db_path": "TRACKFENCE_DB_PATH",
            "event_keycode": "TRACKFENCE_EVENT_KEYCODE",
        }
        values = {
            name: os.environ[var] for name, var in fields.items() if var in os.environ
        }
        if "refresh_interval" in values:
            values["refresh_interval"] = int(values["refresh_interval"])
        return cls.model_validate(values)
