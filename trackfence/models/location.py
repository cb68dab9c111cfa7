"""Location samples and the entities they belong to."""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

_EXCESS_FRACTION = re.compile(r"\.(\d{3})\d+Z$")
_NAIVE_ISO = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?$")
_FRACTION = re.compile(r"\.(\d+)(?=[+-]\d{2}:\d{2}$|$)")

DEFAULT_ENTITY_COLOR = "#3b82f6"


def normalize_timestamp(value: Optional[str]) -> Optional[str]:
    """
    Normalize a provider timestamp to a UTC ISO-8601 string.

    Fractional seconds beyond milliseconds are truncated, and a timestamp
    with no zone designator is taken to be UTC and gets a trailing "Z".
    """
    if not value:
        return value
    normalized = _EXCESS_FRACTION.sub(r".\1Z", value)
    if _NAIVE_ISO.match(normalized):
        normalized = f"{normalized}Z"
    return normalized


class LocationSample(BaseModel):
    """One reported position of a tracked entity."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    timestamp: Optional[str] = None         # ISO-8601, trailing "Z" may be missing

    @property
    def observed_at(self) -> Optional[datetime]:
        """Parsed timestamp, or None when it is missing or unparseable."""
        normalized = normalize_timestamp(self.timestamp)
        if not normalized:
            return None
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        # fromisoformat before 3.11 only takes 3 or 6 fractional digits
        normalized = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], normalized)
        try:
            return datetime.fromisoformat(normalized)
        except ValueError:
            return None


class TrackedEntity(BaseModel):
    """A subject (e.g. a team) whose position is polled."""

    id: str
    name: str                               # Join key for the Location Provider
    color: str = DEFAULT_ENTITY_COLOR
