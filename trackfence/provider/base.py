"""External collaborators that supply entities and their location streams."""

from typing import List, Optional, Protocol

from trackfence.models.location import LocationSample, TrackedEntity


class ProviderError(Exception):
    """Raised when a location or directory lookup fails."""

    def __init__(self, message: str, entity_name: Optional[str] = None):
        super().__init__(message)
        self.entity_name = entity_name


class LocationProvider(Protocol):
    """Supplies the ordered (oldest first) location history of one entity."""

    async def fetch(self, entity_name: str, limit: int) -> List[LocationSample]: ...


class EntityDirectory(Protocol):
    """Lists the entities tracked for an event."""

    async def list_entities(self, event_id: str) -> List[TrackedEntity]: ...
