"""
GraphQL-over-HTTP implementations of the Location Provider, the Entity
Directory and the server-side geofence source.

Every failure mode (transport error, timeout, non-200 status, GraphQL
errors, malformed payload) surfaces as ProviderError so that the engine
can isolate it to the entity concerned.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from trackfence.models.geofence import GeofencePolygon
from trackfence.models.location import DEFAULT_ENTITY_COLOR, LocationSample, TrackedEntity
from trackfence.provider.base import ProviderError

logger = logging.getLogger(__name__)

GET_UPDATES = """
query GetUpdates($team: String!, $limit: Int) {
  updates(team: $team, limit: $limit) {
    id
    team
    event
    lat
    lon
    timestamp
  }
}
"""

GET_TEAMS = """
query GetTeams($eventId: Int!) {
  teams(event_id: $eventId) {
    id
    name
    color
    event_id
  }
}
"""

GET_EVENT_GEOFENCE = """
query EventGeofence($eventId: Int!, $keycode: String!) {
  exportEventData(event_id: $eventId, keycode: $keycode) {
    event {
      id
      geofence_data
    }
  }
}
"""

UPDATE_EVENT_GEOFENCE = """
mutation UpdateEventGeofence($eventId: Int!, $keycode: String!, $geofenceData: String!) {
  updateEventGeofence(event_id: $eventId, keycode: $keycode, geofence_data: $geofenceData) {
    id
    geofence_data
  }
}
"""

DELETE_EVENT_GEOFENCE = """
mutation DeleteEventGeofence($eventId: Int!, $keycode: String!) {
  deleteEventGeofence(event_id: $eventId, keycode: $keycode) {
    id
    geofence_data
  }
}
"""


def _event_variable(event_id: str) -> int:
    try:
        return int(event_id)
    except ValueError as e:
        raise ProviderError(f"Event id must be numeric, got {event_id!r}") from e


def parse_updates(payload: Dict[str, Any]) -> List[LocationSample]:
    """Turn an `updates` query result into samples, preserving order."""
    data = payload.get("data") or {}
    updates = data.get("updates")
    if updates is None:
        return []
    if not isinstance(updates, list):
        raise ProviderError(f"Expected a list of updates, got {type(updates).__name__}")

    samples = []
    for raw in updates:
        try:
            samples.append(LocationSample(
                lat=raw["lat"],
                lon=raw["lon"],
                timestamp=raw.get("timestamp"),
            ))
        except (KeyError, TypeError, ValidationError) as e:
            raise ProviderError(f"Malformed location update {raw!r}: {e}") from e
    return samples


def parse_teams(payload: Dict[str, Any]) -> List[TrackedEntity]:
    """Turn a `teams` query result into tracked entities."""
    data = payload.get("data") or {}
    teams = data.get("teams") or []
    if not isinstance(teams, list):
        raise ProviderError(f"Expected a list of teams, got {type(teams).__name__}")

    entities = []
    for raw in teams:
        try:
            entities.append(TrackedEntity(
                id=str(raw["id"]),
                name=raw["name"],
                color=raw.get("color") or DEFAULT_ENTITY_COLOR,
            ))
        except (KeyError, TypeError, ValidationError) as e:
            raise ProviderError(f"Malformed team record {raw!r}: {e}") from e
    return entities


def parse_event_geofence(payload: Dict[str, Any]) -> Optional[Any]:
    """Pull the raw `geofence_data` of the event out of a query result."""
    data = payload.get("data") or {}
    export = data.get("exportEventData") or {}
    event = export.get("event") or {}
    if not isinstance(event, dict):
        raise ProviderError(f"Expected an event record, got {type(event).__name__}")
    return event.get("geofence_data")


class GraphQLClient:
    """Minimal async GraphQL client. The HTTP session is created lazily."""

    def __init__(
        self,
        api_url: str,
        timeout_seconds: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_url = api_url
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """POST one query and return the decoded response body."""
        session = await self._get_session()
        try:
            async with session.post(
                self.api_url,
                json={"query": query, "variables": variables},
            ) as response:
                if response.status != 200:
                    raise ProviderError(f"GraphQL request failed: HTTP {response.status}")
                payload = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"GraphQL request failed: {type(e).__name__}: {e}") from e

        if not isinstance(payload, dict):
            raise ProviderError("GraphQL response is not a JSON object")
        if payload.get("errors"):
            messages = [err.get("message", str(err)) for err in payload["errors"]]
            raise ProviderError(f"GraphQL errors: {'; '.join(messages)}")
        return payload

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


class GraphQLLocationProvider:
    """Location Provider backed by the `updates(team, limit)` query."""

    def __init__(self, client: GraphQLClient):
        self.client = client

    async def fetch(self, entity_name: str, limit: int) -> List[LocationSample]:
        try:
            payload = await self.client.execute(
                GET_UPDATES, {"team": entity_name, "limit": limit}
            )
            return parse_updates(payload)
        except ProviderError as e:
            e.entity_name = entity_name
            raise

    async def close(self) -> None:
        await self.client.close()


class GraphQLEntityDirectory:
    """Entity Directory backed by the `teams(event_id)` query."""

    def __init__(self, client: GraphQLClient):
        self.client = client

    async def list_entities(self, event_id: str) -> List[TrackedEntity]:
        payload = await self.client.execute(GET_TEAMS, {"eventId": _event_variable(event_id)})
        return parse_teams(payload)


class GraphQLPolygonSource:
    """
    The event record's `geofence_data` field, read and written over GraphQL.

    Writes are authorized by the event keycode. The payload is the same JSON
    text the local store keeps.
    """

    def __init__(self, client: GraphQLClient, keycode: str):
        self.client = client
        self.keycode = keycode

    def _variables(self, event_id: str) -> Dict[str, Any]:
        return {"eventId": _event_variable(event_id), "keycode": self.keycode}

    async def fetch_raw(self, event_id: str) -> Optional[Any]:
        payload = await self.client.execute(GET_EVENT_GEOFENCE, self._variables(event_id))
        return parse_event_geofence(payload)

    async def save(self, event_id: str, polygon: GeofencePolygon) -> None:
        variables = self._variables(event_id)
        variables["geofenceData"] = json.dumps(polygon.to_payload())
        await self.client.execute(UPDATE_EVENT_GEOFENCE, variables)
        logger.info("Saved geofence for event %s to the server", event_id)

    async def delete(self, event_id: str) -> None:
        await self.client.execute(DELETE_EVENT_GEOFENCE, self._variables(event_id))
        logger.info("Deleted geofence for event %s on the server", event_id)
