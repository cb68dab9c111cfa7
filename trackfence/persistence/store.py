"""
Polygon Persistence - durable storage of one geofence per event.

Behavioral Contract:
- The payload is a JSON array of [lat, lon] pairs, open ring, no closing duplicate.
- A malformed stored payload loads as "absent" (None), never as an exception.
- Deleting a geofence that does not exist is a no-op.
"""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from typing import Any, List, Optional, Protocol, Union

from pydantic import ValidationError

from trackfence.models.geofence import GeofencePolygon

logger = logging.getLogger(__name__)


class PolygonPersistence(Protocol):
    """Where geofences live between sessions."""

    def load(self, event_id: str) -> Optional[GeofencePolygon]: ...

    def save(self, event_id: str, polygon: GeofencePolygon) -> None: ...

    def delete(self, event_id: str) -> bool: ...


def parse_polygon_payload(raw: Union[str, bytes, List[Any], None]) -> Optional[GeofencePolygon]:
    """
    Decode a stored or submitted geofence payload.

    Accepts JSON text or an already-decoded list. Anything that is not a
    valid polygon of at least three vertices yields None.
    """
    if raw is None:
        return None

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            logger.warning("Ignoring geofence payload that is not JSON: %s", e)
            return None

    if raw is None:
        return None
    if not isinstance(raw, list):
        logger.warning("Ignoring geofence payload of type %s", type(raw).__name__)
        return None

    try:
        return GeofencePolygon(vertices=raw)
    except ValidationError as e:
        logger.warning("Ignoring malformed geofence payload: %s", e.errors()[0]["msg"])
        return None


class SqlitePolygonStore:
    """
    SQLite-backed polygon persistence. One row per event.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the geofence table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS geofences (
                event_id TEXT PRIMARY KEY,
                polygon_json TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def load(self, event_id: str) -> Optional[GeofencePolygon]:
        row = self._conn.execute(
            "SELECT polygon_json FROM geofences WHERE event_id = ?", (str(event_id),)
        ).fetchone()
        if row is None:
            return None
        return parse_polygon_payload(row["polygon_json"])

    def save(self, event_id: str, polygon: GeofencePolygon) -> None:
        self._conn.execute(
            """
            INSERT INTO geofences (event_id, polygon_json, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(event_id) DO UPDATE SET
                polygon_json = excluded.polygon_json,
                updated_at = excluded.updated_at
            """,
            (
                str(event_id),
                json.dumps(polygon.to_payload()),
                datetime.now(timezone.utc).isoformat(),
            ),
        )
        self._conn.commit()
        logger.info("Saved geofence for event %s (%d vertices)", event_id, len(polygon.vertices))

    def save_raw(self, event_id: str, payload: str) -> None:
        """Store a payload verbatim, e.g. when importing from another system."""
        self._conn.execute(
            "INSERT OR REPLACE INTO geofences (event_id, polygon_json, updated_at) VALUES (?, ?, ?)",
            (str(event_id), payload, datetime.now(timezone.utc).isoformat()),
        )
        self._conn.commit()

    def delete(self, event_id: str) -> bool:
        cursor = self._conn.execute(
            "DELETE FROM geofences WHERE event_id = ?", (str(event_id),)
        )
        self._conn.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted geofence for event %s", event_id)
        return deleted

    def count(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM geofences").fetchone()
        return row["cnt"]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
