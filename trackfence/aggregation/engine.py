"""
Tracking Engine - one live-tracking session for one event.

A cycle:
  fan-out fetch per entity → await all → History Store replace
  → Breach Tracker → Bounds Composer → publish CycleSnapshot

Behavioral Contract:
- A failed fetch for one entity never aborts the cycle. The entity gets an
  empty history for that cycle and the failure is logged and reported.
- Derived state is computed only after every fetch of the cycle has finished,
  and is published by swapping a single immutable snapshot. Readers never
  see a half-updated cycle.
- A cycle cancelled before publication leaves the previous snapshot in place.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from trackfence.bounds.composer import derive_viewport
from trackfence.breach.tracker import BreachTracker
from trackfence.history.store import HistoryStore
from trackfence.models.config import EngineConfig, RefreshInterval, SchedulerState
from trackfence.models.geofence import GeofencePolygon
from trackfence.models.location import LocationSample, TrackedEntity
from trackfence.models.tracking import (
    CycleReport,
    CycleSnapshot,
    EntityTrack,
    FetchFailure,
)
from trackfence.persistence.layered import LayeredPolygonStore, RemotePolygonSource
from trackfence.persistence.store import PolygonPersistence
from trackfence.provider.base import EntityDirectory, LocationProvider
from trackfence.scheduler.loop import RefreshScheduler

logger = logging.getLogger(__name__)


class TrackingEngine:
    """
    Aggregates per-entity location streams and evaluates them against
    the event's geofence on every refresh cycle.
    """

    def __init__(
        self,
        provider: LocationProvider,
        persistence: PolygonPersistence,
        event_id: str,
        config: Optional[EngineConfig] = None,
        directory: Optional[EntityDirectory] = None,
        remote: Optional[RemotePolygonSource] = None,
    ):
        self.provider = provider
        self.persistence = persistence
        self.geofences = LayeredPolygonStore(persistence, remote)
        self.directory = directory
        self.event_id = str(event_id)
        self.config = config or EngineConfig()

        self.history = HistoryStore()
        self.breach_tracker = BreachTracker()
        self.scheduler = RefreshScheduler(
            self.run_cycle,
            interval_seconds=self.config.refresh_interval.value,
        )

        self._entities: Dict[str, TrackedEntity] = {}
        self._geofence: Optional[GeofencePolygon] = None
        self._snapshot = CycleSnapshot()
        self.last_report: Optional[CycleReport] = None

    # --- Session state ---

    @property
    def snapshot(self) -> CycleSnapshot:
        """The last published snapshot. Treat as read-only."""
        return self._snapshot

    @property
    def entities(self) -> List[TrackedEntity]:
        return list(self._entities.values())

    @property
    def geofence(self) -> Optional[GeofencePolygon]:
        return self._geofence

    def set_entities(self, entities: Sequence[TrackedEntity]) -> None:
        """
        Replace the tracked set. Histories of dropped entities are discarded.

        When the set becomes non-empty and auto-refresh is on, an idle
        scheduler is started. That requires a running event loop.
        """
        self._entities = {e.id: e for e in entities}
        self.history.retain(self._entities)

        if (
            self._entities
            and self.config.auto_refresh
            and self.scheduler.state is SchedulerState.IDLE
        ):
            self.scheduler.start()

    async def refresh_entities(self) -> List[TrackedEntity]:
        """Pull the entity list for this event from the directory, if any."""
        if self.directory is None:
            return self.entities
        entities = await self.directory.list_entities(self.event_id)
        self.set_entities(entities)
        return entities

    async def load_geofence(self) -> Optional[GeofencePolygon]:
        """
        Load the event's geofence, server copy first, then the local store.
        A missing or malformed one means no geofence.
        """
        self._geofence = await self.geofences.load(self.event_id)
        if self._geofence is None:
            logger.info("No active geofence for event %s", self.event_id)
        return self._geofence

    async def set_geofence(self, polygon: GeofencePolygon) -> GeofencePolygon:
        """
        Persist and activate a geofence. Takes effect from the next cycle.
        Raises ProviderError, leaving the active geofence unchanged, when
        the server rejects it.
        """
        await self.geofences.save(self.event_id, polygon)
        self._geofence = polygon
        return polygon

    async def clear_geofence(self) -> bool:
        """Remove the event's geofence. Takes effect from the next cycle."""
        deleted = await self.geofences.delete(self.event_id)
        self._geofence = None
        return deleted

    # --- Cycle ---

    async def run_cycle(self) -> Optional[CycleReport]:
        """Run one fetch-and-recompute cycle. No-op while no entity is tracked."""
        entities = self.entities
        if not entities:
            return None

        cycle_id = f"cycle_{uuid4().hex[:12]}"
        started_at = datetime.now(timezone.utc)
        geofence = self._geofence

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        results = await asyncio.gather(
            *(self._fetch_entity(entity, semaphore) for entity in entities)
        )

        # Every fetch has finished: from here to publication nothing awaits.
        # Entities dropped from the tracked set while fetching are discarded.
        tracked = self._entities
        kept = [
            (entity, result)
            for entity, result in zip(entities, results)
            if entity.id in tracked
        ]
        entities = [entity for entity, _ in kept]

        histories: Dict[str, Tuple[LocationSample, ...]] = {}
        failures: List[FetchFailure] = []
        for entity, (samples, failure) in kept:
            histories[entity.id] = tuple(samples)
            if failure is not None:
                failures.append(failure)
        self.history.replace_many(histories)

        breaches = self.breach_tracker.evaluate(entities, self.history, geofence)

        tracks = {}
        latest_positions = []
        for entity in entities:
            history = self.history.history(entity.id)
            latest = history[-1] if history else None
            if latest is not None:
                latest_positions.append(latest)
            tracks[entity.id] = EntityTrack(
                entity_id=entity.id,
                name=entity.name,
                color=entity.color,
                latest=latest,
                history=history,
                last_seen=latest.observed_at if latest is not None else None,
            )

        viewport = derive_viewport(geofence, latest_positions, self.config.viewport_padding)
        completed_at = datetime.now(timezone.utc)

        viewport_updated = viewport is not None
        if viewport_updated:
            center = viewport.center
        else:
            viewport, center = self._snapshot.viewport, self._snapshot.center

        self._snapshot = CycleSnapshot(
            cycle_id=cycle_id,
            completed_at=completed_at,
            tracks=tracks,
            breaches=breaches,
            viewport=viewport,
            center=center,
            geofence=geofence,
        )

        report = CycleReport(
            cycle_id=cycle_id,
            started_at=started_at,
            completed_at=completed_at,
            entity_count=len(entities),
            failures=failures,
            breach_count=len(breaches),
            viewport_updated=viewport_updated,
        )
        self.last_report = report
        logger.debug(
            "Cycle %s: %d entities, %d failures, %d breaches",
            cycle_id, len(entities), len(failures), len(breaches),
        )
        return report

    async def _fetch_entity(
        self, entity: TrackedEntity, semaphore: asyncio.Semaphore
    ) -> Tuple[List[LocationSample], Optional[FetchFailure]]:
        async with semaphore:
            try:
                samples = await asyncio.wait_for(
                    self.provider.fetch(entity.name, self.config.fetch_limit),
                    timeout=self.config.fetch_timeout_seconds,
                )
                return list(samples), None
            except asyncio.TimeoutError:
                error = f"timed out after {self.config.fetch_timeout_seconds}s"
            except Exception as e:
                error = f"{type(e).__name__}: {e}"

        logger.warning("Error fetching locations for %r: %s", entity.name, error)
        return [], FetchFailure(entity_id=entity.id, name=entity.name, error=error)

    # --- Scheduler control ---

    def start(self, interval: Optional[RefreshInterval] = None) -> None:
        """Start periodic refresh. Synchronous, but needs a running event loop."""
        if interval is not None:
            self.config = self.config.model_copy(update={"refresh_interval": interval})
        self.scheduler.start(self.config.refresh_interval.value)

    async def stop(self) -> None:
        await self.scheduler.stop()

    async def run_now(self) -> Optional[CycleReport]:
        """Run a cycle now. None if it was coalesced or there is nothing to track."""
        if not await self.scheduler.run_now():
            return None
        return self.scheduler.last_result

    async def set_interval(self, interval: RefreshInterval) -> None:
        self.config = self.config.model_copy(update={"refresh_interval": interval})
        await self.scheduler.reschedule(interval.value)

    async def close(self) -> None:
        """Stop all timers, drop session state and release the provider."""
        await self.scheduler.stop()
        self.history.clear()
        self.breach_tracker.reset()
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "TrackingEngine":
        await self.load_geofence()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
