"""
trackfence API - FastAPI endpoints for the rendering layer.

Exposes the engine's published state and controls:
- Per-cycle snapshot (tracks, breaches, viewport)
- Tracked entity set
- Geofence management
- Refresh scheduler control
"""

from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError

from trackfence.aggregation.engine import TrackingEngine
from trackfence.geofence.evaluator import containment
from trackfence.models.config import EngineConfig, RefreshInterval
from trackfence.models.geofence import GeofencePolygon
from trackfence.models.location import TrackedEntity
from trackfence.persistence.store import SqlitePolygonStore
from trackfence.provider.base import ProviderError
from trackfence.provider.graphql import (
    GraphQLClient,
    GraphQLEntityDirectory,
    GraphQLLocationProvider,
    GraphQLPolygonSource,
)


# --- Request/Response Models ---

class GeofenceRequest(BaseModel):
    vertices: List[Tuple[float, float]]


class SchedulerStartRequest(BaseModel):
    interval: Optional[RefreshInterval] = None


class SchedulerIntervalRequest(BaseModel):
    interval: RefreshInterval


# --- Application Factory ---

def build_engine(config: EngineConfig) -> TrackingEngine:
    """
    Wire a GraphQL-backed engine with SQLite geofence storage.

    With an event keycode configured, the event record on the server is the
    primary geofence store and SQLite the fallback.
    """
    client = GraphQLClient(config.api_url, timeout_seconds=config.fetch_timeout_seconds)
    remote = None
    if config.event_keycode:
        remote = GraphQLPolygonSource(client, config.event_keycode)
    return TrackingEngine(
        provider=GraphQLLocationProvider(client),
        persistence=SqlitePolygonStore(config.db_path),
        event_id=config.event_id or "default",
        config=config,
        directory=GraphQLEntityDirectory(client),
        remote=remote,
    )


def create_app(
    engine: Optional[TrackingEngine] = None,
    config: Optional[EngineConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    config = config or (engine.config if engine else EngineConfig())
    eng = engine or build_engine(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await eng.load_geofence()
        yield
        await eng.close()

    app = FastAPI(
        title="trackfence API",
        description="Live tracking aggregation and geofence evaluation",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = eng

    # === SNAPSHOT ===

    @app.get("/snapshot")
    def get_snapshot():
        """Last published cycle snapshot."""
        return eng.snapshot.model_dump(mode="json")

    @app.get("/breaches")
    def get_breaches():
        """Entities outside the geofence as of the last cycle."""
        return [b.model_dump(mode="json") for b in eng.snapshot.breaches.values()]

    @app.get("/viewport")
    def get_viewport():
        """Padded box framing the geofence and all latest positions."""
        viewport = eng.snapshot.viewport
        if viewport is None:
            raise HTTPException(404, "No viewport yet")
        return viewport.model_dump()

    # === ENTITIES ===

    @app.get("/entities")
    def list_entities():
        return [e.model_dump() for e in eng.entities]

    @app.put("/entities")
    async def set_entities(entities: List[TrackedEntity]):
        """Replace the tracked set. Auto-starts refreshing when enabled."""
        eng.set_entities(entities)
        return {"tracked": len(entities), "scheduler": eng.scheduler.state.value}

    @app.post("/entities/refresh")
    async def refresh_entities():
        """Reload the tracked set from the event directory."""
        try:
            entities = await eng.refresh_entities()
        except ProviderError as e:
            raise HTTPException(502, f"Entity directory unavailable: {e}")
        return [e.model_dump() for e in entities]

    # === GEOFENCE ===

    @app.get("/geofence")
    def get_geofence():
        if eng.geofence is None:
            raise HTTPException(404, "No active geofence")
        return {"event_id": eng.event_id, "vertices": eng.geofence.to_payload()}

    @app.put("/geofence")
    async def put_geofence(req: GeofenceRequest):
        """Create or replace the event geofence."""
        try:
            polygon = GeofencePolygon(vertices=req.vertices)
        except ValidationError as e:
            raise HTTPException(422, e.errors()[0]["msg"])
        try:
            await eng.set_geofence(polygon)
        except ProviderError as e:
            raise HTTPException(502, f"Geofence not saved: {e}")
        return {"event_id": eng.event_id, "vertices": polygon.to_payload()}

    @app.delete("/geofence")
    async def delete_geofence():
        try:
            deleted = await eng.clear_geofence()
        except ProviderError as e:
            raise HTTPException(502, f"Geofence not deleted: {e}")
        return {"status": "deleted" if deleted else "absent", "event_id": eng.event_id}

    @app.get("/geofence/contains")
    def geofence_contains(lat: float, lon: float):
        """Test a single point. `inside` is null when no geofence is active."""
        return {"lat": lat, "lon": lon, "inside": containment(lat, lon, eng.geofence)}

    # === SCHEDULER ===

    @app.get("/scheduler/status")
    def scheduler_status():
        scheduler = eng.scheduler
        return {
            "state": scheduler.state.value,
            "interval_seconds": scheduler.interval_seconds,
            "cycle_in_flight": scheduler.cycle_in_flight,
            "cycles_run": scheduler.cycles_run,
            "coalesced_ticks": scheduler.coalesced_ticks,
            "last_error": scheduler.last_error,
            "tracked_entities": len(eng.entities),
        }

    @app.post("/scheduler/start")
    async def start_scheduler(req: SchedulerStartRequest):
        eng.start(req.interval)
        return {"state": eng.scheduler.state.value}

    @app.post("/scheduler/stop")
    async def stop_scheduler():
        await eng.stop()
        return {"state": eng.scheduler.state.value}

    @app.put("/scheduler/interval")
    async def set_interval(req: SchedulerIntervalRequest):
        await eng.set_interval(req.interval)
        return {"interval_seconds": eng.scheduler.interval_seconds}

    @app.post("/scheduler/run-now")
    async def run_now():
        """Force a refresh cycle. Coalesced if one is already running."""
        if eng.scheduler.cycle_in_flight:
            return {"coalesced": True}
        report = await eng.run_now()
        if report is None:
            return {"coalesced": False, "report": None}
        return {"coalesced": False, "report": report.model_dump(mode="json")}

    return app


# Default application instance
app = create_app(config=EngineConfig.from_env())
