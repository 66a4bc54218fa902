"""
FastAPI application entry point.

On startup:
  1. Initialise the database schema.
  2. Build the transit graph snapshot from stored GTFS data (if available).
  3. Start the APScheduler job that refreshes the GTFS static feed and
     rebuilds the graph every GTFS_REFRESH_HOURS (default 24h).

Endpoints (v1):
  GET  /plan?origin_lat=&origin_lon=&destination_lat=&destination_lon=&mode=
  PUT  /mode
  POST /plan/cancel
  GET  /stops?query=<name>
  GET  /health
  POST /ingest/gtfs-static
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from typing import Literal

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import Depends, FastAPI, HTTPException, Query, Security
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import APIKeyHeader
from sqlalchemy.orm import Session

from api.schemas import (
    CancelResponse,
    HealthResponse,
    IngestResponse,
    ModeRequest,
    ModeResponse,
    PlanResponse,
    StopResult,
)
from config import CORS_ORIGINS, DEFAULT_MODE, GTFS_REFRESH_HOURS, INGEST_API_KEY, LOG_LEVEL
from db.repository import SqlScheduleRepository
from db.session import get_session, init_db, session_scope
from graph.builder import TRANSFER, TRIP, WALK
from ingestion.gtfs_static import refresh_static_data
from routing.errors import GraphNotBuilt, NoPathFound, NoValidStopNear, UnknownMode
from routing.planner import JourneyPlanner

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

_ingest_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def _require_ingest_key(key: str | None = Security(_ingest_key_header)) -> None:
    """
    Optional API-key guard for the ingest endpoint.

    If INGEST_API_KEY is not set the endpoint is open (local dev / testing).
    If it is set, the request must include the matching X-API-Key header.
    """
    if not INGEST_API_KEY:
        return  # no key configured → open
    if key != INGEST_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid or missing X-API-Key header.")


scheduler = AsyncIOScheduler()
planner = JourneyPlanner(mode=DEFAULT_MODE)


def _rebuild_graph(session: Session) -> None:
    planner.build_graph(SqlScheduleRepository(session))


async def _daily_gtfs_refresh() -> None:
    """
    Scheduled job: refresh GTFS static data and rebuild the graph.

    Opens its own DB session because APScheduler jobs run outside FastAPI's
    DI system.  Exceptions are caught and logged so a transient network
    failure cannot crash the scheduler process; the previous graph snapshot
    stays in service.
    """
    logger.info("Daily GTFS static refresh starting.")
    with session_scope() as db:
        try:
            await refresh_static_data(db)
            _rebuild_graph(db)
            logger.info("Daily GTFS static refresh complete.")
        except Exception as exc:
            logger.error("Daily GTFS static refresh failed: %s", exc, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_db()
    logger.info("Database initialised.")

    with session_scope() as db:
        try:
            _rebuild_graph(db)
        except Exception as exc:
            logger.warning("Could not build graph on startup (no GTFS data yet?): %s", exc)

    scheduler.add_job(
        _daily_gtfs_refresh,
        "interval",
        hours=GTFS_REFRESH_HOURS,
        id="daily_gtfs_refresh",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Scheduler started. Daily GTFS refresh every %dh.", GTFS_REFRESH_HOURS)

    yield

    # Shutdown
    if scheduler.running:
        scheduler.shutdown()


app = FastAPI(
    title="Corridor Journey Planner",
    description="Multi-modal itinerary planning over bus corridors and feeder services.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["*"],
)


@app.get("/health", response_model=HealthResponse)
async def health(session: Session = Depends(get_session)) -> HealthResponse:
    """
    Liveness + data-freshness check.

    Returns DB record counts, graph stats, and timestamps so operators can
    quickly tell whether GTFS data has been loaded and the graph is ready.
    """
    from db.models import Route, Stop, Trip
    from sqlalchemy import func

    stop_count: int = session.query(func.count(Stop.stop_id)).scalar() or 0
    trip_count: int = session.query(func.count(Trip.trip_id)).scalar() or 0
    route_count: int = session.query(func.count(Route.route_id)).scalar() or 0

    graph_built = False
    graph_nodes = 0
    graph_edges = 0
    last_built_at: str | None = None
    valid_stops = 0
    counts = {TRIP: 0, TRANSFER: 0, WALK: 0}
    fares_loaded = False
    try:
        graph = planner.graph
        graph_built = True
        graph_nodes = graph.graph.number_of_nodes()
        graph_edges = graph.graph.number_of_edges()
        last_built_at = graph.built_at.isoformat() if graph.built_at else None
        valid_stops = len(graph.valid_stops)
        counts = graph.edge_counts()
        fares_loaded = graph.has_fares
    except GraphNotBuilt:
        pass

    next_refresh_at: str | None = None
    daily_job = scheduler.get_job("daily_gtfs_refresh")
    if daily_job and daily_job.next_run_time:
        next_refresh_at = daily_job.next_run_time.isoformat()

    return {
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat(),
        "gtfs": {
            "stops": stop_count,
            "trips": trip_count,
            "routes": route_count,
            "graph_nodes": graph_nodes,
            "graph_edges": graph_edges,
            "graph_built": graph_built,
            "last_built_at": last_built_at,
            "next_refresh_at": next_refresh_at,
        },
        "planner": {
            "mode": planner.mode,
            "valid_stops": valid_stops,
            "trip_edges": counts[TRIP],
            "transfer_edges": counts[TRANSFER],
            "walk_edges": counts[WALK],
            "fares_loaded": fares_loaded,
        },
    }


@app.get("/stops", response_model=list[StopResult])
async def search_stops(
    query: str = Query(..., min_length=2, description="Stop name substring to search"),
    session: Session = Depends(get_session),
) -> list[StopResult]:
    """Search stops by name substring."""
    from collections import defaultdict
    from db.models import Stop, StopTime, Trip

    results = (
        session.query(Stop)
        .filter(Stop.stop_name.ilike(f"%{query}%"))
        .order_by(Stop.stop_id)
        .limit(20)
        .all()
    )

    # Fetch distinct route_ids for all matching stops in one query.
    stop_ids = [s.stop_id for s in results]
    route_rows = (
        session.query(StopTime.stop_id, Trip.route_id)
        .join(Trip, Trip.trip_id == StopTime.trip_id)
        .filter(StopTime.stop_id.in_(stop_ids))
        .distinct()
        .all()
    )
    routes_by_stop: dict[str, list[str]] = defaultdict(list)
    for stop_id, route_id in route_rows:
        routes_by_stop[stop_id].append(route_id)

    return [
        {
            "stop_id": s.stop_id,
            "stop_name": s.stop_name,
            "lat": s.stop_lat,
            "lon": s.stop_lon,
            "routes_served": sorted(routes_by_stop[s.stop_id]),
        }
        for s in results
    ]


@app.get("/plan", response_model=PlanResponse)
async def plan_journey(
    origin_lat: float = Query(..., ge=-90, le=90),
    origin_lon: float = Query(..., ge=-180, le=180),
    destination_lat: float = Query(..., ge=-90, le=90),
    destination_lon: float = Query(..., ge=-180, le=180),
    mode: Literal["fastest", "cheapest", "balanced"] | None = Query(
        None, description="Optimisation mode for this request only. Defaults to the active mode."
    ),
) -> PlanResponse:
    """
    Plan an itinerary between two coordinates.

    Each call takes a new request token; if another plan or a cancel
    arrives before this one finishes, this result is discarded with 409.
    The token is shared by every caller of this process: the server backs a
    single user session, so a second client planning at the same time
    supersedes the first.  Deployments serving several users run one
    process per user.
    """
    token = planner.start_request()
    try:
        itinerary = await run_in_threadpool(
            planner.plan,
            (origin_lat, origin_lon),
            (destination_lat, destination_lon),
            mode,
        )
    except GraphNotBuilt as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except (NoValidStopNear, NoPathFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    if not planner.is_current(token):
        raise HTTPException(status_code=409, detail="Request superseded by a newer plan.")

    return {"request_token": token, "itinerary": asdict(itinerary)}


@app.put("/mode", response_model=ModeResponse)
async def set_mode(body: ModeRequest) -> ModeResponse:
    """Select the optimisation mode used by subsequent /plan calls."""
    try:
        planner.set_mode(body.mode)
    except UnknownMode as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return {"mode": planner.mode}


@app.post("/plan/cancel", response_model=CancelResponse)
async def cancel_pending() -> CancelResponse:
    """Discard the result of any plan request still in flight."""
    planner.cancel_pending()
    return {"status": "ok", "message": "Pending plan requests cancelled."}


@app.post("/ingest/gtfs-static", response_model=IngestResponse)
async def trigger_gtfs_ingest(
    session: Session = Depends(get_session),
    _: None = Depends(_require_ingest_key),
) -> IngestResponse:
    """
    Manually trigger a GTFS static data refresh and graph rebuild.
    (In production this runs on a daily schedule.)
    """
    await refresh_static_data(session)
    _rebuild_graph(session)
    return {
        "status": "ok",
        "message": "GTFS static data refreshed and graph rebuilt.",
    }
