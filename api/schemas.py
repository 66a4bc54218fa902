from __future__ import annotations
from typing import Literal
from pydantic import BaseModel


# ---------------------------------------------------------------------------
# GET /stops
# ---------------------------------------------------------------------------

class StopResult(BaseModel):
    stop_id: str
    stop_name: str
    lat: float
    lon: float
    routes_served: list[str]


# ---------------------------------------------------------------------------
# GET /plan: building blocks
# ---------------------------------------------------------------------------

class CoordinateModel(BaseModel):
    lat: float
    lon: float


class StepModel(BaseModel):
    kind: Literal["walk", "ride", "transfer"]
    text: str
    route_id: str | None = None
    from_stop_id: str | None = None
    to_stop_id: str | None = None
    distance_m: float | None = None


class RideLegModel(BaseModel):
    route_id: str
    route_label: str
    route_color: str | None
    stop_ids: list[str]
    boundary_stop_ids: list[str]  # [board, alight], resolved to shapes client-side


class FareTotalModel(BaseModel):
    amount: float
    currency: str


class ItineraryModel(BaseModel):
    mode: Literal["fastest", "cheapest", "balanced"]
    origin: CoordinateModel
    destination: CoordinateModel
    start_stop_id: str
    goal_stop_id: str
    steps: list[StepModel]
    legs: list[RideLegModel]
    fare_total: FareTotalModel | None
    transfers: int
    walk_distance_m: float
    path_cost: float


class PlanResponse(BaseModel):
    request_token: int
    itinerary: ItineraryModel


# ---------------------------------------------------------------------------
# PUT /mode, POST /plan/cancel
# ---------------------------------------------------------------------------

class ModeRequest(BaseModel):
    mode: Literal["fastest", "cheapest", "balanced"]


class ModeResponse(BaseModel):
    mode: Literal["fastest", "cheapest", "balanced"]


class CancelResponse(BaseModel):
    status: Literal["ok"]
    message: str


# ---------------------------------------------------------------------------
# GET /health
# ---------------------------------------------------------------------------

class GtfsStats(BaseModel):
    stops: int
    trips: int
    routes: int
    graph_nodes: int
    graph_edges: int
    graph_built: bool
    last_built_at: str | None
    next_refresh_at: str | None


class PlannerStats(BaseModel):
    mode: str
    valid_stops: int
    trip_edges: int
    transfer_edges: int
    walk_edges: int
    fares_loaded: bool


class HealthResponse(BaseModel):
    status: Literal["ok"]
    timestamp: str
    gtfs: GtfsStats
    planner: PlannerStats


# ---------------------------------------------------------------------------
# POST /ingest/*
# ---------------------------------------------------------------------------

class IngestResponse(BaseModel):
    status: Literal["ok"]
    message: str
