"""
Builds an immutable directed multigraph of transit stops from a schedule
repository (see db/repository.py).

Graph structure:
  Nodes: stop_id strings of *valid* stops (served by at least one
         stop_time whose trip resolves), attributed with {name, lat, lon}
  Edges: keyed by (kind, route_id), three kinds:
    "trip"     : stop A → stop B, consecutive on some trip of route_id.
                 Directed; no reverse edge is implied.
    "transfer" : sibling platforms under one parent_station, always added
                 in both directions, distance_m = 0, route_id = "".
    "walk"     : stop A → up to WALK_MAX_NEIGHBOURS nearest valid stops
                 within WALK_RADIUS_METRES, route_id = "".  Computed per
                 source stop, so B → A exists only if A is in B's own top-N.
  Every edge carries {route_id, kind, distance_m}.

The result is a TransitGraph snapshot which also holds the fare and
headway lookups the cost model needs.  A snapshot is never mutated;
schedule reloads build a new one and the caller swaps the reference.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

import networkx as nx

from config import GRID_CELL_DEGREES, WALK_MAX_NEIGHBOURS, WALK_RADIUS_METRES
from graph.spatial import SpatialIndex, StopPoint, build_index, haversine_metres
from routing.errors import NoValidStopNear

logger = logging.getLogger(__name__)

TRIP = "trip"
TRANSFER = "transfer"
WALK = "walk"


@dataclass(frozen=True)
class TransitGraph:
    graph: nx.MultiDiGraph
    stops: Mapping[str, StopPoint]
    valid_stops: frozenset[str]
    routes_at_stop: Mapping[str, tuple[str, ...]]
    index: SpatialIndex
    route_labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    route_colors: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    route_fares: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    fare_prices: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))
    fare_currencies: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    route_headways: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    built_at: Optional[datetime] = None

    @property
    def has_fares(self) -> bool:
        """True when both fare tables were present and non-empty."""
        return bool(self.route_fares) and bool(self.fare_prices)

    def out_edges(self, stop_id: str) -> Iterator[tuple[str, str, str, float]]:
        """Yield (to_stop, route_id, kind, distance_m) for every edge leaving stop_id."""
        if stop_id not in self.graph:
            return
        for _, to_stop, data in self.graph.out_edges(stop_id, data=True):
            yield to_stop, data["route_id"], data["kind"], data["distance_m"]

    def nearest_stop(self, lat: float, lon: float) -> tuple[StopPoint, float]:
        """
        Closest valid stop to (lat, lon) and its distance in metres.

        No distance ceiling is applied.  Raises NoValidStopNear only when the
        graph has no valid stops at all.
        """
        best: StopPoint | None = None
        best_d = float("inf")
        for stop_id in sorted(self.valid_stops):
            stop = self.stops[stop_id]
            d = haversine_metres(lat, lon, stop.lat, stop.lon)
            if d < best_d:
                best, best_d = stop, d
        if best is None:
            raise NoValidStopNear(lat, lon)
        return best, best_d

    def distance(self, a: str, b: str) -> float:
        sa, sb = self.stops.get(a), self.stops.get(b)
        if sa is None or sb is None:
            return 0.0
        return haversine_metres(sa.lat, sa.lon, sb.lat, sb.lon)

    def route_label(self, route_id: str) -> str:
        return self.route_labels.get(route_id) or route_id

    def fare_for_route(self, route_id: str) -> Optional[str]:
        return self.route_fares.get(route_id)

    def headway_for_route(self, route_id: str) -> Optional[int]:
        return self.route_headways.get(route_id)

    def edge_counts(self) -> dict[str, int]:
        counts = {TRIP: 0, TRANSFER: 0, WALK: 0}
        for *_, kind in self.graph.edges(data="kind"):
            counts[kind] += 1
        return counts


def build_graph(
    repository,
    walk_radius_m: float = WALK_RADIUS_METRES,
    walk_max_neighbours: int = WALK_MAX_NEIGHBOURS,
    cell_degrees: float = GRID_CELL_DEGREES,
) -> TransitGraph:
    """
    Construct a TransitGraph snapshot from the repository's current data.

    Pure function of the repository contents: the same rows always yield the
    same nodes, edges and lookups.  Malformed rows are skipped and counted.
    """
    stops = _load_stop_points(repository.get_stops())
    route_rows = repository.get_routes()
    trip_routes = _load_trip_routes(repository.get_trips(), route_rows)
    valid, routes_at_stop, by_trip = _index_stop_times(
        repository.get_stop_times(), trip_routes, stops
    )

    G = nx.MultiDiGraph()
    for stop_id in sorted(valid):
        stop = stops[stop_id]
        G.add_node(stop_id, name=stop.name, lat=stop.lat, lon=stop.lon)

    _add_trip_edges(G, by_trip, trip_routes, stops)
    _add_sibling_edges(G, stops, valid)

    valid_points = [stops[s] for s in sorted(valid)]
    index = build_index(valid_points, cell_degrees)
    _add_walk_edges(G, index, valid_points, walk_radius_m, walk_max_neighbours)

    labels, colors = _load_route_labels(route_rows)
    route_fares, fare_prices, fare_currencies = _load_fares(
        repository.get_fare_rules(), repository.get_fare_attributes()
    )
    headways = _route_headways(repository.get_frequencies(), trip_routes)

    snapshot = TransitGraph(
        graph=nx.freeze(G),
        stops=MappingProxyType({s: stops[s] for s in sorted(valid)}),
        valid_stops=frozenset(valid),
        routes_at_stop=MappingProxyType(
            {s: tuple(sorted(routes_at_stop[s])) for s in sorted(routes_at_stop)}
        ),
        index=index,
        route_labels=MappingProxyType(labels),
        route_colors=MappingProxyType(colors),
        route_fares=MappingProxyType(route_fares),
        fare_prices=MappingProxyType(fare_prices),
        fare_currencies=MappingProxyType(fare_currencies),
        route_headways=MappingProxyType(headways),
        built_at=datetime.utcnow(),
    )
    counts = snapshot.edge_counts()
    logger.info(
        "Graph built: %d nodes, %d edges (%d trip, %d transfer, %d walk).",
        G.number_of_nodes(),
        G.number_of_edges(),
        counts[TRIP],
        counts[TRANSFER],
        counts[WALK],
    )
    return snapshot


# ---------------------------------------------------------------------------
# Row loading
# ---------------------------------------------------------------------------

def _load_stop_points(rows: list) -> dict[str, StopPoint]:
    """Stops with an id and parseable coordinates, keyed by stop_id."""
    points: dict[str, StopPoint] = {}
    skipped = 0
    for row in rows:
        stop_id = _text(getattr(row, "stop_id", None))
        lat = _parse_coordinate(getattr(row, "stop_lat", None), 90.0)
        lon = _parse_coordinate(getattr(row, "stop_lon", None), 180.0)
        if not stop_id or lat is None or lon is None:
            skipped += 1
            continue
        points[stop_id] = StopPoint(
            stop_id=stop_id,
            lat=lat,
            lon=lon,
            name=_text(getattr(row, "stop_name", None)),
            parent_station=_text(getattr(row, "parent_station", None)),
        )
    if skipped:
        logger.warning("Skipped %d stops with missing id or coordinates.", skipped)
    return points


def _load_trip_routes(rows: list, route_rows: list = ()) -> dict[str, str]:
    """
    trip_id → route_id for trips that name a known route.

    An empty routes table means every route_id is accepted.
    """
    known = {r for r in (_text(getattr(row, "route_id", None)) for row in route_rows) if r}
    trip_routes: dict[str, str] = {}
    skipped = 0
    for row in rows:
        trip_id = _text(getattr(row, "trip_id", None))
        route_id = _text(getattr(row, "route_id", None))
        if not trip_id or not route_id or (known and route_id not in known):
            skipped += 1
            continue
        trip_routes[trip_id] = route_id
    if skipped:
        logger.warning("Skipped %d trips with missing or unknown route_id.", skipped)
    return trip_routes


def _index_stop_times(
    rows: list,
    trip_routes: dict[str, str],
    stops: dict[str, StopPoint],
) -> tuple[set[str], dict[str, set[str]], dict[str, list[tuple[int, int, str]]]]:
    """
    Single pass over stop_times.

    Returns the valid-stop set, the routes serving each stop, and per-trip
    lists of (stop_sequence, row_order, stop_id) ready for sorting.
    """
    valid: set[str] = set()
    routes_at_stop: dict[str, set[str]] = defaultdict(set)
    by_trip: dict[str, list[tuple[int, int, str]]] = defaultdict(list)
    dangling = 0
    bad_sequence = 0
    for order, row in enumerate(rows):
        trip_id = _text(getattr(row, "trip_id", None))
        stop_id = _text(getattr(row, "stop_id", None))
        route_id = trip_routes.get(trip_id)
        if route_id is None or stop_id not in stops:
            dangling += 1
            continue
        seq = _parse_sequence(getattr(row, "stop_sequence", None))
        if seq is None:
            bad_sequence += 1
            continue
        valid.add(stop_id)
        routes_at_stop[stop_id].add(route_id)
        by_trip[trip_id].append((seq, order, stop_id))
    if dangling:
        logger.warning("Skipped %d stop_times with unknown trip_id or stop_id.", dangling)
    if bad_sequence:
        logger.warning("Skipped %d stop_times with unparsable stop_sequence.", bad_sequence)
    return valid, routes_at_stop, by_trip


def _load_route_labels(rows: list) -> tuple[dict[str, str], dict[str, str]]:
    labels: dict[str, str] = {}
    colors: dict[str, str] = {}
    for row in rows:
        route_id = _text(getattr(row, "route_id", None))
        if not route_id:
            continue
        labels[route_id] = _text(getattr(row, "route_short_name", None)) or route_id
        color = _text(getattr(row, "route_color", None))
        if color:
            colors[route_id] = color
    return labels, colors


def _load_fares(
    rules: list, attributes: list
) -> tuple[dict[str, str], dict[str, float], dict[str, str]]:
    """
    route_id → fare_id (first matching rule wins), fare_id → price and
    fare_id → currency.  Rules without a route and attributes without a
    parseable price are ignored.
    """
    route_fares: dict[str, str] = {}
    for rule in rules:
        route_id = _text(getattr(rule, "route_id", None))
        fare_id = _text(getattr(rule, "fare_id", None))
        if route_id and fare_id and route_id not in route_fares:
            route_fares[route_id] = fare_id

    prices: dict[str, float] = {}
    currencies: dict[str, str] = {}
    for attr in attributes:
        fare_id = _text(getattr(attr, "fare_id", None))
        price = _parse_float(getattr(attr, "price", None))
        if not fare_id or price is None or price < 0:
            continue
        prices[fare_id] = price
        currency = _text(getattr(attr, "currency_type", None))
        if currency:
            currencies[fare_id] = currency
    return route_fares, prices, currencies


def _route_headways(rows: list, trip_routes: dict[str, str]) -> dict[str, int]:
    """
    Per-route headway: the minimum over every min/max/fixed headway field
    of every frequency row whose trip belongs to the route.
    """
    headways: dict[str, int] = {}
    for row in rows:
        route_id = trip_routes.get(_text(getattr(row, "trip_id", None)))
        if route_id is None:
            continue
        for attr in ("min_headway_secs", "max_headway_secs", "headway_secs"):
            secs = _parse_sequence(getattr(row, attr, None))
            if secs is None or secs <= 0:
                continue
            if route_id not in headways or secs < headways[route_id]:
                headways[route_id] = secs
    return headways


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------

def _add_trip_edges(
    G: nx.MultiDiGraph,
    by_trip: dict[str, list[tuple[int, int, str]]],
    trip_routes: dict[str, str],
    stops: dict[str, StopPoint],
) -> None:
    """
    For every consecutive stop pair on every trip, add a directed edge
    tagged with the trip's route.  Trips of one route sharing a stop pair
    collapse onto the same (kind, route_id) key.
    """
    for trip_id in sorted(by_trip):
        route_id = trip_routes[trip_id]
        visits = sorted(by_trip[trip_id])
        for (_, _, a), (_, _, b) in zip(visits, visits[1:]):
            if a == b:
                continue
            key = (TRIP, route_id)
            if G.has_edge(a, b, key=key):
                continue
            sa, sb = stops[a], stops[b]
            G.add_edge(
                a, b, key=key,
                route_id=route_id,
                kind=TRIP,
                distance_m=haversine_metres(sa.lat, sa.lon, sb.lat, sb.lon),
            )
    logger.info("Added trip edges for %d trips.", len(by_trip))


def _add_sibling_edges(
    G: nx.MultiDiGraph, stops: dict[str, StopPoint], valid: set[str]
) -> None:
    """Zero-distance transfer edges, both directions, between sibling platforms."""
    children: dict[str, list[str]] = defaultdict(list)
    for stop_id in sorted(valid):
        parent = stops[stop_id].parent_station
        if parent:
            children[parent].append(stop_id)

    count = 0
    for parent in sorted(children):
        siblings = children[parent]
        for i in range(len(siblings)):
            for j in range(i + 1, len(siblings)):
                a, b = siblings[i], siblings[j]
                for u, v in ((a, b), (b, a)):
                    G.add_edge(u, v, key=(TRANSFER, ""), route_id="", kind=TRANSFER, distance_m=0.0)
                    count += 1
    logger.info("Added %d sibling transfer edges across %d stations.", count, len(children))


def _add_walk_edges(
    G: nx.MultiDiGraph,
    index: SpatialIndex,
    stops: list[StopPoint],
    radius_m: float,
    max_neighbours: int,
) -> None:
    """One directed walk edge to each of a stop's nearest neighbours."""
    count = 0
    for stop in stops:
        for other, dist in index.neighbors(stop, radius_m, max_neighbours):
            G.add_edge(
                stop.stop_id, other.stop_id, key=(WALK, ""),
                route_id="", kind=WALK, distance_m=dist,
            )
            count += 1
    logger.info("Added %d walk edges via grid index.", count)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _text(value) -> str:
    """Normalise an id/name field to a stripped string ('' for None)."""
    if value is None:
        return ""
    return str(value).strip()


def _parse_float(value) -> Optional[float]:
    """Returns None for None, blanks, NaN, infinities and unparsable values."""
    if value is None:
        return None
    try:
        result = float(str(value).strip())
    except ValueError:
        return None
    if not math.isfinite(result):
        return None
    return result


def _parse_coordinate(value, limit: float) -> Optional[float]:
    """A finite degree value within ±limit, else None."""
    result = _parse_float(value)
    if result is None or abs(result) > limit:
        return None
    return result


def _parse_sequence(value) -> Optional[int]:
    """
    Parse a GTFS integer field (stop_sequence, headway seconds).
    Returns None on parse failure instead of raising.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except ValueError:
        return None
