"""
Turns a raw search path into an immutable Itinerary value.

A path is a list of PathStep (see routing/pathfinder.py).  Consecutive
"trip" steps on one route form a ride leg.  Walk and transfer steps are
not part of any leg; consecutive ones are merged into a single walking
segment.  Between two ride legs a transfer notice is always emitted,
followed by a walk step only when the legs do not meet at the same stop.

Steps always open with a walk from the raw origin to the nearest stop
and close with a walk from the last stop to the raw destination.

The fare total charges each fare product once, in leg order.  Without
fare tables it is None rather than zero.
"""

from dataclasses import dataclass
from typing import Optional

from config import FARE_CURRENCY
from graph.builder import TRIP, WALK, TransitGraph
from graph.spatial import haversine_metres
from routing.pathfinder import PathStep

WALK_STEP = "walk"
RIDE_STEP = "ride"
TRANSFER_STEP = "transfer"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float

    @classmethod
    def of(cls, value) -> "Coordinate":
        """Accept a Coordinate or any (lat, lon) pair."""
        if isinstance(value, cls):
            return value
        lat, lon = value
        return cls(float(lat), float(lon))


@dataclass(frozen=True)
class Step:
    kind: str  # walk | ride | transfer
    text: str
    route_id: Optional[str] = None
    from_stop_id: Optional[str] = None
    to_stop_id: Optional[str] = None
    distance_m: Optional[float] = None


@dataclass(frozen=True)
class RideLeg:
    route_id: str
    route_label: str
    route_color: Optional[str]
    stop_ids: tuple[str, ...]
    boundary_stop_ids: tuple[str, str]  # (board, alight) for shape lookup by the caller


@dataclass(frozen=True)
class FareTotal:
    amount: float
    currency: str


@dataclass(frozen=True)
class Itinerary:
    mode: str
    origin: Coordinate
    destination: Coordinate
    start_stop_id: str
    goal_stop_id: str
    steps: tuple[Step, ...]
    legs: tuple[RideLeg, ...]
    fare_total: Optional[FareTotal]
    transfers: int
    walk_distance_m: float
    path_cost: float  # generalised cost; comparable only within one mode


@dataclass
class _Segment:
    kind: str  # ride | walk
    route_id: str
    stop_ids: list[str]
    distance_m: float = 0.0


def group_segments(path: list[PathStep], graph: TransitGraph) -> list[_Segment]:
    """Collapse a path into alternating ride and walk segments."""
    segments: list[_Segment] = []
    for prev, step in zip(path, path[1:]):
        if step.kind == TRIP:
            cur = segments[-1] if segments else None
            if (
                cur is not None
                and cur.kind == RIDE_STEP
                and cur.route_id == step.route_id
                and cur.stop_ids[-1] == prev.stop_id
            ):
                cur.stop_ids.append(step.stop_id)
            else:
                segments.append(_Segment(RIDE_STEP, step.route_id, [prev.stop_id, step.stop_id]))
        elif step.stop_id != prev.stop_id:
            hop = graph.distance(prev.stop_id, step.stop_id) if step.kind == WALK else 0.0
            cur = segments[-1] if segments else None
            if cur is not None and cur.kind == WALK_STEP and cur.stop_ids[-1] == prev.stop_id:
                cur.stop_ids.append(step.stop_id)
                cur.distance_m += hop
            else:
                segments.append(_Segment(WALK_STEP, "", [prev.stop_id, step.stop_id], hop))
        # switch steps only change the route held; the next trip step starts the leg
    return segments


def build_itinerary(
    graph: TransitGraph,
    path: list[PathStep],
    origin,
    destination,
    mode: str,
) -> Itinerary:
    origin = Coordinate.of(origin)
    destination = Coordinate.of(destination)
    start_id = path[0].stop_id
    goal_id = path[-1].stop_id
    start = graph.stops[start_id]
    goal = graph.stops[goal_id]

    segments = group_segments(path, graph)
    rides = [s for s in segments if s.kind == RIDE_STEP]

    access = haversine_metres(origin.lat, origin.lon, start.lat, start.lon)
    egress = haversine_metres(goal.lat, goal.lon, destination.lat, destination.lon)
    steps: list[Step] = [
        Step(WALK_STEP, f"Walk to {_stop_name(graph, start_id)} ({_fmt_dist(access)})",
             to_stop_id=start_id, distance_m=round(access, 1)),
    ]
    walked = access + egress
    ride_positions = [i for i, s in enumerate(segments) if s.kind == RIDE_STEP]
    first_ride = ride_positions[0] if ride_positions else len(segments)
    last_ride = ride_positions[-1] if ride_positions else -1
    transfer_noted = False
    for i, segment in enumerate(segments):
        first, last = segment.stop_ids[0], segment.stop_ids[-1]
        if segment.kind == WALK_STEP:
            if first_ride < i < last_ride and not transfer_noted:
                transfer_noted = True
                steps.append(_transfer_step(graph, first))
            steps.append(Step(
                WALK_STEP,
                f"Walk to {_stop_name(graph, last)} ({_fmt_dist(segment.distance_m)})",
                from_stop_id=first, to_stop_id=last, distance_m=round(segment.distance_m, 1),
            ))
            walked += segment.distance_m
            continue
        if i > first_ride and not transfer_noted:
            steps.append(_transfer_step(graph, first))
        transfer_noted = False
        steps.append(Step(
            RIDE_STEP,
            f"Ride {graph.route_label(segment.route_id)} from "
            f"{_stop_name(graph, first)} to {_stop_name(graph, last)}",
            route_id=segment.route_id, from_stop_id=first, to_stop_id=last,
            distance_m=round(_ride_distance(graph, segment.stop_ids), 1),
        ))
    steps.append(Step(
        WALK_STEP, f"Walk to destination ({_fmt_dist(egress)})",
        from_stop_id=goal_id, distance_m=round(egress, 1),
    ))

    legs = tuple(
        RideLeg(
            route_id=s.route_id,
            route_label=graph.route_label(s.route_id),
            route_color=graph.route_colors.get(s.route_id),
            stop_ids=tuple(s.stop_ids),
            boundary_stop_ids=(s.stop_ids[0], s.stop_ids[-1]),
        )
        for s in rides
    )
    return Itinerary(
        mode=mode,
        origin=origin,
        destination=destination,
        start_stop_id=start_id,
        goal_stop_id=goal_id,
        steps=tuple(steps),
        legs=legs,
        fare_total=fare_total(graph, legs),
        transfers=max(0, len(legs) - 1),
        walk_distance_m=round(walked, 1),
        path_cost=round(path[-1].cost, 3),
    )


def fare_total(graph: TransitGraph, legs: tuple[RideLeg, ...]) -> Optional[FareTotal]:
    """Sum of fare products in leg order, each product charged once."""
    if not graph.has_fares:
        return None
    counted: set[str] = set()
    amount = 0.0
    currency: Optional[str] = None
    for leg in legs:
        fare_id = graph.fare_for_route(leg.route_id)
        if fare_id is None or fare_id in counted:
            continue
        price = graph.fare_prices.get(fare_id)
        if price is None:
            continue
        counted.add(fare_id)
        amount += price
        currency = currency or graph.fare_currencies.get(fare_id)
    return FareTotal(amount=amount, currency=currency or FARE_CURRENCY)


def _transfer_step(graph: TransitGraph, stop_id: str) -> Step:
    return Step(TRANSFER_STEP, f"Transfer at {_stop_name(graph, stop_id)}",
                from_stop_id=stop_id, to_stop_id=stop_id)


def _ride_distance(graph: TransitGraph, stop_ids: list[str]) -> float:
    return sum(graph.distance(a, b) for a, b in zip(stop_ids, stop_ids[1:]))


def _stop_name(graph: TransitGraph, stop_id: str) -> str:
    stop = graph.stops.get(stop_id)
    return (stop.name if stop else "") or stop_id


def _fmt_dist(metres: float) -> str:
    return f"{round(metres)} m" if metres < 1000 else f"{metres / 1000:.2f} km"
