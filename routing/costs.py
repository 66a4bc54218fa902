"""
Generalised cost model for the three optimisation modes.

Each mode fixes a ModeParameters value:

  big                  penalty for switching from one route to another
  max_transfers        hard bound on route switches along a path
  transit_weight       multiplier on metres ridden
  walk_weight          multiplier on metres walked
  alight_walk_penalty  added to a walk edge taken while holding a route
  fare_weight          multiplier on a newly paid fare product (0 = ignore fares)
  wait_weight          multiplier on expected wait, headway / 2 (0 = ignore waits)

The resulting cost is dimensionally mixed (metres, penalty units, scaled
currency, scaled seconds).  It ranks candidate paths within one mode and
means nothing outside that comparison.

Every transition returns (route_ctx, fare_ctx, transfers_added, cost).
Costs are never negative, which the Dijkstra search relies on.
"""

from dataclasses import dataclass

from config import DEFAULT_HEADWAY_SECONDS, WALK_ZIGZAG_CAP_METRES
from graph.builder import TRANSFER, TransitGraph
from routing.errors import UnknownMode


@dataclass(frozen=True)
class ModeParameters:
    name: str
    big: float
    max_transfers: int
    transit_weight: float
    walk_weight: float
    alight_walk_penalty: float
    fare_weight: float = 0.0
    wait_weight: float = 0.0
    zigzag_cap_m: float = WALK_ZIGZAG_CAP_METRES


FASTEST = ModeParameters(
    name="fastest",
    big=2_000.0,
    max_transfers=6,
    transit_weight=0.6,
    walk_weight=1.5,
    alight_walk_penalty=300.0,
    wait_weight=4.0,
)

CHEAPEST = ModeParameters(
    name="cheapest",
    big=1_000.0,
    max_transfers=3,
    transit_weight=1.0,
    walk_weight=2.0,
    alight_walk_penalty=500.0,
    fare_weight=1.0,
)

BALANCED = ModeParameters(
    name="balanced",
    big=5_000.0,
    max_transfers=5,
    transit_weight=1.0,
    walk_weight=1.2,
    alight_walk_penalty=400.0,
    fare_weight=0.25,
    wait_weight=1.0,
)

MODES: dict[str, ModeParameters] = {m.name: m for m in (FASTEST, CHEAPEST, BALANCED)}


def mode_parameters(mode: str) -> ModeParameters:
    try:
        return MODES[mode]
    except KeyError:
        raise UnknownMode(mode) from None


Transition = tuple[str, str, int, float]


class CostModel:
    """Edge and transition costs for one mode over one graph snapshot."""

    def __init__(self, graph: TransitGraph, params: ModeParameters) -> None:
        self.graph = graph
        self.params = params
        # Without fare tables every state would carry "" anyway; skipping
        # the lookup keeps the state space at (stop, route).
        self.tracks_fares = params.fare_weight > 0 and graph.has_fares

    @property
    def mode(self) -> str:
        return self.params.name

    def edge_cost(self, route_id: str, distance_m: float) -> float:
        weight = self.params.transit_weight if route_id else self.params.walk_weight
        return distance_m * weight

    def traverse(
        self, route_ctx: str, fare_ctx: str, edge_route: str, kind: str, distance_m: float
    ) -> Transition:
        """Cost of following a physical edge out of a state."""
        cost = self.edge_cost(edge_route, distance_m)
        if edge_route:
            if edge_route == route_ctx:
                return route_ctx, fare_ctx, 0, cost
            return self._board(route_ctx, fare_ctx, edge_route, cost)

        # Sibling platforms are the same station: distance only.
        if kind == TRANSFER:
            return route_ctx, fare_ctx, 0, cost
        cost += min(self.params.zigzag_cap_m, distance_m)
        if route_ctx:
            cost += self.params.alight_walk_penalty
        return route_ctx, fare_ctx, 0, cost

    def switch(self, route_ctx: str, fare_ctx: str, new_route: str) -> Transition:
        """Cost of boarding new_route without moving; a zero-distance edge."""
        return self._board(route_ctx, fare_ctx, new_route, 0.0)

    def wait_cost(self, route_id: str) -> float:
        if self.params.wait_weight <= 0:
            return 0.0
        headway = self.graph.headway_for_route(route_id)
        if headway is None:
            headway = DEFAULT_HEADWAY_SECONDS
        return (headway / 2) * self.params.wait_weight

    def fare_cost(self, fare_ctx: str, route_id: str) -> tuple[str, float]:
        """
        Charge the route's fare product unless it is the one already held.
        Routes without a fare product ride free and keep the held product.
        """
        if not self.tracks_fares:
            return fare_ctx, 0.0
        fare_id = self.graph.fare_for_route(route_id)
        if fare_id is None or fare_id == fare_ctx:
            return fare_ctx, 0.0
        price = self.graph.fare_prices.get(fare_id, 0.0)
        return fare_id, price * self.params.fare_weight

    def _board(self, route_ctx: str, fare_ctx: str, new_route: str, cost: float) -> Transition:
        transfers = 0
        if route_ctx:
            cost += self.params.big
            transfers = 1
        cost += self.wait_cost(new_route)
        fare_ctx, fare = self.fare_cost(fare_ctx, new_route)
        return new_route, fare_ctx, transfers, cost + fare
