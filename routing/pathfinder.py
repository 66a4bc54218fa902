"""
Dijkstra search over augmented states (stop, route held, fare product held).

The same stop is a different state depending on which route is being
ridden (switching costs a transfer) and which fare product has been paid
for (riding on under the same product is free).  Transitions are the
graph's physical edges plus in-place switches onto any other route that
serves the current stop.

Priority queue: heapq binary heap of (cost, push_order, state) with lazy
deletion; an entry whose cost is above the recorded best for its state is
discarded when popped.  push_order makes ties resolve first-in-first-out,
so repeated searches return the same path.

The search stops the first time a state at the goal stop is popped; with
non-negative costs this is optimal over all route/fare contexts.
"""

import heapq
import itertools
import logging
from dataclasses import dataclass
from typing import NamedTuple, Optional

from graph.builder import TransitGraph
from routing.costs import CostModel
from routing.errors import NoPathFound

logger = logging.getLogger(__name__)

START = "start"
SWITCH = "switch"


class SearchState(NamedTuple):
    stop_id: str
    route_id: str  # "" until something is boarded
    fare_id: str   # "" until a fare product is paid for


@dataclass(frozen=True)
class PathStep:
    """
    One transition on the found path.

    route_id is the route of the edge taken ("" for walk and transfer edges,
    the newly boarded route for a switch).  cost and transfers are the
    accumulated values on arrival.
    """
    stop_id: str
    route_id: str
    kind: str  # start | trip | transfer | walk | switch
    cost: float
    transfers: int


def find_path(graph: TransitGraph, cost_model: CostModel, start: str, goal: str) -> list[PathStep]:
    """
    Cheapest path from stop start to stop goal under cost_model.

    Raises:
        NoPathFound: if the goal cannot be reached within max_transfers.
    """
    max_transfers = cost_model.params.max_transfers
    origin = SearchState(start, "", "")

    best_cost: dict[SearchState, float] = {origin: 0.0}
    best_transfers: dict[SearchState, int] = {origin: 0}
    parent: dict[SearchState, Optional[tuple[SearchState, str, str]]] = {origin: None}

    order = itertools.count()
    heap: list[tuple[float, int, SearchState]] = [(0.0, next(order), origin)]

    def relax(
        state: SearchState, transfers: int, cost: float,
        prev: SearchState, route_id: str, kind: str,
    ) -> None:
        if transfers > max_transfers:
            return
        known = best_cost.get(state)
        if known is not None and known <= cost:
            return
        best_cost[state] = cost
        best_transfers[state] = transfers
        parent[state] = (prev, route_id, kind)
        heapq.heappush(heap, (cost, next(order), state))

    popped = 0
    while heap:
        cost, _, state = heapq.heappop(heap)
        if cost > best_cost[state]:
            continue  # stale
        popped += 1
        if state.stop_id == goal:
            logger.debug(
                "Path %s → %s (%s): cost %.1f after %d states.",
                start, goal, cost_model.mode, cost, popped,
            )
            return _reconstruct(state, parent, best_cost, best_transfers)

        transfers = best_transfers[state]
        for to_stop, edge_route, kind, distance in graph.out_edges(state.stop_id):
            route_ctx, fare_ctx, added, step = cost_model.traverse(
                state.route_id, state.fare_id, edge_route, kind, distance
            )
            relax(
                SearchState(to_stop, route_ctx, fare_ctx),
                transfers + added, cost + step, state, edge_route, kind,
            )

        for route_id in graph.routes_at_stop.get(state.stop_id, ()):
            if route_id == state.route_id:
                continue
            route_ctx, fare_ctx, added, step = cost_model.switch(
                state.route_id, state.fare_id, route_id
            )
            relax(
                SearchState(state.stop_id, route_ctx, fare_ctx),
                transfers + added, cost + step, state, route_id, SWITCH,
            )

    logger.debug("No path %s → %s (%s) after %d states.", start, goal, cost_model.mode, popped)
    raise NoPathFound(start, goal, cost_model.mode)


def _reconstruct(
    end: SearchState,
    parent: dict[SearchState, Optional[tuple[SearchState, str, str]]],
    best_cost: dict[SearchState, float],
    best_transfers: dict[SearchState, int],
) -> list[PathStep]:
    steps: list[PathStep] = []
    state: Optional[SearchState] = end
    while state is not None:
        link = parent[state]
        if link is None:
            steps.append(PathStep(state.stop_id, "", START, 0.0, 0))
            break
        prev, route_id, kind = link
        steps.append(PathStep(state.stop_id, route_id, kind, best_cost[state], best_transfers[state]))
        state = prev
    steps.reverse()
    return steps
