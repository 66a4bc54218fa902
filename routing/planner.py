"""
Journey planner facade: the only object callers need.

  planner = JourneyPlanner(repository, mode="balanced")
  planner.build_graph()                       # after every schedule reload
  planner.set_mode("cheapest")                # affects later plan() calls
  itinerary = planner.plan((lat, lon), (lat, lon))

The graph is an immutable snapshot.  build_graph() builds a fresh one
and swaps the reference, so a plan() already running keeps using the
snapshot it started with.

Request tokens: a host that does asynchronous follow-up work per plan
(e.g. fetching street geometry for walk steps) takes a token from
start_request() and checks is_current(token) before applying a result.
Starting a newer request or calling cancel_pending() makes every older
token stale.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from config import DEFAULT_MODE
from graph.builder import TransitGraph, build_graph as build_transit_graph
from routing.costs import CostModel, ModeParameters, mode_parameters
from routing.errors import GraphNotBuilt
from routing.itinerary import Coordinate, Itinerary, build_itinerary
from routing.pathfinder import find_path

logger = logging.getLogger(__name__)


class JourneyPlanner:
    def __init__(self, repository=None, mode: str = DEFAULT_MODE) -> None:
        self._repository = repository
        self._params: ModeParameters = mode_parameters(mode)
        self._graph: Optional[TransitGraph] = None
        self._lock = threading.Lock()
        self._token = 0

    # -- graph ---------------------------------------------------------------

    @property
    def graph(self) -> TransitGraph:
        """The current snapshot. Raises GraphNotBuilt before the first build."""
        graph = self._graph
        if graph is None:
            raise GraphNotBuilt()
        return graph

    @property
    def is_built(self) -> bool:
        return self._graph is not None

    @property
    def last_built_at(self) -> Optional[datetime]:
        graph = self._graph
        return graph.built_at if graph is not None else None

    def build_graph(self, repository=None) -> TransitGraph:
        """
        Build a new snapshot from repository (or the one given at construction)
        and make it current.  The previous snapshot is left untouched.
        """
        repo = repository if repository is not None else self._repository
        if repo is None:
            raise ValueError("No schedule repository to build the graph from.")
        snapshot = build_transit_graph(repo)
        with self._lock:
            self._graph = snapshot
        return snapshot

    # -- mode ----------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._params.name

    def set_mode(self, mode: str) -> None:
        self._params = mode_parameters(mode)
        logger.info("Optimisation mode set to %s.", mode)

    # -- planning ------------------------------------------------------------

    def plan(
        self,
        origin: tuple[float, float],
        destination: tuple[float, float],
        mode: Optional[str] = None,
    ) -> Itinerary:
        """
        Cheapest itinerary between two coordinates under the active mode
        (or mode, for this call only).

        Raises:
            GraphNotBuilt:   build_graph() has not completed yet.
            NoValidStopNear: the graph has no valid stops.
            NoPathFound:     no path within the mode's transfer bound.
        """
        graph = self.graph
        params = mode_parameters(mode) if mode else self._params
        origin = Coordinate.of(origin)
        destination = Coordinate.of(destination)

        start, _ = graph.nearest_stop(origin.lat, origin.lon)
        goal, _ = graph.nearest_stop(destination.lat, destination.lon)
        path = find_path(graph, CostModel(graph, params), start.stop_id, goal.stop_id)
        itinerary = build_itinerary(graph, path, origin, destination, params.name)
        logger.info(
            "Planned %s → %s (%s): %d ride legs, %d transfers.",
            start.stop_id, goal.stop_id, params.name, len(itinerary.legs), itinerary.transfers,
        )
        return itinerary

    # -- request tokens ------------------------------------------------------

    def start_request(self) -> int:
        with self._lock:
            self._token += 1
            return self._token

    def is_current(self, token: int) -> bool:
        return token == self._token

    def cancel_pending(self) -> None:
        """Invalidate every outstanding request token."""
        with self._lock:
            self._token += 1
