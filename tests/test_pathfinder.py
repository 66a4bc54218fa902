"""
Unit tests for routing.pathfinder.find_path over small synthetic networks.

Stops are spaced ~1.1 km apart along one parallel unless a test needs
them within walking distance, so no accidental walk edges appear.
"""

from dataclasses import replace

import pytest

from db.models import Stop, StopTime, Trip
from db.repository import InMemoryScheduleRepository
from graph.builder import TRANSFER, TRIP, WALK, build_graph
from routing.costs import BALANCED, CHEAPEST, FASTEST, CostModel
from routing.errors import NoPathFound
from routing.pathfinder import START, SWITCH, find_path


def _make_stop(stop_id: str, lon: float, lat: float = -6.2, parent: str | None = None) -> Stop:
    return Stop(stop_id=stop_id, stop_name=f"Halte {stop_id}",
                stop_lat=lat, stop_lon=lon, parent_station=parent)


def _make_repo(stops: list[Stop], lines: dict[str, list[str]]) -> InMemoryScheduleRepository:
    """lines maps route_id → ordered stop_ids of its single trip."""
    trips, stop_times = [], []
    for route_id, stop_ids in lines.items():
        trip_id = f"trip-{route_id}"
        trips.append(Trip(trip_id=trip_id, route_id=route_id))
        stop_times += [
            StopTime(trip_id=trip_id, stop_id=stop_id, stop_sequence=i + 1)
            for i, stop_id in enumerate(stop_ids)
        ]
    return InMemoryScheduleRepository(stops=stops, trips=trips, stop_times=stop_times)


def _ridden_routes(path) -> list[str]:
    routes: list[str] = []
    for step in path:
        if step.kind == TRIP and (not routes or routes[-1] != step.route_id):
            routes.append(step.route_id)
    return routes


@pytest.fixture(scope="module")
def chain():
    """A → B → C → D → E, each hop on its own route: three transfers end to end."""
    stops = [_make_stop(s, 106.80 + 0.01 * i) for i, s in enumerate("ABCDE")]
    return build_graph(_make_repo(stops, {
        "R1": ["A", "B"], "R2": ["B", "C"], "R3": ["C", "D"], "R4": ["D", "E"],
    }))


# ---------------------------------------------------------------------------
# Basic search
# ---------------------------------------------------------------------------

class TestFindPath:
    def test_start_equals_goal(self, chain):
        path = find_path(chain, CostModel(chain, BALANCED), "C", "C")
        assert len(path) == 1
        assert path[0].stop_id == "C"
        assert path[0].kind == START
        assert path[0].cost == 0.0

    def test_single_route(self):
        stops = [_make_stop(s, 106.80 + 0.01 * i) for i, s in enumerate("ABC")]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "B", "C"]}))
        path = find_path(graph, CostModel(graph, BALANCED), "A", "C")
        assert [s.stop_id for s in path if s.kind != SWITCH] == ["A", "B", "C"]
        assert _ridden_routes(path) == ["R1"]
        assert path[-1].transfers == 0

    def test_two_routes_one_transfer(self):
        stops = [_make_stop(s, 106.80 + 0.01 * i) for i, s in enumerate("AMB")]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "M"], "R2": ["M", "B"]}))
        path = find_path(graph, CostModel(graph, BALANCED), "A", "B")
        assert _ridden_routes(path) == ["R1", "R2"]
        assert path[-1].transfers == 1

    def test_trip_edges_are_directional(self):
        stops = [_make_stop(s, 106.80 + 0.01 * i) for i, s in enumerate("AB")]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "B"]}))
        with pytest.raises(NoPathFound) as exc_info:
            find_path(graph, CostModel(graph, BALANCED), "B", "A")
        assert exc_info.value.start == "B"
        assert exc_info.value.goal == "A"
        assert exc_info.value.mode == "balanced"

    def test_costs_and_transfers_never_decrease(self, chain):
        path = find_path(chain, CostModel(chain, BALANCED), "A", "E")
        for prev, step in zip(path, path[1:]):
            assert step.cost >= prev.cost
            assert step.transfers >= prev.transfers

    def test_repeated_search_is_identical(self, chain):
        first = find_path(chain, CostModel(chain, BALANCED), "A", "E")
        second = find_path(chain, CostModel(chain, BALANCED), "A", "E")
        assert first == second


# ---------------------------------------------------------------------------
# Transfer bound
# ---------------------------------------------------------------------------

class TestMaxTransfers:
    def test_path_needing_three_transfers_found_at_bound_three(self, chain):
        params = replace(BALANCED, max_transfers=3)
        path = find_path(chain, CostModel(chain, params), "A", "E")
        assert path[-1].stop_id == "E"
        assert path[-1].transfers == 3

    def test_path_needing_three_transfers_rejected_at_bound_two(self, chain):
        params = replace(BALANCED, max_transfers=2)
        with pytest.raises(NoPathFound):
            find_path(chain, CostModel(chain, params), "A", "E")

    def test_walk_between_routes_adds_no_transfer(self):
        # R1 to B, walk B → C (~143 m), then R1x: one route change, no more.
        stops = [
            _make_stop("A", 106.8000),
            _make_stop("B", 106.8100),
            _make_stop("C", 106.8113),
            _make_stop("D", 106.8213),
        ]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "B"], "R1x": ["C", "D"]}))
        params = replace(BALANCED, max_transfers=0)
        with pytest.raises(NoPathFound):
            find_path(graph, CostModel(graph, params), "A", "D")
        path = find_path(graph, CostModel(graph, replace(BALANCED, max_transfers=1)), "A", "D")
        assert path[-1].transfers == 1


# ---------------------------------------------------------------------------
# Walks and siblings
# ---------------------------------------------------------------------------

class TestWalksAndSiblings:
    def test_sibling_platforms_cost_nothing(self):
        # P1 and P2 share a parent station but no route links them.
        stops = [
            _make_stop("P1", 106.8000, parent="STN"),
            _make_stop("P2", 106.8015, parent="STN"),
            _make_stop("X", 106.7500),
            _make_stop("Y", 106.8500),
        ]
        graph = build_graph(_make_repo(stops, {"R1": ["P1", "X"], "R2": ["Y", "P2"]}))
        path = find_path(graph, CostModel(graph, BALANCED), "P1", "P2")
        assert [s.kind for s in path] == [START, TRANSFER]
        assert path[-1].cost == 0.0
        assert path[-1].transfers == 0

    def test_walk_between_two_routes(self):
        stops = [
            _make_stop("A", 106.8000),
            _make_stop("B", 106.8100),
            _make_stop("C", 106.8113),
            _make_stop("D", 106.8213),
        ]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "B"], "R2": ["C", "D"]}))
        path = find_path(graph, CostModel(graph, BALANCED), "A", "D")
        kinds = [s.kind for s in path if s.kind != SWITCH]
        assert kinds == [START, TRIP, WALK, TRIP]
        assert _ridden_routes(path) == ["R1", "R2"]
        assert path[-1].transfers == 1

    def test_unreachable_without_walk_edge(self):
        stops = [
            _make_stop("A", 106.8000),
            _make_stop("B", 106.8100),
            _make_stop("C", 106.8200),
            _make_stop("D", 106.8300),
        ]
        graph = build_graph(_make_repo(stops, {"R1": ["A", "B"], "R2": ["C", "D"]}))
        with pytest.raises(NoPathFound):
            find_path(graph, CostModel(graph, FASTEST), "A", "D")


# ---------------------------------------------------------------------------
# Mode sensitivity
# ---------------------------------------------------------------------------

class TestModes:
    def test_cheapest_prefers_fewer_transfers_over_distance(self):
        # Direct R9 wanders A → Q → B; R1+R2 go straight via M but change once.
        stops = [
            _make_stop("A", 106.800),
            _make_stop("M", 106.810),
            _make_stop("B", 106.820),
            _make_stop("Q", 106.810, lat=-6.203),
        ]
        graph = build_graph(_make_repo(stops, {
            "R1": ["A", "M"], "R2": ["M", "B"], "R9": ["A", "Q", "B"],
        }))
        path = find_path(graph, CostModel(graph, CHEAPEST), "A", "B")
        assert _ridden_routes(path) == ["R9"]
        assert path[-1].transfers == 0
