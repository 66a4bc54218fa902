"""
Unit tests for graph.spatial: haversine distance and the grid index.
"""

import random

import pytest

from graph.spatial import SpatialIndex, StopPoint, build_index, haversine_metres


def _make_stop(stop_id: str, lat: float, lon: float) -> StopPoint:
    return StopPoint(stop_id=stop_id, lat=lat, lon=lon, name=stop_id)


class TestHaversineMetres:
    def test_same_point_is_zero(self):
        assert haversine_metres(-6.2, 106.8, -6.2, 106.8) == pytest.approx(0.0, abs=0.01)

    def test_symmetry(self):
        d1 = haversine_metres(-6.1754, 106.8272, -6.2297, 106.8295)
        d2 = haversine_metres(-6.2297, 106.8295, -6.1754, 106.8272)
        assert d1 == pytest.approx(d2, rel=1e-6)

    def test_monas_to_blok_m_approx_8km(self):
        # Monas (-6.1754, 106.8272) → Blok M (-6.2441, 106.7987)
        d = haversine_metres(-6.1754, 106.8272, -6.2441, 106.7987)
        assert 7_000 < d < 9_000

    def test_short_hop_within_walk_radius(self):
        # 0.002° latitude ≈ 222 m
        d = haversine_metres(-6.2000, 106.8, -6.2020, 106.8)
        assert 200 < d < 240

    def test_equator_meridian_crossing(self):
        # (0°, 0°) → (0°, 1°) ≈ 111 km
        d = haversine_metres(0.0, 0.0, 0.0, 1.0)
        assert 110_000 < d < 112_000


# ---------------------------------------------------------------------------
# SpatialIndex
# ---------------------------------------------------------------------------

class TestSpatialIndex:
    def test_len_counts_indexed_stops(self):
        index = build_index([_make_stop("A", -6.2, 106.8), _make_stop("B", -6.3, 106.9)])
        assert len(index) == 2

    def test_non_positive_cell_rejected(self):
        with pytest.raises(ValueError):
            SpatialIndex([], cell_degrees=0)

    def test_candidates_cover_adjacent_cells(self):
        # Just across a cell boundary from the query point.
        a = _make_stop("A", -6.2001, 106.8001)
        b = _make_stop("B", -6.2001, 106.8001 + 0.004)
        far = _make_stop("C", -6.25, 106.85)
        index = build_index([a, b, far])
        found = {s.stop_id for s in index.candidates(a.lat, a.lon)}
        assert found == {"A", "B"}

    def test_neighbors_exclude_query_stop(self):
        a = _make_stop("A", -6.2, 106.8)
        b = _make_stop("B", -6.2005, 106.8)
        index = build_index([a, b])
        assert [s.stop_id for s, _ in index.neighbors(a, 250, 3)] == ["B"]

    def test_neighbors_respect_radius(self):
        a = _make_stop("A", -6.2, 106.8)
        near = _make_stop("N", -6.2015, 106.8)  # ~167 m
        far = _make_stop("F", -6.2030, 106.8)   # ~334 m
        index = build_index([a, near, far])
        assert [s.stop_id for s, _ in index.neighbors(a, 250, 3)] == ["N"]

    def test_neighbors_sorted_and_truncated(self):
        a = _make_stop("A", -6.2, 106.8)
        others = [_make_stop(f"S{i}", -6.2 - 0.0003 * i, 106.8) for i in range(1, 6)]
        index = build_index([a] + others)
        hits = index.neighbors(a, 250, 3)
        assert [s.stop_id for s, _ in hits] == ["S1", "S2", "S3"]
        distances = [d for _, d in hits]
        assert distances == sorted(distances)

    def test_equal_distance_ties_broken_by_stop_id(self):
        # On the equator the two offsets are exact mirror images.
        a = _make_stop("A", 0.0, 0.0)
        north = _make_stop("Z", 0.001, 0.0)
        south = _make_stop("M", -0.001, 0.0)
        index = build_index([a, north, south])
        hits = index.neighbors(a, 250, 1)
        assert [s.stop_id for s, _ in hits] == ["M"]

    def test_zero_max_count_returns_nothing(self):
        a = _make_stop("A", -6.2, 106.8)
        index = build_index([a, _make_stop("B", -6.2005, 106.8)])
        assert index.neighbors(a, 250, 0) == []

    def test_input_order_does_not_matter(self):
        stops = [_make_stop(f"S{i}", -6.2 + 0.0004 * i, 106.8 + 0.0003 * i) for i in range(8)]
        forward = build_index(stops)
        backward = build_index(list(reversed(stops)))
        q = stops[3]
        assert forward.neighbors(q, 250, 3) == backward.neighbors(q, 250, 3)

    def test_matches_brute_force(self):
        """Grid query and O(n²) brute force agree for radius below the cell size."""
        random.seed(42)
        stops = [
            _make_stop(f"S{i}", -6.2 + random.uniform(-0.01, 0.01),
                       106.8 + random.uniform(-0.01, 0.01))
            for i in range(60)
        ]
        index = build_index(stops)

        for stop in stops:
            expected = sorted(
                (
                    (haversine_metres(stop.lat, stop.lon, o.lat, o.lon), o.stop_id)
                    for o in stops
                    if o.stop_id != stop.stop_id
                    and haversine_metres(stop.lat, stop.lon, o.lat, o.lon) <= 250
                ),
            )[:3]
            got = [(d, s.stop_id) for s, d in index.neighbors(stop, 250, 3)]
            assert [sid for _, sid in got] == [sid for _, sid in expected]
