"""
Uniform lat/lon grid for approximate nearest-neighbour queries over stops.

Stops are bucketed by (floor(lat / cell), floor(lon / cell)).  A query
only inspects the stop's own cell and its 8 neighbours, so the number of
haversine evaluations is proportional to local stop density rather than
to the size of the network.

The default cell of 0.004° (~400 m of latitude) is wider than the 250 m
walking radius, which keeps the 3×3 block a superset of the radius at
transit-network latitudes.  Longitude cells shrink toward the poles; a
radius larger than one cell is not guaranteed to be complete.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable

from config import GRID_CELL_DEGREES


@dataclass(frozen=True)
class StopPoint:
    stop_id: str
    lat: float
    lon: float
    name: str = ""
    parent_station: str = ""


_NEIGHBOUR_CELLS = (
    (0, 0), (1, 0), (-1, 0), (0, 1), (0, -1),
    (1, 1), (1, -1), (-1, 1), (-1, -1),
)


class SpatialIndex:
    def __init__(self, stops: Iterable[StopPoint], cell_degrees: float = GRID_CELL_DEGREES) -> None:
        if cell_degrees <= 0:
            raise ValueError("cell_degrees must be positive.")
        self.cell_degrees = cell_degrees
        cells: dict[tuple[int, int], list[StopPoint]] = defaultdict(list)
        count = 0
        for stop in stops:
            cells[self._cell_of(stop.lat, stop.lon)].append(stop)
            count += 1
        # Sorted buckets make candidate order independent of input order.
        self._cells: dict[tuple[int, int], tuple[StopPoint, ...]] = {
            key: tuple(sorted(bucket, key=lambda s: s.stop_id)) for key, bucket in cells.items()
        }
        self._size = count

    def __len__(self) -> int:
        return self._size

    def _cell_of(self, lat: float, lon: float) -> tuple[int, int]:
        return (math.floor(lat / self.cell_degrees), math.floor(lon / self.cell_degrees))

    def candidates(self, lat: float, lon: float) -> list[StopPoint]:
        """All stops in the 3×3 block of cells around (lat, lon)."""
        cy, cx = self._cell_of(lat, lon)
        found: list[StopPoint] = []
        for dy, dx in _NEIGHBOUR_CELLS:
            found.extend(self._cells.get((cy + dy, cx + dx), ()))
        return found

    def neighbors(
        self, stop: StopPoint, radius_m: float, max_count: int
    ) -> list[tuple[StopPoint, float]]:
        """
        Up to max_count other stops within radius_m of stop, nearest first.

        Ties on distance are broken by stop_id.  The query stop itself is
        never returned.
        """
        if max_count <= 0:
            return []
        hits: list[tuple[StopPoint, float]] = []
        for other in self.candidates(stop.lat, stop.lon):
            if other.stop_id == stop.stop_id:
                continue
            dist = haversine_metres(stop.lat, stop.lon, other.lat, other.lon)
            if dist <= radius_m:
                hits.append((other, dist))
        hits.sort(key=lambda hit: (hit[1], hit[0].stop_id))
        return hits[:max_count]


def build_index(valid_stops: Iterable[StopPoint], cell_degrees: float = GRID_CELL_DEGREES) -> SpatialIndex:
    return SpatialIndex(valid_stops, cell_degrees)


def haversine_metres(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two (lat, lon) points in metres."""
    R = 6_371_000
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    return 2 * R * math.atan2(math.sqrt(a), math.sqrt(1 - a))
