"""
Downloads and parses a GTFS static feed into the local database.

Feed contents used:
  stops.txt            → Stop
  routes.txt           → Route
  trips.txt            → Trip
  stop_times.txt       → StopTime
  fare_attributes.txt  → FareAttribute   (optional)
  fare_rules.txt       → FareRule        (optional)
  frequencies.txt      → Frequency       (optional)

Rows that cannot be used (unparsable coordinates or sequence numbers,
references to trips/routes/stops not in the feed) are skipped and counted
rather than aborting the load.
"""

import io
import logging
import math
import zipfile

import httpx
import pandas as pd
from sqlalchemy.orm import Session

from config import DATA_DIR, GTFS_STATIC_URL
from db.models import FareAttribute, FareRule, Frequency, Route, Stop, StopTime, Trip

logger = logging.getLogger(__name__)

GTFS_ZIP_PATH = DATA_DIR / "gtfs_static.zip"


async def download_gtfs_zip(url: str = GTFS_STATIC_URL) -> bytes:
    """Download GTFS zip from the given URL and cache it to disk."""
    if not url:
        raise ValueError("GTFS_STATIC_URL is not configured. Set it in your .env file.")
    logger.info("Downloading GTFS static feed from %s", url)
    async with httpx.AsyncClient(timeout=60) as client:
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
    GTFS_ZIP_PATH.write_bytes(response.content)
    logger.info("Saved GTFS zip to %s (%d bytes)", GTFS_ZIP_PATH, len(response.content))
    return response.content


def parse_and_store(zip_bytes: bytes, session: Session) -> None:
    """
    Extract GTFS zip and replace all schedule tables with its contents.
    """
    with zipfile.ZipFile(io.BytesIO(zip_bytes)) as zf:
        names = zf.namelist()
        logger.info("GTFS zip contains: %s", names)

        def read(filename: str) -> pd.DataFrame:
            with zf.open(filename) as f:
                return pd.read_csv(f, dtype=str).fillna("")

        def read_optional(filename: str) -> pd.DataFrame:
            return read(filename) if filename in names else pd.DataFrame()

        _parse_stops(read("stops.txt"), session)
        _parse_routes(read("routes.txt"), session)
        _parse_trips(read("trips.txt"), session)
        _parse_stop_times(read("stop_times.txt"), session)
        _parse_fare_attributes(read_optional("fare_attributes.txt"), session)
        _parse_fare_rules(read_optional("fare_rules.txt"), session)
        _parse_frequencies(read_optional("frequencies.txt"), session)

    session.commit()
    logger.info("GTFS static data committed to database.")


def _parse_stops(df: pd.DataFrame, session: Session) -> None:
    session.query(Stop).delete()
    skipped = 0
    for _, row in df.iterrows():
        lat = _to_coordinate(row.get("stop_lat", ""), 90.0)
        lon = _to_coordinate(row.get("stop_lon", ""), 180.0)
        if not row.get("stop_id") or lat is None or lon is None:
            skipped += 1
            continue
        session.add(Stop(
            stop_id=row["stop_id"],
            stop_name=row.get("stop_name", ""),
            stop_lat=lat,
            stop_lon=lon,
            stop_code=row.get("stop_code", ""),
            parent_station=row.get("parent_station", "") or None,
            location_type=_to_int(row.get("location_type", "")),
        ))
    if skipped:
        logger.warning("Skipped %d stops with missing id or coordinates.", skipped)
    logger.info("Loaded %d stops.", len(df) - skipped)


def _parse_routes(df: pd.DataFrame, session: Session) -> None:
    session.query(Route).delete()
    for _, row in df.iterrows():
        session.add(Route(
            route_id=row["route_id"],
            route_short_name=row.get("route_short_name", ""),
            route_long_name=row.get("route_long_name", ""),
            route_type=_to_int(row.get("route_type", "")) or 3,
            route_color=row.get("route_color", "") or None,
        ))
    logger.info("Loaded %d routes.", len(df))


def _parse_trips(df: pd.DataFrame, session: Session) -> None:
    session.query(Trip).delete()
    session.flush()  # ensure route rows from _parse_routes are visible
    valid_routes = {r[0] for r in session.query(Route.route_id).all()}
    skipped = 0
    for _, row in df.iterrows():
        if row["route_id"] not in valid_routes:
            skipped += 1
            continue
        session.add(Trip(
            trip_id=row["trip_id"],
            route_id=row["route_id"],
            service_id=row.get("service_id", ""),
            trip_headsign=row.get("trip_headsign", ""),
            direction_id=_to_int(row.get("direction_id", "")) or 0,
            shape_id=row.get("shape_id", ""),
        ))
    if skipped:
        logger.warning("Skipped %d trips with invalid route_id.", skipped)
    logger.info("Loaded %d trips.", len(df) - skipped)


def _parse_stop_times(df: pd.DataFrame, session: Session) -> None:
    session.query(StopTime).delete()
    session.flush()  # ensure trip/stop rows from prior parsers are visible
    # Feeds occasionally reference trips or stops that are not in the feed.
    # SQLite silently ignores FK violations; PostgreSQL raises immediately.
    valid_trips = {r[0] for r in session.query(Trip.trip_id).all()}
    valid_stops = {r[0] for r in session.query(Stop.stop_id).all()}
    records = []
    skipped = 0
    bad_sequence = 0
    for _, row in df.iterrows():
        if row["trip_id"] not in valid_trips or row["stop_id"] not in valid_stops:
            skipped += 1
            continue
        seq = _to_int(row.get("stop_sequence", ""))
        if seq is None:
            bad_sequence += 1
            continue
        records.append(StopTime(
            trip_id=row["trip_id"],
            arrival_time=row.get("arrival_time", ""),
            departure_time=row.get("departure_time", ""),
            stop_id=row["stop_id"],
            stop_sequence=seq,
        ))
    if skipped:
        logger.warning("Skipped %d stop_times with invalid trip_id or stop_id.", skipped)
    if bad_sequence:
        logger.warning("Skipped %d stop_times with unparsable stop_sequence.", bad_sequence)
    session.bulk_save_objects(records)
    logger.info("Loaded %d stop times.", len(records))


def _parse_fare_attributes(df: pd.DataFrame, session: Session) -> None:
    session.query(FareAttribute).delete()
    loaded = 0
    for _, row in df.iterrows():
        price = _to_float(row.get("price", ""))
        if not row.get("fare_id") or price is None:
            continue
        session.add(FareAttribute(
            fare_id=row["fare_id"],
            price=price,
            currency_type=row.get("currency_type", "") or None,
        ))
        loaded += 1
    logger.info("Loaded %d fare attributes.", loaded)


def _parse_fare_rules(df: pd.DataFrame, session: Session) -> None:
    session.query(FareRule).delete()
    loaded = 0
    # Insertion order is significant: the first rule for a route wins.
    for _, row in df.iterrows():
        if not row.get("fare_id") or not row.get("route_id"):
            continue
        session.add(FareRule(fare_id=row["fare_id"], route_id=row["route_id"]))
        loaded += 1
    session.flush()
    logger.info("Loaded %d fare rules.", loaded)


def _parse_frequencies(df: pd.DataFrame, session: Session) -> None:
    session.query(Frequency).delete()
    loaded = 0
    for _, row in df.iterrows():
        if not row.get("trip_id"):
            continue
        session.add(Frequency(
            trip_id=row["trip_id"],
            start_time=row.get("start_time", ""),
            end_time=row.get("end_time", ""),
            headway_secs=_to_int(row.get("headway_secs", "")),
            min_headway_secs=_to_int(row.get("min_headway_secs", "")),
            max_headway_secs=_to_int(row.get("max_headway_secs", "")),
        ))
        loaded += 1
    logger.info("Loaded %d frequencies.", loaded)


def _to_float(value: str) -> float | None:
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_coordinate(value: str, limit: float) -> float | None:
    result = _to_float(value)
    if result is None or abs(result) > limit:
        return None
    return result


def _to_int(value: str) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


async def refresh_static_data(session: Session) -> None:
    """Download and ingest a fresh copy of GTFS static data."""
    zip_bytes = await download_gtfs_zip()
    parse_and_store(zip_bytes, session)
