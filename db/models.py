"""
SQLAlchemy ORM models for one GTFS schedule snapshot.

Only the tables the journey planner reads are modelled: stops, routes,
trips, stop_times, fare_attributes, fare_rules and frequencies.

GTFS time fields (arrival_time, departure_time, start_time, end_time) are
stored as HH:MM:SS strings because the GTFS spec allows values >= 24:00:00.
The planner never reasons over wall-clock times; they are kept so the
snapshot round-trips the source feed.
"""

from sqlalchemy import Column, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Stop(Base):
    __tablename__ = "stops"

    stop_id = Column(String, primary_key=True)
    stop_name = Column(String, nullable=False, default="")
    stop_lat = Column(Float, nullable=True)
    stop_lon = Column(Float, nullable=True)
    stop_code = Column(String, nullable=True)
    # Platforms of one station complex share a parent_station.
    parent_station = Column(String, nullable=True, index=True)
    location_type = Column(Integer, nullable=True)

    stop_times = relationship("StopTime", back_populates="stop")


class Route(Base):
    __tablename__ = "routes"

    route_id = Column(String, primary_key=True)
    route_short_name = Column(String)
    route_long_name = Column(String)
    route_type = Column(Integer)  # 3 = bus
    route_color = Column(String, nullable=True)  # hex without '#'

    trips = relationship("Trip", back_populates="route")


class Trip(Base):
    __tablename__ = "trips"

    trip_id = Column(String, primary_key=True)
    route_id = Column(String, ForeignKey("routes.route_id"), index=True)
    service_id = Column(String, index=True)
    trip_headsign = Column(String)
    direction_id = Column(Integer)
    shape_id = Column(String, nullable=True)

    route = relationship("Route", back_populates="trips")
    stop_times = relationship("StopTime", back_populates="trip", order_by="StopTime.stop_sequence")


class StopTime(Base):
    __tablename__ = "stop_times"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String, ForeignKey("trips.trip_id"), index=True)
    arrival_time = Column(String)    # HH:MM:SS (may exceed 24:00:00)
    departure_time = Column(String)  # HH:MM:SS (may exceed 24:00:00)
    stop_id = Column(String, ForeignKey("stops.stop_id"), index=True)
    stop_sequence = Column(Integer)

    trip = relationship("Trip", back_populates="stop_times")
    stop = relationship("Stop", back_populates="stop_times")


class FareAttribute(Base):
    __tablename__ = "fare_attributes"

    fare_id = Column(String, primary_key=True)
    price = Column(Float, nullable=False)
    currency_type = Column(String, nullable=True)  # ISO 4217


class FareRule(Base):
    """
    Route → fare product link.  A route may match several rules; the first
    one in insertion order wins, so the autoincrement id is the ordering key.
    """
    __tablename__ = "fare_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fare_id = Column(String, index=True)
    route_id = Column(String, index=True)


class Frequency(Base):
    __tablename__ = "frequencies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String, index=True)
    start_time = Column(String)  # HH:MM:SS
    end_time = Column(String)    # HH:MM:SS
    headway_secs = Column(Integer, nullable=True)
    # Non-standard bounds some feeds publish alongside headway_secs.
    min_headway_secs = Column(Integer, nullable=True)
    max_headway_secs = Column(Integer, nullable=True)
