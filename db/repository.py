"""
Schedule repository: the read side the graph builder consumes.

Two implementations share the same seven getters:

  SqlScheduleRepository       reads the tables in db/models.py through a
                              SQLAlchemy session.
  InMemoryScheduleRepository  holds lists of (usually transient) ORM rows;
                              used by tests and for embedding the planner
                              without a database.

Every getter returns a list in a stable order (primary key or insertion
id) so that two graph builds from the same snapshot are identical.
"""

from sqlalchemy.orm import Session

from db.models import FareAttribute, FareRule, Frequency, Route, Stop, StopTime, Trip


class SqlScheduleRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_stops(self) -> list[Stop]:
        return self._session.query(Stop).order_by(Stop.stop_id).all()

    def get_trips(self) -> list[Trip]:
        return self._session.query(Trip).order_by(Trip.trip_id).all()

    def get_stop_times(self) -> list[StopTime]:
        return self._session.query(StopTime).order_by(StopTime.id).all()

    def get_routes(self) -> list[Route]:
        return self._session.query(Route).order_by(Route.route_id).all()

    def get_fare_rules(self) -> list[FareRule]:
        return self._session.query(FareRule).order_by(FareRule.id).all()

    def get_fare_attributes(self) -> list[FareAttribute]:
        return self._session.query(FareAttribute).order_by(FareAttribute.fare_id).all()

    def get_frequencies(self) -> list[Frequency]:
        return self._session.query(Frequency).order_by(Frequency.id).all()


class InMemoryScheduleRepository:
    """Repository over plain lists; order is whatever the caller supplied."""

    def __init__(
        self,
        stops: list | None = None,
        trips: list | None = None,
        stop_times: list | None = None,
        routes: list | None = None,
        fare_rules: list | None = None,
        fare_attributes: list | None = None,
        frequencies: list | None = None,
    ) -> None:
        self.stops = list(stops or [])
        self.trips = list(trips or [])
        self.stop_times = list(stop_times or [])
        self.routes = list(routes or [])
        self.fare_rules = list(fare_rules or [])
        self.fare_attributes = list(fare_attributes or [])
        self.frequencies = list(frequencies or [])

    def get_stops(self) -> list:
        return list(self.stops)

    def get_trips(self) -> list:
        return list(self.trips)

    def get_stop_times(self) -> list:
        return list(self.stop_times)

    def get_routes(self) -> list:
        return list(self.routes)

    def get_fare_rules(self) -> list:
        return list(self.fare_rules)

    def get_fare_attributes(self) -> list:
        return list(self.fare_attributes)

    def get_frequencies(self) -> list:
        return list(self.frequencies)
