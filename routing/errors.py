"""
Errors raised by the journey planner.

All of them are recoverable and user-facing; none should take the
process down.  The API layer maps each one to an HTTP status.
"""


class PlannerError(Exception):
    """Base class for journey planner errors."""


class GraphNotBuilt(PlannerError, RuntimeError):
    """plan() was called before a graph snapshot was built. Retry later."""

    def __init__(self) -> None:
        super().__init__("Transit graph has not been built yet. Call build_graph() first.")


class NoValidStopNear(PlannerError, LookupError):
    """The graph has no valid stop at all, so no coordinate can be resolved."""

    def __init__(self, lat: float, lon: float) -> None:
        self.lat = lat
        self.lon = lon
        super().__init__(f"No valid stop near ({lat:.6f}, {lon:.6f}).")


class NoPathFound(PlannerError):
    """Search exhausted without reaching the goal within the mode's transfer bound."""

    def __init__(self, start: str, goal: str, mode: str) -> None:
        self.start = start
        self.goal = goal
        self.mode = mode
        super().__init__(f"No path from stop '{start}' to stop '{goal}' in '{mode}' mode.")


class UnknownMode(PlannerError, ValueError):
    def __init__(self, mode: str) -> None:
        self.mode = mode
        super().__init__(f"Unknown optimisation mode '{mode}'.")
