"""
Error types for PinRoute.

All errors raised by the package derive from ``PinRouteError``. The
request handler catches them at the boundary and turns them into a
structured response using ``status_code`` and ``to_dict``.
"""

from __future__ import annotations

from typing import List, Optional


class PinRouteError(Exception):
    """Base class for all PinRoute errors."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "message": self.message}


class ValidationError(PinRouteError):
    """Malformed, empty or non-finite input. Reported to the caller as 400."""

    status_code = 400


class InvalidInput(ValidationError):
    """Input the solver cannot build a tour for (no nodes, bad depot)."""


class InternalError(PinRouteError):
    """Unexpected failure while building the matrix or searching."""

    status_code = 500


class SolverTimeout(PinRouteError):
    """The search budget ran out before the search converged.

    This is not fatal: ``tour`` and ``cost`` hold the best feasible tour
    found so far, and the solver returns it flagged as suboptimal.
    """

    def __init__(self, tour: List[int], cost: int, message: Optional[str] = None) -> None:
        super().__init__(message or "search budget exhausted")
        self.tour = list(tour)
        self.cost = cost
