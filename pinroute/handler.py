"""
Request handling for PinRoute.

This module sits between the transport (see ``server``) and the tour
solver. It validates the request payload, builds the distance matrices,
runs the configured solver strategy and shapes the response:

    {"order": [0, 2, 1], "distance": 12.0, "suboptimal": false}

``order`` indexes into the submitted ``coords`` array and starts at the
depot. ``distance`` is the closed-tour length in the caller's
coordinate unit.
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import List, Optional, Tuple

from pinroute.config import Settings
from pinroute.errors import InternalError, ValidationError
from pinroute.geometry import Point, build_cost_matrix, tour_length
from pinroute.optimisation import get_strategy, solve_tour

logger = logging.getLogger(__name__)


def _is_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def parse_coords(payload, min_points: int = 0, max_points: Optional[int] = None) -> List[Point]:
    """Validate the ``coords`` of a request payload.

    Args:
        payload: Decoded JSON body, expected to be ``{"coords": [[x, y], ...]}``.
        min_points: Fewest points accepted.
        max_points: Most points accepted, or ``None`` for no limit.

    Returns:
        The points as a list of ``(x, y)`` float tuples.

    Raises:
        ValidationError: if the payload is malformed, has too few or too
            many points, or holds a non-numeric or non-finite value.
    """
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    if "coords" not in payload:
        raise ValidationError("request body must contain 'coords'")
    coords = payload["coords"]
    if not isinstance(coords, (list, tuple)):
        raise ValidationError("'coords' must be a list of [x, y] pairs")
    if len(coords) < min_points:
        raise ValidationError(f"at least {min_points} points are required, got {len(coords)}")
    if max_points is not None and len(coords) > max_points:
        raise ValidationError(f"at most {max_points} points are allowed, got {len(coords)}")

    points = []
    for i, pair in enumerate(coords):
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValidationError(f"coords[{i}] must be a pair [x, y]")
        if not all(_is_number(value) for value in pair):
            raise ValidationError(f"coords[{i}] must contain only numbers")
        try:
            x, y = float(pair[0]), float(pair[1])
        except OverflowError:
            raise ValidationError(f"coords[{i}] must contain finite numbers") from None
        if not (math.isfinite(x) and math.isfinite(y)):
            raise ValidationError(f"coords[{i}] must contain finite numbers")
        points.append((x, y))
    return points


def parse_options(payload: dict, n: int, settings: Settings) -> Tuple[int, Optional[float]]:
    """Return the ``(depot, time_limit)`` requested for ``n`` points."""
    depot = payload.get("depot", settings.depot_index)
    if not isinstance(depot, int) or isinstance(depot, bool):
        raise ValidationError("'depot' must be an integer index")
    if n and not 0 <= depot < n:
        raise ValidationError(f"depot index {depot} is out of range for {n} points")

    time_limit = payload.get("time_limit")
    if time_limit is not None:
        if not _is_number(time_limit) or not math.isfinite(time_limit) or time_limit <= 0:
            raise ValidationError("'time_limit' must be a positive number of seconds")
        time_limit = float(time_limit)
    return depot, time_limit


def optimize(payload, settings: Optional[Settings] = None) -> dict:
    """Validate ``payload`` and compute a tour through its points.

    An empty ``coords`` list (when ``settings.min_points`` allows it)
    yields ``{"order": [], "distance": 0.0, "suboptimal": False}``.
    """
    settings = settings or Settings()
    points = parse_coords(payload, settings.min_points, settings.max_points)
    depot, time_limit = parse_options(payload, len(points), settings)
    if not points:
        return {"order": [], "distance": 0.0, "suboptimal": False}

    dist_matrix, cost_matrix = build_cost_matrix(points, settings.scale)
    strategy = get_strategy(settings.strategy, settings.exact_threshold)
    result = solve_tour(
        cost_matrix,
        depot=depot,
        strategy=strategy,
        limits=settings.search_limits(time_limit),
        scale=settings.scale,
    )
    distance = float(tour_length(result.order, dist_matrix))
    logger.info(
        "Optimised %d points with %s: distance=%.6f suboptimal=%s",
        len(points), result.strategy, distance, result.suboptimal,
    )
    return {"order": result.order, "distance": distance, "suboptimal": result.suboptimal}


class RequestHandler:
    """Stateless boundary that turns a payload into ``(status, body)``.

    No exception escapes ``handle``: validation problems become 400
    responses and anything else becomes a 500 with a generic message.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings()

    def handle(self, payload) -> Tuple[int, dict]:
        try:
            return 200, optimize(payload, self.settings)
        except ValidationError as exc:
            logger.info("Rejected optimisation request: %s", exc.message)
            return exc.status_code, exc.to_dict()
        except InternalError as exc:
            logger.error("Optimisation failed: %s", exc.message)
            return exc.status_code, exc.to_dict()
        except Exception:
            logger.exception("Unexpected failure while optimising")
            error = InternalError("unexpected failure while optimising the route")
            return error.status_code, error.to_dict()
