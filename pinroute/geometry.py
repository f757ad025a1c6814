"""
Distance matrix utilities for PinRoute.

This module turns a list of submitted points into the pairwise cost
tables used by the tour solver. Distances are straight-line planar
Euclidean distances. Pins arrive as (lat, lng) pairs and are treated as
planar coordinates, which is only an approximation away from the
equator; see DESIGN.md.

Solvers work on integral arc costs, so the float matrix is also scaled
(by 1000 by default) and truncated to integers.

Example usage:

    points = [(0.0, 0.0), (3.0, 0.0), (0.0, 4.0)]
    dist_matrix, cost_matrix = build_cost_matrix(points)
    tour_length([0, 1, 2], dist_matrix)  # 12.0
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

from pinroute.errors import InternalError

DEFAULT_SCALE = 1000

Point = Tuple[float, float]


def euclidean_distance(p1: Sequence[float], p2: Sequence[float]) -> float:
    """Return the straight-line distance between two points."""
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


def build_distance_matrix(points: Sequence[Sequence[float]]) -> List[List[float]]:
    """Compute the symmetric matrix of pairwise Euclidean distances.

    Args:
        points: Sequence of (x, y) pairs.

    Returns:
        An n x n list of lists with a zero diagonal. An empty input gives
        an empty matrix.
    """
    n = len(points)
    dist_matrix = [[0.0] * n for _ in range(n)]
    for i in range(n):
        for j in range(i + 1, n):
            dist = euclidean_distance(points[i], points[j])
            dist_matrix[i][j] = dist
            dist_matrix[j][i] = dist
    return dist_matrix


def scale_matrix(dist_matrix: Sequence[Sequence[float]], scale: int = DEFAULT_SCALE) -> List[List[int]]:
    """Scale a float matrix into integer costs, truncating toward zero.

    Raises:
        InternalError: if a scaled cost is not finite (e.g. coordinates so
            large that the distance overflows).
    """
    if scale <= 0:
        raise InternalError(f"cost scale must be positive, got {scale}")
    costs = []
    for i, row in enumerate(dist_matrix):
        scaled_row = []
        for j, value in enumerate(row):
            scaled = value * scale
            if not math.isfinite(scaled):
                raise InternalError(f"distance between points {i} and {j} overflows when scaled")
            scaled_row.append(int(scaled))
        costs.append(scaled_row)
    return costs


def build_cost_matrix(
    points: Sequence[Sequence[float]], scale: int = DEFAULT_SCALE
) -> Tuple[List[List[float]], List[List[int]]]:
    """Return ``(dist_matrix, cost_matrix)`` for the given points."""
    dist_matrix = build_distance_matrix(points)
    return dist_matrix, scale_matrix(dist_matrix, scale)


def tour_length(order: Sequence[int], matrix: Sequence[Sequence[float]]):
    """Length of the closed tour ``order``, including the edge back to the start."""
    if len(order) < 2:
        return 0
    length = 0
    for i in range(len(order) - 1):
        length += matrix[order[i]][order[i + 1]]
    return length + matrix[order[-1]][order[0]]
