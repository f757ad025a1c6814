"""
Tour optimisation for PinRoute.

This module searches for a short closed tour through every node of a
cost matrix, starting and ending at a fixed depot. Search is split
into two phases:

    - a construction heuristic builds a feasible tour in one pass
      (``path_cheapest_arc`` or ``cheapest_insertion``);
    - local search improves it with first-improvement ``two_opt`` and
      ``or_opt`` moves until no improving move remains or the search
      budget runs out.

The way a tour is searched for is a ``SolverStrategy``. Strategies can
be swapped without touching the request handler:

    - ``LocalSearchStrategy``: construction plus local search.
    - ``ExhaustiveStrategy``: tries every tour, for a handful of nodes.
    - ``OrToolsStrategy``: delegates to Google OR-Tools (optional extra).
    - ``AutoStrategy``: exhaustive for small inputs, local search above.

Every search carries an explicit stopping condition through
``SearchLimits``. When it is hit, the best tour found so far is
returned with ``suboptimal`` set.

Example usage:

    result = solve_tour(cost_matrix, depot=0, limits=SearchLimits(time_limit=2.0))
    result.order, result.distance
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from pinroute.errors import InternalError, InvalidInput, SolverTimeout
from pinroute.geometry import DEFAULT_SCALE, tour_length

try:
    from ortools.constraint_solver import pywrapcp, routing_enums_pb2
except ImportError:
    pywrapcp = None  # type: ignore
    routing_enums_pb2 = None  # type: ignore

ORTOOLS_AVAILABLE = pywrapcp is not None

logger = logging.getLogger(__name__)

Matrix = Sequence[Sequence[float]]

DEFAULT_MAX_ITERATIONS = 10000
DEFAULT_EXACT_THRESHOLD = 8
MAX_EXHAUSTIVE_NODES = 10
MAX_OR_OPT_SEGMENT = 3

CONSTRUCTIONS = ("path_cheapest_arc", "cheapest_insertion")
IMPROVEMENTS = ("two_opt", "or_opt")
STRATEGY_NAMES = ("auto", "local_search", "cheapest_insertion", "exhaustive", "ortools")


@dataclass(frozen=True)
class SearchLimits:
    """Stopping condition for one search.

    ``max_iterations`` caps the number of improving moves applied and
    ``time_limit`` is a wall-clock budget in seconds. ``None`` disables
    that limit.
    """

    max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS
    time_limit: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        if self.time_limit is not None and self.time_limit <= 0:
            raise ValueError("time_limit must be positive")


class SearchBudget:
    """Tracks how much of its ``SearchLimits`` a single search has used."""

    def __init__(self, limits: Optional[SearchLimits] = None) -> None:
        limits = limits or SearchLimits()
        self.max_iterations = limits.max_iterations
        self.deadline = None
        if limits.time_limit is not None:
            self.deadline = time.monotonic() + limits.time_limit
        self.iterations = 0

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def check(self, tour: Sequence[int], cost) -> None:
        """Raise ``SolverTimeout`` with ``tour`` if the deadline has passed."""
        if self.expired():
            raise SolverTimeout(tour, cost, "time limit reached")

    def charge(self, tour: Sequence[int], cost) -> None:
        """Account for one improving move about to be applied to ``tour``."""
        if self.max_iterations is not None and self.iterations >= self.max_iterations:
            raise SolverTimeout(tour, cost, "iteration limit reached")
        self.check(tour, cost)
        self.iterations += 1


@dataclass
class SolveResult:
    order: List[int]
    cost: int
    distance: float
    strategy: str
    iterations: int = 0
    suboptimal: bool = False


# Construction heuristics


def _finish_construction(route: List[int], remaining: Sequence[int], dist_matrix: Matrix) -> None:
    tour = list(route) + list(remaining)
    raise SolverTimeout(tour, tour_length(tour, dist_matrix), "time limit reached during construction")


def path_cheapest_arc(dist_matrix: Matrix, start: int = 0, budget: Optional[SearchBudget] = None) -> List[int]:
    """Construct an initial route by always following the cheapest arc.

    Starting at ``start``, the path is extended from its last node to the
    unvisited node with the cheapest connecting arc. Ties go to the lowest
    node index.

    Args:
        dist_matrix: A square matrix of arc costs.
        start: Index of the depot.
        budget: Optional search budget checked once per extension.

    Returns:
        A list of indices starting with ``start`` and including all other
        indices exactly once.

    Raises:
        SolverTimeout: when ``budget`` runs out. The carried tour is the
            partial path followed by the unvisited nodes in index order.
    """
    n = len(dist_matrix)
    if n == 0:
        return []
    unvisited = set(range(n))
    unvisited.remove(start)
    route = [start]
    current = start
    while unvisited:
        if budget is not None and budget.expired():
            _finish_construction(route, sorted(unvisited), dist_matrix)
        next_node = min(unvisited, key=lambda j: (dist_matrix[current][j], j))
        route.append(next_node)
        unvisited.remove(next_node)
        current = next_node
    return route


def cheapest_insertion(dist_matrix: Matrix, start: int = 0, budget: Optional[SearchBudget] = None) -> List[int]:
    """Construct an initial route by cheapest insertion.

    The tour grows from the depot alone. At every step the (node, position)
    pair adding the least cost to the closed tour is inserted. Nodes and
    positions are scanned in ascending order and the first minimum wins.
    The budget is checked for every candidate node, so a late deadline
    costs at most one scan over the partial tour.
    """
    n = len(dist_matrix)
    if n == 0:
        return []
    route = [start]
    remaining = [j for j in range(n) if j != start]
    while remaining:
        best: Optional[Tuple[float, int, int]] = None
        for node in remaining:
            if budget is not None and budget.expired():
                _finish_construction(route, remaining, dist_matrix)
            for k in range(len(route)):
                a = route[k]
                b = route[(k + 1) % len(route)]
                added = dist_matrix[a][node] + dist_matrix[node][b] - dist_matrix[a][b]
                if best is None or added < best[0]:
                    best = (added, node, k)
        _, node, k = best
        route.insert(k + 1, node)
        remaining.remove(node)
    return route


# Local search moves


def two_opt(route: List[int], dist_matrix: Matrix, budget: Optional[SearchBudget] = None) -> List[int]:
    """Perform 2-opt optimisation on a closed route.

    Each move removes edges (a, b) and (c, e) and reconnects the tour as
    (a, c) and (b, e) by reversing the segment b..c. The first improving
    move in scan order is applied and the scan restarts, until no move
    improves the tour. The node at position 0 never moves.

    Raises:
        SolverTimeout: when ``budget`` runs out, carrying the best route.
    """
    budget = budget or SearchBudget()
    best = list(route)
    n = len(best)
    if n < 4:
        return best
    cost = tour_length(best, dist_matrix)
    improved = True
    while improved:
        improved = False
        for i in range(1, n - 1):
            budget.check(best, cost)
            a, b = best[i - 1], best[i]
            for j in range(i + 1, n):
                c, e = best[j], best[(j + 1) % n]
                delta = dist_matrix[a][c] + dist_matrix[b][e] - dist_matrix[a][b] - dist_matrix[c][e]
                if delta < 0:
                    budget.charge(best, cost)
                    best[i:j + 1] = best[i:j + 1][::-1]
                    cost += delta
                    improved = True
                    break
            if improved:
                break
    return best


def or_opt(
    route: List[int],
    dist_matrix: Matrix,
    budget: Optional[SearchBudget] = None,
    max_segment: int = MAX_OR_OPT_SEGMENT,
) -> List[int]:
    """Perform Or-opt optimisation on a closed route.

    A segment of 1 to ``max_segment`` consecutive nodes is cut out and
    reinserted between two other neighbouring nodes, either as it was or
    reversed. Segment lengths, segment starts and insertion points are
    scanned in ascending order; the first improving move is applied and
    the scan restarts. The node at position 0 never moves.

    Raises:
        SolverTimeout: when ``budget`` runs out, carrying the best route.
    """
    budget = budget or SearchBudget()
    best = list(route)
    n = len(best)
    if n < 4:
        return best
    cost = tour_length(best, dist_matrix)
    improved = True
    while improved:
        improved = False
        for seg_len in range(1, min(max_segment, n - 2) + 1):
            for i in range(1, n - seg_len + 1):
                budget.check(best, cost)
                prev, first = best[i - 1], best[i]
                last, nxt = best[i + seg_len - 1], best[(i + seg_len) % n]
                removed = dist_matrix[prev][first] + dist_matrix[last][nxt] - dist_matrix[prev][nxt]
                rest = best[:i] + best[i + seg_len:]
                for k in range(len(rest)):
                    if k == i - 1:
                        continue
                    a, b = rest[k], rest[(k + 1) % len(rest)]
                    forward = dist_matrix[a][first] + dist_matrix[last][b] - dist_matrix[a][b]
                    backward = dist_matrix[a][last] + dist_matrix[first][b] - dist_matrix[a][b]
                    if forward - removed < 0:
                        segment = best[i:i + seg_len]
                        delta = forward - removed
                    elif backward - removed < 0:
                        segment = best[i:i + seg_len][::-1]
                        delta = backward - removed
                    else:
                        continue
                    budget.charge(best, cost)
                    best = rest[:k + 1] + segment + rest[k + 1:]
                    cost += delta
                    improved = True
                    break
                if improved:
                    break
            if improved:
                break
    return best


_CONSTRUCTION_FUNCS = {
    "path_cheapest_arc": path_cheapest_arc,
    "cheapest_insertion": cheapest_insertion,
}

_IMPROVEMENT_FUNCS = {
    "two_opt": two_opt,
    "or_opt": or_opt,
}


def local_search(
    route: List[int],
    dist_matrix: Matrix,
    improvements: Sequence[str] = IMPROVEMENTS,
    budget: Optional[SearchBudget] = None,
) -> List[int]:
    """Apply the named improvement moves in rounds until none helps."""
    budget = budget or SearchBudget()
    best = list(route)
    best_cost = tour_length(best, dist_matrix)
    while True:
        for name in improvements:
            best = _IMPROVEMENT_FUNCS[name](best, dist_matrix, budget)
        cost = tour_length(best, dist_matrix)
        if cost >= best_cost:
            return best
        best_cost = cost


# Strategies


class SolverStrategy:
    """Interface for the ways of searching a tour.

    ``solve`` receives a square cost matrix with at least two nodes, the
    depot index and the budget of the current request. It returns a tour
    starting at the depot, or raises ``SolverTimeout`` with the best tour
    found when the budget runs out.
    """

    name = "base"

    def solve(self, dist_matrix: Matrix, depot: int, budget: SearchBudget) -> List[int]:
        raise NotImplementedError


class LocalSearchStrategy(SolverStrategy):
    name = "local_search"

    def __init__(self, construction: str = "path_cheapest_arc", improvements: Sequence[str] = IMPROVEMENTS) -> None:
        if construction not in _CONSTRUCTION_FUNCS:
            raise ValueError(f"unknown construction heuristic: {construction!r}")
        unknown = [name for name in improvements if name not in _IMPROVEMENT_FUNCS]
        if unknown:
            raise ValueError(f"unknown improvement moves: {unknown}")
        self.construction = construction
        self.improvements = tuple(improvements)

    def solve(self, dist_matrix: Matrix, depot: int, budget: SearchBudget) -> List[int]:
        route = _CONSTRUCTION_FUNCS[self.construction](dist_matrix, depot, budget)
        logger.debug("%s built an initial tour of cost %s", self.construction, tour_length(route, dist_matrix))
        if not self.improvements:
            return route
        return local_search(route, dist_matrix, self.improvements, budget)


class ExhaustiveStrategy(SolverStrategy):
    """Try every tour and keep the cheapest.

    Permutations of the non-depot nodes are enumerated in lexicographic
    order, skipping mirror images, and the first strictly cheaper tour is
    kept. Limited to ``MAX_EXHAUSTIVE_NODES`` nodes.
    """

    name = "exhaustive"

    def solve(self, dist_matrix: Matrix, depot: int, budget: SearchBudget) -> List[int]:
        n = len(dist_matrix)
        if n > MAX_EXHAUSTIVE_NODES:
            raise InvalidInput(f"exhaustive search supports at most {MAX_EXHAUSTIVE_NODES} points, got {n}")
        others = [j for j in range(n) if j != depot]
        best = [depot] + others
        best_cost = tour_length(best, dist_matrix)
        for count, perm in enumerate(itertools.permutations(others)):
            if count % 512 == 0:
                budget.check(best, best_cost)
            if len(perm) > 1 and perm[0] > perm[-1]:
                continue
            candidate = [depot] + list(perm)
            cost = tour_length(candidate, dist_matrix)
            if cost < best_cost:
                best, best_cost = candidate, cost
        return best


class OrToolsStrategy(SolverStrategy):
    """Delegate the search to the OR-Tools routing solver.

    Uses the PATH_CHEAPEST_ARC first solution strategy with a single
    vehicle. Requires the ``ortools`` extra.
    """

    name = "ortools"

    def solve(self, dist_matrix: Matrix, depot: int, budget: SearchBudget) -> List[int]:
        if pywrapcp is None:
            raise InternalError(
                "ortools is required for the ortools strategy. Please install it via pip install ortools."
            )
        size = len(dist_matrix)
        manager = pywrapcp.RoutingIndexManager(size, 1, depot)
        routing = pywrapcp.RoutingModel(manager)

        def distance_callback(from_idx, to_idx):
            from_node = manager.IndexToNode(from_idx)
            to_node = manager.IndexToNode(to_idx)
            return int(dist_matrix[from_node][to_node])

        transit_callback_index = routing.RegisterTransitCallback(distance_callback)
        routing.SetArcCostEvaluatorOfAllVehicles(transit_callback_index)

        search_parameters = pywrapcp.DefaultRoutingSearchParameters()
        search_parameters.first_solution_strategy = (
            routing_enums_pb2.FirstSolutionStrategy.PATH_CHEAPEST_ARC
        )
        remaining = budget.remaining()
        if remaining is not None:
            search_parameters.time_limit.seconds = max(1, int(remaining))
        solution = routing.SolveWithParameters(search_parameters)
        if not solution:
            raise InternalError("OR-Tools found no solution")

        route = []
        index = routing.Start(0)
        while not routing.IsEnd(index):
            route.append(manager.IndexToNode(index))
            index = solution.Value(routing.NextVar(index))
        return route


class AutoStrategy(SolverStrategy):
    """Exhaustive search up to ``exact_threshold`` nodes, local search above."""

    name = "auto"

    def __init__(self, exact_threshold: int = DEFAULT_EXACT_THRESHOLD, local: Optional[SolverStrategy] = None) -> None:
        if exact_threshold > MAX_EXHAUSTIVE_NODES:
            raise ValueError(f"exact_threshold cannot exceed {MAX_EXHAUSTIVE_NODES}")
        self.exact_threshold = exact_threshold
        self.exact = ExhaustiveStrategy()
        self.local = local or LocalSearchStrategy()

    def solve(self, dist_matrix: Matrix, depot: int, budget: SearchBudget) -> List[int]:
        if len(dist_matrix) <= self.exact_threshold:
            return self.exact.solve(dist_matrix, depot, budget)
        return self.local.solve(dist_matrix, depot, budget)


def get_strategy(name: str = "auto", exact_threshold: int = DEFAULT_EXACT_THRESHOLD) -> SolverStrategy:
    """Return a fresh strategy instance for ``name``."""
    if name == "auto":
        return AutoStrategy(exact_threshold=exact_threshold)
    if name == "local_search":
        return LocalSearchStrategy()
    if name == "cheapest_insertion":
        return LocalSearchStrategy(construction="cheapest_insertion")
    if name == "exhaustive":
        return ExhaustiveStrategy()
    if name == "ortools":
        return OrToolsStrategy()
    raise ValueError(f"unknown solver strategy: {name!r}")


def _check_tour(order: Sequence[int], n: int, depot: int) -> None:
    if len(order) != n or sorted(order) != list(range(n)):
        raise InternalError(f"solver returned an invalid tour: {list(order)}")
    if order[0] != depot:
        raise InternalError(f"solver tour does not start at depot {depot}")


def solve_tour(
    dist_matrix: Matrix,
    depot: int = 0,
    strategy: Optional[SolverStrategy] = None,
    limits: Optional[SearchLimits] = None,
    scale: int = DEFAULT_SCALE,
) -> SolveResult:
    """Search a closed tour over ``dist_matrix`` starting at ``depot``.

    Args:
        dist_matrix: Square matrix of integer-scaled arc costs.
        depot: Index of the start/end node.
        strategy: Search strategy; ``AutoStrategy`` when omitted.
        limits: Stopping condition for the search.
        scale: Factor the costs were scaled by, used to report ``distance``.

    Returns:
        A ``SolveResult`` whose ``order`` is a permutation of all indices
        starting at ``depot``.

    Raises:
        InvalidInput: for an empty matrix or a depot out of range.
        InternalError: if the strategy produced an invalid tour.
    """
    n = len(dist_matrix)
    if n == 0:
        raise InvalidInput("cannot build a tour over zero points")
    if not 0 <= depot < n:
        raise InvalidInput(f"depot index {depot} is out of range for {n} points")
    strategy = strategy or AutoStrategy()
    budget = SearchBudget(limits)
    started = time.monotonic()
    suboptimal = False
    if n == 1:
        order = [depot]
    else:
        try:
            order = strategy.solve(dist_matrix, depot, budget)
        except SolverTimeout as exc:
            logger.warning("%s stopped early on %d points: %s", strategy.name, n, exc.message)
            order = exc.tour
            suboptimal = True
    _check_tour(order, n, depot)
    cost = tour_length(order, dist_matrix)
    logger.debug(
        "%s solved %d points: cost=%s moves=%d elapsed=%.3fs",
        strategy.name, n, cost, budget.iterations, time.monotonic() - started,
    )
    return SolveResult(
        order=list(order),
        cost=cost,
        distance=cost / scale,
        strategy=strategy.name,
        iterations=budget.iterations,
        suboptimal=suboptimal,
    )
