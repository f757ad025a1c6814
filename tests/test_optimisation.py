import unittest
from unittest import mock

from pinroute.errors import InternalError, InvalidInput, SolverTimeout
from pinroute.geometry import build_cost_matrix, tour_length
from pinroute.optimisation import (
    AutoStrategy,
    ExhaustiveStrategy,
    LocalSearchStrategy,
    OrToolsStrategy,
    SearchBudget,
    SearchLimits,
    SolverStrategy,
    cheapest_insertion,
    get_strategy,
    or_opt,
    path_cheapest_arc,
    pywrapcp,
    solve_tour,
    two_opt,
)

SQUARE = [(0, 0), (1, 0), (1, 1), (0, 1)]

# The cheapest-arc tour 0-1-2-3 pays 20 for the closing edge; 0-1-3-2 costs 17.
TRAP = [
    [0, 1, 5, 20],
    [1, 0, 2, 10],
    [5, 2, 0, 1],
    [20, 10, 1, 0],
]


class FixedStrategy(SolverStrategy):
    name = "fixed"

    def __init__(self, route=None, timeout=False):
        self.route = route
        self.timeout = timeout

    def solve(self, dist_matrix, depot, budget):
        if self.timeout:
            raise SolverTimeout(self.route, tour_length(self.route, dist_matrix))
        return self.route


class TestConstruction(unittest.TestCase):
    def test_path_cheapest_arc(self):
        dist = [
            [0, 2, 9, 10],
            [1, 0, 6, 4],
            [15, 7, 0, 8],
            [6, 3, 12, 0],
        ]
        route = path_cheapest_arc(dist, start=0)
        # Starting at 0, cheapest arc is to 1, then 3, then 2
        self.assertEqual(route, [0, 1, 3, 2])

    def test_path_cheapest_arc_ties_take_lowest_index(self):
        _, costs = build_cost_matrix(SQUARE)
        self.assertEqual(path_cheapest_arc(costs), [0, 1, 2, 3])
        self.assertEqual(path_cheapest_arc(costs, start=2), [2, 1, 0, 3])

    def test_cheapest_insertion(self):
        _, costs = build_cost_matrix(SQUARE)
        route = cheapest_insertion(costs)
        self.assertEqual(route, [0, 3, 2, 1])
        self.assertEqual(tour_length(route, costs), 4000)

    def test_empty_matrix(self):
        self.assertEqual(path_cheapest_arc([]), [])
        self.assertEqual(cheapest_insertion([]), [])

    def test_expired_budget_stops_construction(self):
        points = [((i * 37) % 101, (i * 53) % 97) for i in range(40)]
        _, costs = build_cost_matrix(points)
        for construct in (cheapest_insertion, path_cheapest_arc):
            budget = SearchBudget(SearchLimits(time_limit=10))
            budget.deadline -= 20
            with self.subTest(construct=construct.__name__):
                with self.assertRaises(SolverTimeout) as ctx:
                    construct(costs, 5, budget)
                tour = ctx.exception.tour
                self.assertEqual(tour[0], 5)
                self.assertEqual(sorted(tour), list(range(40)))
                self.assertEqual(ctx.exception.cost, tour_length(tour, costs))


class TestImprovement(unittest.TestCase):
    def test_two_opt_removes_crossing(self):
        _, costs = build_cost_matrix(SQUARE)
        self.assertEqual(two_opt([0, 2, 1, 3], costs), [0, 1, 2, 3])

    def test_two_opt_keeps_optimal_route(self):
        dist = [
            [0, 10, 15, 20],
            [10, 0, 35, 25],
            [15, 35, 0, 30],
            [20, 25, 30, 0],
        ]
        self.assertEqual(two_opt([0, 1, 3, 2], dist), [0, 1, 3, 2])

    def test_two_opt_uses_closing_edge(self):
        self.assertEqual(two_opt([0, 1, 2, 3], TRAP), [0, 1, 3, 2])

    def test_or_opt_relocates_node(self):
        # Points on a line visited as 0, 2, 1, 3 along the x axis
        _, costs = build_cost_matrix([(0, 0), (2, 0), (1, 0), (3, 0)])
        self.assertEqual(tour_length([0, 1, 2, 3], costs), 8000)
        route = or_opt([0, 1, 2, 3], costs)
        self.assertEqual(route, [0, 2, 1, 3])
        self.assertEqual(tour_length(route, costs), 6000)

    def test_or_opt_reverses_segment(self):
        # Only moving the pair 4-5 between 1 and 2 as 5-4 helps this tour.
        cheap = {(0, 1): 2, (1, 2): 10, (2, 3): 2, (3, 4): 2, (4, 5): 2, (5, 6): 2,
                 (6, 0): 2, (3, 6): 3, (1, 5): 1, (2, 4): 1}
        dist = [[0 if a == b else 20 for b in range(7)] for a in range(7)]
        for (a, b), value in cheap.items():
            dist[a][b] = dist[b][a] = value
        start = [0, 1, 2, 3, 4, 5, 6]
        self.assertEqual(tour_length(start, dist), 22)
        self.assertEqual(or_opt(start, dist, max_segment=1), start)
        route = or_opt(start, dist)
        self.assertEqual(route, [0, 1, 5, 4, 2, 3, 6])
        self.assertEqual(tour_length(route, dist), 13)

    def test_small_routes_unchanged(self):
        _, costs = build_cost_matrix([(0, 0), (3, 0), (0, 4)])
        self.assertEqual(two_opt([0, 2, 1], costs), [0, 2, 1])
        self.assertEqual(or_opt([0, 2, 1], costs), [0, 2, 1])

    def test_iteration_limit(self):
        _, costs = build_cost_matrix(SQUARE)
        budget = SearchBudget(SearchLimits(max_iterations=0))
        with self.assertRaises(SolverTimeout) as ctx:
            two_opt([0, 2, 1, 3], costs, budget)
        self.assertEqual(ctx.exception.tour, [0, 2, 1, 3])
        self.assertEqual(ctx.exception.cost, 4828)

    def test_time_limit(self):
        budget = SearchBudget(SearchLimits(time_limit=10))
        budget.deadline -= 20
        with self.assertRaises(SolverTimeout):
            or_opt([0, 1, 2, 3], TRAP, budget)

    def test_budget_counts_moves(self):
        budget = SearchBudget()
        two_opt([0, 1, 2, 3], TRAP, budget)
        self.assertEqual(budget.iterations, 1)


class TestStrategies(unittest.TestCase):
    def test_local_search(self):
        route = LocalSearchStrategy().solve(TRAP, 0, SearchBudget())
        self.assertEqual(route, [0, 1, 3, 2])

    def test_local_search_construction_only(self):
        strategy = LocalSearchStrategy(improvements=())
        self.assertEqual(strategy.solve(TRAP, 0, SearchBudget()), [0, 1, 2, 3])

    def test_local_search_rejects_unknown_names(self):
        with self.assertRaises(ValueError):
            LocalSearchStrategy(construction="random")
        with self.assertRaises(ValueError):
            LocalSearchStrategy(improvements=("three_opt",))

    def test_local_search_construction_honours_budget(self):
        points = [((i * 37) % 101, (i * 53) % 97) for i in range(40)]
        _, costs = build_cost_matrix(points)
        budget = SearchBudget(SearchLimits(time_limit=10))
        budget.deadline -= 20
        with self.assertRaises(SolverTimeout) as ctx:
            LocalSearchStrategy(construction="cheapest_insertion").solve(costs, 0, budget)
        self.assertEqual(ctx.exception.tour[0], 0)
        self.assertEqual(sorted(ctx.exception.tour), list(range(40)))

    def test_exhaustive(self):
        self.assertEqual(ExhaustiveStrategy().solve(TRAP, 0, SearchBudget()), [0, 1, 3, 2])
        self.assertEqual(ExhaustiveStrategy().solve(TRAP, 3, SearchBudget()), [3, 1, 0, 2])

    def test_exhaustive_size_limit(self):
        points = [(i, i * i) for i in range(11)]
        _, costs = build_cost_matrix(points)
        with self.assertRaises(InvalidInput):
            ExhaustiveStrategy().solve(costs, 0, SearchBudget())

    def test_auto_switches_on_size(self):
        strategy = AutoStrategy(exact_threshold=3)
        self.assertEqual(strategy.solve(TRAP, 0, SearchBudget()), [0, 1, 3, 2])
        with self.assertRaises(ValueError):
            AutoStrategy(exact_threshold=50)

    def test_get_strategy(self):
        self.assertIsInstance(get_strategy("auto"), AutoStrategy)
        self.assertIsInstance(get_strategy("local_search"), LocalSearchStrategy)
        self.assertEqual(get_strategy("cheapest_insertion").construction, "cheapest_insertion")
        self.assertIsInstance(get_strategy("exhaustive"), ExhaustiveStrategy)
        self.assertEqual(get_strategy("ortools").name, "ortools")
        with self.assertRaises(ValueError):
            get_strategy("simulated_annealing")


@unittest.skipUnless(pywrapcp, "ortools is not installed")
class TestOrToolsStrategy(unittest.TestCase):
    def test_trap(self):
        result = solve_tour(TRAP, strategy=OrToolsStrategy())
        self.assertEqual(result.order[0], 0)
        self.assertEqual(sorted(result.order), [0, 1, 2, 3])
        self.assertLessEqual(result.cost, 24)
        self.assertEqual(result.strategy, "ortools")

    def test_square(self):
        _, costs = build_cost_matrix(SQUARE)
        result = solve_tour(costs, strategy=OrToolsStrategy())
        self.assertEqual(result.cost, 4000)
        self.assertEqual(result.order[0], 0)

    def test_non_zero_depot(self):
        _, costs = build_cost_matrix(SQUARE)
        result = solve_tour(costs, depot=2, strategy=OrToolsStrategy())
        self.assertEqual(result.order[0], 2)
        self.assertEqual(sorted(result.order), [0, 1, 2, 3])
        self.assertEqual(result.cost, 4000)


class TestOrToolsMissing(unittest.TestCase):
    def test_missing_ortools_is_internal_error(self):
        with mock.patch("pinroute.optimisation.pywrapcp", None):
            with self.assertRaises(InternalError) as ctx:
                solve_tour(TRAP, strategy=OrToolsStrategy())
        self.assertIn("pip install ortools", ctx.exception.message)


class TestSolveTour(unittest.TestCase):
    def test_square(self):
        _, costs = build_cost_matrix(SQUARE)
        result = solve_tour(costs)
        self.assertEqual(result.cost, 4000)
        self.assertAlmostEqual(result.distance, 4.0)
        self.assertIn(result.order, ([0, 1, 2, 3], [0, 3, 2, 1]))
        self.assertFalse(result.suboptimal)

    def test_triangle(self):
        _, costs = build_cost_matrix([(0, 0), (3, 0), (0, 4)])
        for strategy in ("auto", "local_search", "cheapest_insertion", "exhaustive"):
            result = solve_tour(costs, strategy=get_strategy(strategy))
            self.assertAlmostEqual(result.distance, 12.0)
            self.assertEqual(sorted(result.order), [0, 1, 2])

    def test_non_zero_depot(self):
        _, costs = build_cost_matrix(SQUARE)
        result = solve_tour(costs, depot=2, strategy=LocalSearchStrategy())
        self.assertEqual(result.order[0], 2)
        self.assertEqual(sorted(result.order), [0, 1, 2, 3])
        self.assertEqual(result.cost, 4000)

    def test_single_point(self):
        result = solve_tour([[0]])
        self.assertEqual(result.order, [0])
        self.assertEqual(result.cost, 0)
        self.assertEqual(result.distance, 0.0)

    def test_invalid_input(self):
        with self.assertRaises(InvalidInput):
            solve_tour([])
        with self.assertRaises(InvalidInput):
            solve_tour(TRAP, depot=4)
        with self.assertRaises(InvalidInput):
            solve_tour(TRAP, depot=-1)

    def test_budget_exhausted_returns_best_tour(self):
        result = solve_tour(TRAP, strategy=LocalSearchStrategy(), limits=SearchLimits(max_iterations=0))
        self.assertTrue(result.suboptimal)
        self.assertEqual(result.order, [0, 1, 2, 3])
        self.assertEqual(result.cost, 24)

        result = solve_tour(TRAP, strategy=LocalSearchStrategy())
        self.assertFalse(result.suboptimal)
        self.assertEqual(result.order, [0, 1, 3, 2])
        self.assertEqual(result.cost, 17)
        self.assertEqual(result.iterations, 1)

    def test_timeout_from_strategy(self):
        result = solve_tour(TRAP, strategy=FixedStrategy([0, 2, 1, 3], timeout=True))
        self.assertTrue(result.suboptimal)
        self.assertEqual(result.order, [0, 2, 1, 3])
        self.assertEqual(result.strategy, "fixed")

    def test_invalid_tour_from_strategy(self):
        with self.assertRaises(InternalError):
            solve_tour(TRAP, strategy=FixedStrategy([0, 1, 1, 3]))
        with self.assertRaises(InternalError):
            solve_tour(TRAP, strategy=FixedStrategy([1, 0, 2, 3]))

    def test_deterministic(self):
        points = [((i * 37) % 101, (i * 53) % 97) for i in range(30)]
        _, costs = build_cost_matrix(points)
        first = solve_tour(costs, strategy=get_strategy("local_search"))
        second = solve_tour(costs, strategy=get_strategy("local_search"))
        self.assertEqual(first.order, second.order)
        self.assertEqual(first.cost, second.cost)

    def test_search_limits_validation(self):
        with self.assertRaises(ValueError):
            SearchLimits(max_iterations=-1)
        with self.assertRaises(ValueError):
            SearchLimits(time_limit=0)


if __name__ == "__main__":
    unittest.main()
