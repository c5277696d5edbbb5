"""
Unit Tests for RMax and FactoredRMax
"""

import numpy as np
import pytest

from taxirl.runner import Probe, evaluate_probes, run_session, run_trial
from taxirl.solvers import FactoredRMax, RMax
from taxirl.state import Action, Position, State


def standard_probes(world):
    """Route lengths of the two standard-map checks: (2,2) Y to R and (0,4) Y to R."""
    return [
        Probe(world.build_state((2, 2), "Y", "R"), 10),
        Probe(world.build_state((0, 4), "Y", "R"), 6),
    ]


# Optimal route lengths on the bench world, taxi starting in the centre.
BENCH_PROBES = [
    Probe(State(Position(1, 1), "Y", "R"), 6),
    Probe(State(Position(1, 1), "Y", "G"), 8),
    Probe(State(Position(1, 1), "Y", "B"), 5),
    Probe(State(Position(1, 1), "R", "B"), 7),
]


def transitions_of(model, s, a):
    """Successor indices and probabilities of one pair of a finalized model."""
    mask = model.sa_index == s * model.num_actions + a
    return dict(zip(model.next_index[mask].tolist(), model.probs[mask].tolist()))


class TestRMax:
    """Tests for tabular R-Max."""

    @pytest.fixture
    def solver(self, bench_world):
        return RMax(bench_world, gamma=0.95, known_count=1, error_delta=1e-6)

    def test_initially_everything_unknown(self, solver):
        assert not solver.counts.any()
        assert solver.planner.plans == 1
        assert solver.greedy_action(State(Position(1, 1), "Y", "R")) == Action.NORTH

    def test_invalid_known_count(self, bench_world):
        with pytest.raises(ValueError, match="known_count"):
            RMax(bench_world, gamma=0.95, known_count=0, error_delta=1e-6)

    def test_known_pair_loses_optimism(self, solver, bench_world):
        state = State(Position(1, 1), "Y", "R")
        next_state, reward, done = bench_world.step(state, Action.NORTH)

        solver.observe(state, Action.NORTH, reward, next_state, done)

        s = solver.indexer.index(state)
        assert solver.is_known(s, Action.NORTH)
        assert solver.greedy_action(state) == Action.SOUTH

    def test_model_uses_observations(self, solver, bench_world):
        state = State(Position(1, 1), "Y", "R")
        next_state, reward, done = bench_world.step(state, Action.EAST)
        solver.observe(state, Action.EAST, reward, next_state, done)

        model = solver.build_model()
        s = solver.indexer.index(state)

        assert model.rewards[s, Action.EAST] == -1.0
        assert transitions_of(model, s, Action.EAST) == {solver.indexer.index(next_state): 1.0}
        assert transitions_of(model, s, Action.WEST) == {s: 1.0}
        assert model.rewards[s, Action.WEST] == solver.rmax

    def test_replans_only_when_pair_becomes_known(self, bench_world):
        solver = RMax(bench_world, gamma=0.95, known_count=2, error_delta=1e-6)
        state = State(Position(1, 1), "Y", "R")
        next_state, reward, done = bench_world.step(state, Action.EAST)

        solver.observe(state, Action.EAST, reward, next_state, done)
        assert solver.planner.plans == 1
        solver.observe(state, Action.EAST, reward, next_state, done)
        assert solver.planner.plans == 2
        solver.observe(state, Action.EAST, reward, next_state, done)
        assert solver.planner.plans == 2

    def test_counts_never_decrease(self, solver, bench_world):
        rng = np.random.default_rng(3)
        before = solver.counts.copy()
        for _ in range(5):
            run_trial(bench_world, solver, bench_world.random_state(rng), 50, rng)
            assert np.all(solver.counts >= before)
            before = solver.counts.copy()

    def test_learns_optimal_routes(self, bench_world):
        solver = RMax(bench_world, gamma=0.95, known_count=1, error_delta=1e-6)
        session = run_session(bench_world, solver, 100, 200, seed=11)

        assert solver.planner.failures == 0
        results = evaluate_probes(bench_world, solver, BENCH_PROBES)
        assert [r.success for r in results] == [True] * len(BENCH_PROBES)
        assert session.total_steps > 0

    def test_rejects_undiscounted_positive_optimism(self, rewarding_world):
        with pytest.raises(ValueError, match="gamma must be below 1"):
            RMax(rewarding_world, gamma=1.0, known_count=1, error_delta=1e-6)

    def test_undiscounted_without_bonus(self, standard_world):
        solver = RMax(standard_world, gamma=1.0, known_count=1, error_delta=1e-6)
        assert solver.rmax == 0.0
        assert solver.planner.failures == 0

    def test_discounted_positive_optimism_replans(self, rewarding_world):
        solver = RMax(rewarding_world, gamma=0.95, known_count=1, error_delta=1e-6)
        run_session(rewarding_world, solver, 5, 50, seed=3)

        assert solver.planner.plans > 1
        assert solver.planner.failures == 0

    def test_passes_standard_routes(self, standard_world):
        solver = RMax(standard_world, gamma=1.0, known_count=1, error_delta=1e-6)
        run_session(standard_world, solver, 100, 200, seed=2008)

        results = evaluate_probes(standard_world, solver, standard_probes(standard_world))
        assert [r.success for r in results] == [True, True]
        assert [r.steps for r in results] == [10, 6]


class TestFactoredRMax:
    """Tests for factored R-Max."""

    @pytest.fixture
    def solver(self, bench_world):
        return FactoredRMax(bench_world, gamma=0.95, known_count=1, error_delta=1e-6)

    def test_parents(self, solver):
        state = State(Position(0, 0), "Y", "B")
        parents = solver.parents(state)
        assert parents["taxi_x"] == (0, 0)
        assert parents["taxi_y"] == (0, 0)
        assert parents["passenger"] == ("Y", "R", "B")
        assert parents["reward"] == ("Y", "R", "B")

    def test_unknown_variable_override(self, bench_world):
        with pytest.raises(ValueError, match="Unknown variable"):
            FactoredRMax(bench_world, 0.95, 1, 1e-6, variable_known_counts={"fuel": 2})

    def test_variable_override(self, bench_world):
        solver = FactoredRMax(bench_world, 0.95, 1, 1e-6, variable_known_counts={"reward": 3})
        assert solver.known_counts == {"taxi_x": 1, "taxi_y": 1, "passenger": 1, "reward": 3}

    def test_factors_known_after_one_observation(self, solver, bench_world):
        state = State(Position(1, 1), "Y", "R")
        next_state, reward, done = bench_world.step(state, Action.EAST)
        solver.observe(state, Action.EAST, reward, next_state, done)

        assert solver.factor_known("taxi_x", Action.EAST, (1, 1))
        assert solver.factor_known("passenger", Action.EAST, ("Y", None, "R"))
        assert not solver.factor_known("passenger", Action.EAST, ("G", None, "B"))
        assert solver.factor_count("reward", Action.EAST, ("Y", None, "R")) == 1

    def test_generalizes_across_states(self, solver, bench_world):
        """Position factors and passenger factors are learned in different states."""
        seen_position = State(Position(1, 1), "Y", "R")
        seen_context = State(Position(2, 1), "G", "B")
        for state in (seen_position, seen_context):
            next_state, reward, done = bench_world.step(state, Action.EAST)
            solver.observe(state, Action.EAST, reward, next_state, done)

        unseen = State(Position(1, 1), "G", "B")
        model = solver.build_model()
        s = solver.indexer.index(unseen)

        assert model.rewards[s, Action.EAST] == -1.0
        expected = solver.indexer.index(State(Position(2, 1), "G", "B"))
        assert transitions_of(model, s, Action.EAST) == {expected: 1.0}

    def test_learns_optimal_routes(self, bench_world):
        solver = FactoredRMax(bench_world, gamma=0.95, known_count=1, error_delta=1e-6)
        run_session(bench_world, solver, 100, 200, seed=11)

        results = evaluate_probes(bench_world, solver, BENCH_PROBES)
        assert [r.success for r in results] == [True] * len(BENCH_PROBES)
        assert [r.steps for r in results] == [p.max_steps for p in BENCH_PROBES]

    def test_rejects_undiscounted_positive_optimism(self, rewarding_world):
        with pytest.raises(ValueError, match="gamma must be below 1"):
            FactoredRMax(rewarding_world, gamma=1.0, known_count=1, error_delta=1e-6)

    def test_passes_standard_routes(self, standard_world):
        solver = FactoredRMax(standard_world, gamma=0.3, known_count=1, error_delta=1e-6)
        run_session(standard_world, solver, 100, 200, seed=2008)

        results = evaluate_probes(standard_world, solver, standard_probes(standard_world))
        assert [r.success for r in results] == [True, True]
        assert [r.steps for r in results] == [10, 6]
