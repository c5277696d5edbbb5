"""
Solvers for the taxi domain.

Every solver implements the Solver interface from taxirl.solvers.base.
build_solver creates one from a SolverKind and its settings object (see
taxirl.config), which is how the session driver gets a fresh solver for
every session.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from taxirl.solvers.base import Solver, TabularSolver
from taxirl.solvers.doormax import DoorMax
from taxirl.solvers.factored_rmax import FactoredRMax
from taxirl.solvers.maxq import MaxQ
from taxirl.solvers.qlearner import QLearner
from taxirl.solvers.random_solver import RandomSolver
from taxirl.solvers.rmax import RMax
from taxirl.world import World


class SolverKind(str, Enum):
    """Solver variants, valued by the names used in configuration files."""

    RANDOM = "Random"
    Q_LEARNER = "QLearner"
    R_MAX = "RMax"
    FACTORED_R_MAX = "FactoredRMax"
    DOOR_MAX = "DoorMax"
    MAX_Q = "MaxQ"

    def __str__(self) -> str:
        return self.value


def build_solver(kind: SolverKind, world: World, settings: Any = None) -> Solver:
    """
    Create a fresh solver.

    Args:
        kind: Which variant to build.
        world: The world the solver will act in.
        settings: Hyperparameters of the variant (attribute access: alpha,
            gamma, epsilon, known_count, error_delta, use_reward_learner,
            max_iterations, pseudo_reward, as the variant needs). Ignored for
            the random solver.

    Returns:
        A new solver with no learned state.
    """
    kind = SolverKind(kind)
    if kind == SolverKind.RANDOM:
        return RandomSolver(world)
    if settings is None:
        raise ValueError(f"Solver {kind} needs settings")

    if kind == SolverKind.Q_LEARNER:
        return QLearner(world, settings.alpha, settings.gamma, settings.epsilon)
    if kind == SolverKind.R_MAX:
        return RMax(
            world,
            settings.gamma,
            settings.known_count,
            settings.error_delta,
            max_iterations=settings.max_iterations,
        )
    if kind == SolverKind.FACTORED_R_MAX:
        return FactoredRMax(
            world,
            settings.gamma,
            settings.known_count,
            settings.error_delta,
            variable_known_counts=settings.variable_known_counts,
            max_iterations=settings.max_iterations,
        )
    if kind == SolverKind.DOOR_MAX:
        return DoorMax(
            world,
            settings.gamma,
            settings.known_count,
            settings.error_delta,
            use_reward_learner=settings.use_reward_learner,
            max_iterations=settings.max_iterations,
        )
    return MaxQ(
        world,
        settings.alpha,
        settings.gamma,
        settings.epsilon,
        pseudo_reward=settings.pseudo_reward,
    )


__all__ = [
    "Solver",
    "TabularSolver",
    "SolverKind",
    "build_solver",
    "RandomSolver",
    "QLearner",
    "RMax",
    "FactoredRMax",
    "DoorMax",
    "MaxQ",
]
