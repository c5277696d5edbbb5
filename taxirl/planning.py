"""
Planning Module

Value iteration over tabular models, shared by the model-based solvers.

A TabularModel stores the transition kernel in coordinate form: one entry
(s, a, s', p) per possible successor. Deterministic and optimistic models use
a single entry per (s, a); factored models may produce several. The Bellman
backup is computed for every (s, a) pair at once:

    Q[s, a] = R[s, a] + gamma * Σ_{s'} P(s' | s, a) * V[s']
    V[s]    = max_a Q[s, a]          (0 for terminal states)

Iteration stops once max_s |V_new[s] - V_old[s]| < error_delta, or when the
iteration cap is reached, in which case the plan is reported as not
converged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from taxirl.log import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ITERATIONS: int = 10_000


class TabularModel:
    """
    A (possibly stochastic) tabular MDP model.

    Attributes:
        num_states: Number of states.
        num_actions: Number of actions.
        rewards: Array of shape (num_states, num_actions).
        terminal: Boolean array of shape (num_states,); terminal states have
            value 0 and their rows are ignored.
        sa_index: Flattened (s * num_actions + a) index of every entry.
        next_index: Successor state of every entry.
        probs: Probability of every entry.
    """

    def __init__(self, num_states: int, num_actions: int, terminal: np.ndarray) -> None:
        self.num_states = num_states
        self.num_actions = num_actions
        self.terminal = np.asarray(terminal, dtype=bool)
        if self.terminal.shape != (num_states,):
            raise ValueError(
                f"Terminal mask shape {self.terminal.shape} doesn't match ({num_states},)"
            )
        self.rewards = np.zeros((num_states, num_actions), dtype=np.float64)

        self._sa: List[int] = []
        self._next: List[int] = []
        self._probs: List[float] = []
        self._frozen = False

    def add_transition(self, s: int, a: int, s_next: int, p: float = 1.0) -> None:
        """Add the successor s_next of (s, a) with probability p."""
        if self._frozen:
            raise RuntimeError("Cannot add transitions to a finalized model")
        self._sa.append(s * self.num_actions + a)
        self._next.append(s_next)
        self._probs.append(p)

    def set_optimistic(self, s: int, a: int, rmax: float) -> None:
        """Model (s, a) as a self-loop paying rmax (optimism under uncertainty)."""
        self.rewards[s, a] = rmax
        self.add_transition(s, a, s, 1.0)

    def finalize(self) -> "TabularModel":
        """Freeze the entries into numpy arrays; returns self."""
        self.sa_index = np.asarray(self._sa, dtype=np.int64)
        self.next_index = np.asarray(self._next, dtype=np.int64)
        self.probs = np.asarray(self._probs, dtype=np.float64)
        self._frozen = True
        return self

    def expected_next_values(self, values: np.ndarray) -> np.ndarray:
        """Σ_{s'} P(s'|s,a) V[s'] for every pair, shape (num_states, num_actions)."""
        if not self._frozen:
            self.finalize()
        weighted = self.probs * values[self.next_index]
        return np.bincount(
            self.sa_index,
            weights=weighted,
            minlength=self.num_states * self.num_actions,
        ).reshape(self.num_states, self.num_actions)


@dataclass
class PlanResult:
    """Outcome of a value iteration run."""

    values: np.ndarray
    q_values: np.ndarray
    converged: bool
    iterations: int
    delta: float


def bellman_backup(model: TabularModel, values: np.ndarray, gamma: float) -> np.ndarray:
    """One Bellman backup, returns Q of shape (num_states, num_actions)."""
    q = model.rewards + gamma * model.expected_next_values(values)
    q[model.terminal] = 0.0
    return q


def value_iteration(
    model: TabularModel,
    gamma: float,
    error_delta: float,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    initial_values: Optional[np.ndarray] = None,
) -> PlanResult:
    """
    Solve a tabular model by value iteration.

    Args:
        model: The model to plan in.
        gamma: Discount factor in [0, 1].
        error_delta: Convergence threshold on max |V_new - V_old|.
        max_iterations: Iteration cap.
        initial_values: Starting value function (warm start). If None,
            starts from zeros.

    Returns:
        PlanResult with the final values, the Q-values of a last backup and
        whether max |V_new - V_old| < error_delta was reached.

    Example:
        >>> result = value_iteration(model, gamma=0.95, error_delta=1e-6)
        >>> action = int(np.argmax(result.q_values[s]))
    """
    if not 0.0 <= gamma <= 1.0:
        raise ValueError(f"gamma must be in [0, 1], got {gamma}")
    if error_delta <= 0.0:
        raise ValueError(f"error_delta must be positive, got {error_delta}")

    if initial_values is None:
        values = np.zeros(model.num_states, dtype=np.float64)
    else:
        values = np.array(initial_values, dtype=np.float64)
    values[model.terminal] = 0.0

    delta = np.inf
    iterations = 0
    while iterations < max_iterations:
        q = bellman_backup(model, values, gamma)
        new_values = q.max(axis=1)
        delta = float(np.max(np.abs(new_values - values))) if len(values) else 0.0
        values = new_values
        iterations += 1
        if delta < error_delta:
            return PlanResult(values, q, True, iterations, delta)

    q = bellman_backup(model, values, gamma)
    return PlanResult(values, q, False, iterations, delta)


def check_optimism(gamma: float, rmax: float) -> None:
    """
    Check that optimistic self-loops have a finite value.

    An unknown pair loops back to its own state paying ``rmax``; without
    discounting a positive ``rmax`` makes that loop worth infinitely much
    and value iteration never converges.

    Raises:
        ValueError: If gamma is 1 and rmax is positive.
    """
    if gamma >= 1.0 and rmax > 0.0:
        raise ValueError(
            f"gamma must be below 1 when the optimistic reward is positive "
            f"(gamma {gamma}, rmax {rmax})"
        )


class Planner:
    """
    Keeps the current plan of a model-based solver.

    Replanning warm-starts from the previous values. A run that hits the
    iteration cap is logged and discarded, the previous plan stays in use;
    only when there is no previous plan is the unconverged result adopted.
    """

    def __init__(
        self,
        num_states: int,
        num_actions: int,
        gamma: float,
        error_delta: float,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        self.gamma = gamma
        self.error_delta = error_delta
        self.max_iterations = max_iterations
        self.values = np.zeros(num_states, dtype=np.float64)
        self.q_values = np.zeros((num_states, num_actions), dtype=np.float64)
        self.has_plan = False
        self.plans = 0
        self.failures = 0

    def replan(self, model: TabularModel) -> PlanResult:
        result = value_iteration(
            model,
            self.gamma,
            self.error_delta,
            max_iterations=self.max_iterations,
            initial_values=self.values if self.has_plan else None,
        )
        self.plans += 1

        if result.converged or not self.has_plan:
            self.values = result.values
            self.q_values = result.q_values
            self.has_plan = True

        if result.converged:
            logger.debug("Plan converged after %d iterations", result.iterations)
        else:
            self.failures += 1
            logger.warning(
                "Value iteration did not converge in %d iterations (delta %.3g), "
                "keeping the previous plan",
                result.iterations,
                result.delta,
            )
        return result

    def best_action(self, s: int) -> int:
        """Greedy action in state s; ties go to the lowest action index."""
        return int(np.argmax(self.q_values[s]))
