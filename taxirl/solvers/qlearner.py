"""
Q-learning baseline.

Model-free tabular Q-learning with an epsilon-greedy behaviour policy:

    Q[s, a] <- Q[s, a] + alpha * (r + gamma * max_a' Q[s', a'] - Q[s, a])

Terminal successors contribute no future value. Greedy choices break ties by
the fixed action priority order (lowest action index wins).
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from taxirl.solvers.base import TabularSolver
from taxirl.state import Action, NUM_ACTIONS, State
from taxirl.world import World


class QLearner(TabularSolver):
    """
    Tabular Q-learning solver.

    Attributes:
        alpha: Learning rate.
        gamma: Discount factor.
        epsilon: Probability of taking a uniformly random action.
        q_values: Array of shape (num_states, 6), initialised to zero.
    """

    name = "QLearner"

    def __init__(self, world: World, alpha: float, gamma: float, epsilon: float) -> None:
        super().__init__(world)
        if not 0.0 <= epsilon <= 1.0:
            raise ValueError(f"epsilon must be in [0, 1], got {epsilon}")
        self.alpha = alpha
        self.gamma = gamma
        self.epsilon = epsilon
        self.q_values = np.zeros((self.indexer.num_states, NUM_ACTIONS), dtype=np.float64)

    def select_action(self, state: State, rng: np.random.Generator) -> Action:
        if rng.random() < self.epsilon:
            return Action(int(rng.integers(0, NUM_ACTIONS)))
        return self.greedy_action(state)

    def greedy_action(self, state: State) -> Optional[Action]:
        s = self.indexer.index(state)
        return Action(int(np.argmax(self.q_values[s])))

    def observe(
        self,
        state: State,
        action: Action,
        reward: float,
        next_state: State,
        done: bool,
    ) -> None:
        s = self.indexer.index(state)
        s_next = self.indexer.index(next_state)
        future = 0.0 if done else float(np.max(self.q_values[s_next]))
        td_error = reward + self.gamma * future - self.q_values[s, action]
        self.q_values[s, action] += self.alpha * td_error
