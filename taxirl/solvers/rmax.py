"""
R-Max over the full joint state.

Every (state, action) pair keeps a visit count, the sum of observed rewards
and the counts of observed successors. A pair is *known* once it has been
visited ``known_count`` times; until then the model assumes it loops back to
the same state paying the maximum reward of the world (R-max). The resulting
optimism drives the agent to try every pair ``known_count`` times before it
trusts its estimate.

The plan is recomputed only when a pair becomes known; between such events
the previous plan is reused.
"""

from __future__ import annotations

from collections import Counter
from typing import Dict, Optional, Tuple

import numpy as np

from taxirl.log import get_logger
from taxirl.planning import DEFAULT_MAX_ITERATIONS, Planner, TabularModel, check_optimism
from taxirl.solvers.base import TabularSolver
from taxirl.state import Action, NUM_ACTIONS, State
from taxirl.world import World

logger = get_logger(__name__)


class RMax(TabularSolver):
    """
    Tabular R-Max solver.

    Attributes:
        known_count: Visits needed before a pair's empirical model is used.
        rmax: Optimistic reward of unknown pairs.
        counts: Visit counts, shape (num_states, 6). Never decrease.
        planner: Current value-iteration plan.
    """

    name = "RMax"

    def __init__(
        self,
        world: World,
        gamma: float,
        known_count: int,
        error_delta: float,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        super().__init__(world)
        if known_count < 1:
            raise ValueError(f"known_count must be at least 1, got {known_count}")
        self.known_count = known_count
        self.rmax = world.max_reward()
        check_optimism(gamma, self.rmax)

        num_states = self.indexer.num_states
        self.counts = np.zeros((num_states, NUM_ACTIONS), dtype=np.int64)
        self.reward_sums = np.zeros((num_states, NUM_ACTIONS), dtype=np.float64)
        self.successors: Dict[Tuple[int, int], Counter] = {}

        self.planner = Planner(num_states, NUM_ACTIONS, gamma, error_delta, max_iterations)
        self.planner.replan(self.build_model())

    def is_known(self, s: int, a: int) -> bool:
        return bool(self.counts[s, a] >= self.known_count)

    def build_model(self) -> TabularModel:
        """The current mixed known/optimistic model."""
        model = TabularModel(self.indexer.num_states, NUM_ACTIONS, self.terminal)
        for s in range(self.indexer.num_states):
            if self.terminal[s]:
                continue
            for a in range(NUM_ACTIONS):
                n = self.counts[s, a]
                if n < self.known_count:
                    model.set_optimistic(s, a, self.rmax)
                    continue
                model.rewards[s, a] = self.reward_sums[s, a] / n
                for s_next, count in sorted(self.successors[(s, a)].items()):
                    model.add_transition(s, a, s_next, count / n)
        return model.finalize()

    def select_action(self, state: State, rng: np.random.Generator) -> Action:
        return self.greedy_action(state)

    def greedy_action(self, state: State) -> Optional[Action]:
        return Action(self.planner.best_action(self.indexer.index(state)))

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
        a = int(action)

        was_known = self.is_known(s, a)
        self.counts[s, a] += 1
        self.reward_sums[s, a] += reward
        self.successors.setdefault((s, a), Counter())[s_next] += 1

        if not was_known and self.is_known(s, a):
            logger.debug("Pair (%s, %s) is now known, replanning", state, action)
            self.planner.replan(self.build_model())
