"""
Factored R-Max.

Instead of learning the joint transition of every (state, action) pair, the
model is split into one factor per state variable, each conditioned on the
action and on a small set of parent features (a fixed dynamic Bayesian
network for the taxi domain):

    taxi_x, taxi_y : taxi position
    passenger      : (passenger, location under the taxi, destination)
    reward         : (passenger, location under the taxi, destination)

The destination never changes within an episode, so it is copied through.

Each factor entry (variable, action, parent value) becomes known after
``known_count`` observations (overridable per variable). A joint pair is
modelled only when every one of its factors is known; its successor
distribution is then the product of the per-variable distributions. Any
unknown factor makes the pair optimistic, exactly as in tabular R-Max.
"""

from __future__ import annotations

import itertools
from collections import Counter
from typing import Dict, Hashable, List, Mapping, Optional, Tuple

import numpy as np

from taxirl.log import get_logger
from taxirl.planning import DEFAULT_MAX_ITERATIONS, Planner, TabularModel, check_optimism
from taxirl.solvers.base import TabularSolver
from taxirl.state import Action, NUM_ACTIONS, Position, State
from taxirl.world import World

logger = get_logger(__name__)

VARIABLES: Tuple[str, ...] = ("taxi_x", "taxi_y", "passenger", "reward")

FactorKey = Tuple[int, Hashable]


class FactoredRMax(TabularSolver):
    """
    R-Max with a factored transition and reward model.

    Attributes:
        known_counts: Known-count threshold of every variable.
        value_counts: Per variable, mapping (action, parent) -> Counter of
            observed next values.
        reward_sums: Mapping (action, parent) -> summed observed reward.
        planner: Current value-iteration plan.
    """

    name = "FactoredRMax"

    def __init__(
        self,
        world: World,
        gamma: float,
        known_count: int,
        error_delta: float,
        variable_known_counts: Optional[Mapping[str, int]] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        super().__init__(world)
        self.known_counts: Dict[str, int] = {v: known_count for v in VARIABLES}
        for variable, count in (variable_known_counts or {}).items():
            if variable not in self.known_counts:
                raise ValueError(
                    f"Unknown variable '{variable}', expected one of {', '.join(VARIABLES)}"
                )
            self.known_counts[variable] = count
        for variable, count in self.known_counts.items():
            if count < 1:
                raise ValueError(f"known_count of {variable} must be at least 1, got {count}")
        self.rmax = world.max_reward()
        check_optimism(gamma, self.rmax)

        self.value_counts: Dict[str, Dict[FactorKey, Counter]] = {
            v: {} for v in VARIABLES if v != "reward"
        }
        self.reward_counts: Dict[FactorKey, int] = {}
        self.reward_sums: Dict[FactorKey, float] = {}

        self._parents: List[Dict[str, Hashable]] = [
            self.parents(state) for state in self.indexer.states
        ]

        self.planner = Planner(
            self.indexer.num_states, NUM_ACTIONS, gamma, error_delta, max_iterations
        )
        self.planner.replan(self.build_model())

    def parents(self, state: State) -> Dict[str, Hashable]:
        """Parent feature values of every variable in a state."""
        position = (state.taxi.x, state.taxi.y)
        context = (state.passenger, self.world.location_at(state.taxi), state.destination)
        return {
            "taxi_x": position,
            "taxi_y": position,
            "passenger": context,
            "reward": context,
        }

    @staticmethod
    def values(state: State) -> Dict[str, Hashable]:
        return {"taxi_x": state.taxi.x, "taxi_y": state.taxi.y, "passenger": state.passenger}

    def factor_count(self, variable: str, action: int, parent: Hashable) -> int:
        key = (action, parent)
        if variable == "reward":
            return self.reward_counts.get(key, 0)
        counter = self.value_counts[variable].get(key)
        return sum(counter.values()) if counter else 0

    def factor_known(self, variable: str, action: int, parent: Hashable) -> bool:
        return self.factor_count(variable, action, parent) >= self.known_counts[variable]

    def _distribution(self, variable: str, action: int, parent: Hashable) -> List[Tuple[Hashable, float]]:
        counter = self.value_counts[variable][(action, parent)]
        total = sum(counter.values())
        return [(value, n / total) for value, n in sorted(counter.items(), key=lambda kv: str(kv[0]))]

    def build_model(self) -> TabularModel:
        """The current factored model, expanded into a joint tabular model."""
        model = TabularModel(self.indexer.num_states, NUM_ACTIONS, self.terminal)

        for s, state in enumerate(self.indexer.states):
            if self.terminal[s]:
                continue
            parents = self._parents[s]
            for a in range(NUM_ACTIONS):
                if not all(self.factor_known(v, a, parents[v]) for v in VARIABLES):
                    model.set_optimistic(s, a, self.rmax)
                    continue

                reward_key = (a, parents["reward"])
                model.rewards[s, a] = self.reward_sums[reward_key] / self.reward_counts[reward_key]

                xs = self._distribution("taxi_x", a, parents["taxi_x"])
                ys = self._distribution("taxi_y", a, parents["taxi_y"])
                ps = self._distribution("passenger", a, parents["passenger"])
                for (x, px), (y, py), (p, pp) in itertools.product(xs, ys, ps):
                    next_state = State(Position(x, y), p, state.destination)
                    model.add_transition(s, a, self.indexer.index(next_state), px * py * pp)

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
        a = int(action)
        parents = self.parents(state)
        values = self.values(next_state)

        changed = False
        for variable, counts in self.value_counts.items():
            was_known = self.factor_known(variable, a, parents[variable])
            counts.setdefault((a, parents[variable]), Counter())[values[variable]] += 1
            changed |= not was_known and self.factor_known(variable, a, parents[variable])

        key = (a, parents["reward"])
        was_known = self.factor_known("reward", a, parents["reward"])
        self.reward_counts[key] = self.reward_counts.get(key, 0) + 1
        self.reward_sums[key] = self.reward_sums.get(key, 0.0) + reward
        changed |= not was_known and self.factor_known("reward", a, parents["reward"])

        if changed:
            logger.debug("New factor known after %s in %s, replanning", action, state)
            self.planner.replan(self.build_model())
