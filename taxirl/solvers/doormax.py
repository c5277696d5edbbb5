"""
DoorMax

Model-based exploration with deterministic object-oriented effects (Diuk,
Cohen & Littman, 2008). For every action and every state variable an
EffectLearner learns which effect the action has under which condition:

    taxi_x, taxi_y : shift the taxi by a number of cells, or no effect
    passenger      : move the passenger into the taxi, to the destination,
                     or no effect
    reward         : the reward value (only with use_reward_learner)

Conditions are boolean terms of the pre-state: a wall north / south / east /
west of the taxi, the taxi on the waiting passenger, the passenger in the
taxi and the taxi on the destination.

A (state, action) pair is modelled only if every variable's learner has an
applicable rule for the state's condition; otherwise it is optimistic (an
R-max self-loop). The plan is recomputed whenever a learner reports a change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np

from taxirl.log import get_logger
from taxirl.planning import DEFAULT_MAX_ITERATIONS, Planner, TabularModel, check_optimism
from taxirl.solvers.base import TabularSolver
from taxirl.solvers.rules import Condition, EffectLearner
from taxirl.state import Action, NUM_ACTIONS, Position, State
from taxirl.world import World

logger = get_logger(__name__)

CONDITION_TERMS: Tuple[str, ...] = (
    "wall_north",
    "wall_south",
    "wall_east",
    "wall_west",
    "on_passenger",
    "in_taxi",
    "on_destination",
)

STATE_VARIABLES: Tuple[str, ...] = ("taxi_x", "taxi_y", "passenger")

IN_TAXI = "taxi"
DESTINATION = "destination"


class NoEffect:
    """The action leaves the variable unchanged."""

    def apply(self, state: State) -> State:
        return state

    def __eq__(self, other: object) -> bool:
        return isinstance(other, NoEffect)

    def __hash__(self) -> int:
        return hash(NoEffect)

    def __repr__(self) -> str:
        return "NoEffect"


NO_EFFECT = NoEffect()


@dataclass(frozen=True)
class ShiftTaxi:
    """Moves the taxi by ``delta`` cells along one axis."""

    axis: str
    delta: int

    def apply(self, state: State) -> State:
        x, y = state.taxi
        if self.axis == "x":
            return state.with_taxi(Position(x + self.delta, y))
        return state.with_taxi(Position(x, y + self.delta))

    def __repr__(self) -> str:
        return f"{self.axis}{self.delta:+d}"


@dataclass(frozen=True)
class SetPassenger:
    """
    Sets the passenger variable.

    ``target`` is IN_TAXI, DESTINATION (the state's own destination) or a
    literal location id.
    """

    target: str

    def apply(self, state: State) -> State:
        if self.target == IN_TAXI:
            return state.with_passenger(None)
        if self.target == DESTINATION:
            return state.with_passenger(state.destination)
        return state.with_passenger(self.target)

    def __repr__(self) -> str:
        return f"passenger={self.target}"


def condition_of(world: World, state: State) -> Condition:
    """Boolean condition terms of a state, in CONDITION_TERMS order."""
    taxi = state.taxi
    on_passenger = not state.in_taxi and world.locations[state.passenger] == taxi
    return (
        world.blocked(taxi, Action.NORTH),
        world.blocked(taxi, Action.SOUTH),
        world.blocked(taxi, Action.EAST),
        world.blocked(taxi, Action.WEST),
        on_passenger,
        state.in_taxi,
        world.locations[state.destination] == taxi,
    )


def effect_of(variable: str, state: State, next_state: State):
    """The effect on one variable that turns state into next_state."""
    if variable == "taxi_x":
        delta = next_state.taxi.x - state.taxi.x
        return ShiftTaxi("x", delta) if delta else NO_EFFECT
    if variable == "taxi_y":
        delta = next_state.taxi.y - state.taxi.y
        return ShiftTaxi("y", delta) if delta else NO_EFFECT
    if variable == "passenger":
        if next_state.passenger == state.passenger:
            return NO_EFFECT
        if next_state.in_taxi:
            return SetPassenger(IN_TAXI)
        if next_state.passenger == state.destination:
            return SetPassenger(DESTINATION)
        return SetPassenger(next_state.passenger)
    raise ValueError(f"Unknown state variable '{variable}'")


class DoorMax(TabularSolver):
    """
    DoorMax solver.

    Attributes:
        known_count: Supporting observations before a rule is trusted.
        use_reward_learner: Learn rewards with effect rules instead of reading
            them from the world's cost table.
        learners: Mapping (action, variable) -> EffectLearner.
        planner: Current value-iteration plan.
    """

    name = "DoorMax"

    def __init__(
        self,
        world: World,
        gamma: float,
        known_count: int,
        error_delta: float,
        use_reward_learner: bool = True,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ) -> None:
        super().__init__(world)
        self.known_count = known_count
        self.use_reward_learner = use_reward_learner
        self.rmax = world.max_reward()
        check_optimism(gamma, self.rmax)

        self.variables: Tuple[str, ...] = STATE_VARIABLES + (
            ("reward",) if use_reward_learner else ()
        )
        self.learners: Dict[Tuple[Action, str], EffectLearner] = {
            (action, variable): EffectLearner(action, variable, known_count, CONDITION_TERMS)
            for action in Action
            for variable in self.variables
        }

        self._conditions: List[Optional[Condition]] = [
            None if state.at_destination else condition_of(world, state)
            for state in self.indexer.states
        ]

        self.planner = Planner(
            self.indexer.num_states, NUM_ACTIONS, gamma, error_delta, max_iterations
        )
        self.planner.replan(self.build_model())

    def _condition(self, state: State) -> Condition:
        condition = self._conditions[self.indexer.index(state)]
        if condition is None:
            return condition_of(self.world, state)
        return condition

    def predict(self, state: State, action: Action) -> Optional[State]:
        """
        Predicted successor of (state, action), or None if any variable is
        unmodeled.
        """
        condition = self._condition(state)
        next_state = state
        for variable in STATE_VARIABLES:
            effect = self.learners[(action, variable)].predict(condition)
            if effect is None:
                return None
            next_state = effect.apply(next_state)
        if not self.world.in_bounds(next_state.taxi):
            return None
        return next_state

    def predict_reward(self, state: State, action: Action) -> Optional[float]:
        """Learned reward (None if unmodeled), or the true reward without a reward learner."""
        if not self.use_reward_learner:
            return self.world.step(state, action)[1]
        return self.learners[(action, "reward")].predict(self._condition(state))

    def build_model(self) -> TabularModel:
        model = TabularModel(self.indexer.num_states, NUM_ACTIONS, self.terminal)
        for s, state in enumerate(self.indexer.states):
            if self.terminal[s]:
                continue
            for action in Action:
                next_state = self.predict(state, action)
                reward = self.predict_reward(state, action)
                if next_state is None or reward is None:
                    model.set_optimistic(s, action, self.rmax)
                    continue
                model.rewards[s, action] = reward
                model.add_transition(s, action, self.indexer.index(next_state))
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
        condition = self._condition(state)
        changed = False
        for variable in STATE_VARIABLES:
            outcome = effect_of(variable, state, next_state)
            changed |= self.learners[(action, variable)].observe(condition, outcome)
        if self.use_reward_learner:
            changed |= self.learners[(action, "reward")].observe(condition, float(reward))

        if changed:
            logger.debug("Rules changed after %s in %s, replanning", action, state)
            self.planner.replan(self.build_model())

    def describe(self) -> str:
        """Human-readable dump of every learned rule."""
        lines = []
        for variable in self.variables:
            lines.append(f"{variable}:")
            for action in Action:
                lines.append(f"  {self.learners[(action, variable)]}")
        return "\n".join(lines)
