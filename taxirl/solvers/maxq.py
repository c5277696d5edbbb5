"""
MAXQ hierarchical Q-learning (Dietterich, 2000).

The taxi task is decomposed into a fixed hierarchy of subtasks:

    Root        -> Get, Put
    Get         -> Navigate(l) for every location l, Pickup
    Put         -> Dropoff, Navigate(l) for every location l
    Navigate(l) -> North, South, East, West

Q-values are decomposed as Q(i, s, a) = V(a, s) + C(i, s, a), where V of a
primitive action is its expected reward and V of a subtask is the best
Q-value among its eligible children. Completion values C are stored per
subtask over an abstraction of the state that keeps only what matters to
that subtask.

Training runs online through the ordinary select_action / observe contract:
an explicit stack of active subtasks replaces the recursion of the textbook
algorithm. When a child finishes, the completion value of its parent is
updated for every state the child visited, discounted by the number of steps
between that state and the child's termination.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Tuple, Union

import numpy as np

from taxirl.solvers.base import Solver
from taxirl.state import Action, MOVEMENT_ACTIONS, State
from taxirl.world import World


@dataclass(frozen=True)
class Subtask:
    """A compound node of the hierarchy."""

    kind: str
    target: Optional[str] = None

    def __str__(self) -> str:
        if self.target is None:
            return self.kind.capitalize()
        return f"{self.kind.capitalize()}({self.target})"


ROOT = Subtask("root")
GET = Subtask("get")
PUT = Subtask("put")

Node = Union[Subtask, Action]


@dataclass
class _Frame:
    node: Subtask
    visited: List[State] = field(default_factory=list)
    child: Optional[Node] = None


class MaxQ(Solver):
    """
    MAXQ-Q solver.

    Attributes:
        alpha: Learning rate of primitive and completion values.
        gamma: Discount factor.
        epsilon: Probability of picking a random eligible child.
        pseudo_reward: Value credited when a subtask terminates.
        initial_value: Optimistic starting value of every entry.
        children: Children of every subtask, in tie-breaking order.
    """

    name = "MaxQ"

    def __init__(
        self,
        world: World,
        alpha: float,
        gamma: float,
        epsilon: float,
        pseudo_reward: float = 0.0,
    ) -> None:
        super().__init__(world)
        self.alpha = alpha
        self.gamma = gamma
        self.epsilon = epsilon
        self.pseudo_reward = pseudo_reward

        max_reward = world.max_reward()
        self.initial_value = max_reward / (1.0 - gamma) if gamma < 1.0 else max_reward

        navigates = tuple(Subtask("navigate", loc) for loc in world.locations)
        self.children: Dict[Subtask, Tuple[Node, ...]] = {
            ROOT: (GET, PUT),
            GET: navigates + (Action.PICKUP,),
            PUT: (Action.DROPOFF,) + navigates,
        }
        for navigate in navigates:
            self.children[navigate] = MOVEMENT_ACTIONS

        self.primitive_values: Dict[Tuple[Action, State], float] = {}
        self.completions: Dict[Tuple[Subtask, Hashable, Node], float] = {}
        self._stack: List[_Frame] = []

    def terminal(self, subtask: Subtask, state: State) -> bool:
        if subtask.kind == "root":
            return state.at_destination
        if subtask.kind == "get":
            return state.in_taxi or state.at_destination
        if subtask.kind == "put":
            return not state.in_taxi
        return state.taxi == self.world.locations[subtask.target]

    @staticmethod
    def abstract(subtask: Subtask, state: State) -> Hashable:
        """The part of the state a subtask's completion values depend on."""
        if subtask.kind == "navigate":
            return state.taxi
        if subtask.kind == "get":
            return (state.taxi, state.passenger)
        if subtask.kind == "put":
            return (state.taxi, state.destination)
        return (state.passenger, state.destination)

    def eligible(self, subtask: Subtask, state: State) -> List[Node]:
        return [
            child
            for child in self.children[subtask]
            if isinstance(child, Action) or not self.terminal(child, state)
        ]

    def completion(self, subtask: Subtask, state: State, child: Node) -> float:
        return self.completions.get(
            (subtask, self.abstract(subtask, state), child), self.initial_value
        )

    def value(self, node: Node, state: State) -> float:
        """V(node, state): primitive reward estimate or best child Q-value."""
        if isinstance(node, Action):
            return self.primitive_values.get((node, state), self.initial_value)
        return max(self.q_value(node, state, child) for child in self.eligible(node, state))

    def q_value(self, subtask: Subtask, state: State, child: Node) -> float:
        return self.value(child, state) + self.completion(subtask, state, child)

    def _best_child(self, subtask: Subtask, state: State) -> Node:
        children = self.eligible(subtask, state)
        q = [self.q_value(subtask, state, child) for child in children]
        return children[int(np.argmax(q))]

    def _choose(self, subtask: Subtask, state: State, rng: np.random.Generator) -> Node:
        if rng.random() < self.epsilon:
            children = self.eligible(subtask, state)
            return children[int(rng.integers(0, len(children)))]
        return self._best_child(subtask, state)

    def _update_completion(
        self,
        subtask: Subtask,
        visited: List[State],
        child: Node,
        result: State,
    ) -> None:
        if self.terminal(subtask, result):
            target = self.pseudo_reward
        else:
            target = self.q_value(subtask, result, self._best_child(subtask, result))

        discount = self.gamma
        for state in reversed(visited):
            key = (subtask, self.abstract(subtask, state), child)
            old = self.completions.get(key, self.initial_value)
            self.completions[key] = (1.0 - self.alpha) * old + self.alpha * discount * target
            discount *= self.gamma

    def _unwind(self, state: State) -> None:
        """Pop every finished subtask and credit its parent."""
        while self._stack and self.terminal(self._stack[-1].node, state):
            finished = self._stack.pop()
            if self._stack:
                parent = self._stack[-1]
                self._update_completion(parent.node, finished.visited, finished.node, state)
                parent.child = None

    def begin_trial(self, state: State) -> None:
        self._stack = []

    def end_trial(self) -> None:
        self._stack = []

    def select_action(self, state: State, rng: np.random.Generator) -> Action:
        if not self._stack:
            self._stack.append(_Frame(ROOT))

        frame = self._stack[-1]
        while True:
            child = self._choose(frame.node, state, rng)
            frame.child = child
            if isinstance(child, Action):
                return child
            frame = _Frame(child)
            self._stack.append(frame)

    def observe(
        self,
        state: State,
        action: Action,
        reward: float,
        next_state: State,
        done: bool,
    ) -> None:
        key = (action, state)
        old = self.primitive_values.get(key, self.initial_value)
        self.primitive_values[key] = (1.0 - self.alpha) * old + self.alpha * reward

        if not self._stack:
            return
        for frame in self._stack:
            frame.visited.append(state)

        top = self._stack[-1]
        self._update_completion(top.node, [state], action, next_state)
        top.child = None
        self._unwind(next_state)

    def greedy_action(self, state: State) -> Optional[Action]:
        """Hierarchically greedy action, re-evaluated from the root every step."""
        if self.terminal(ROOT, state):
            return None
        node: Node = ROOT
        while not isinstance(node, Action):
            node = self._best_child(node, state)
        return node

    def active_subtasks(self) -> List[Subtask]:
        """The current subtask stack, root first."""
        return [frame.node for frame in self._stack]
