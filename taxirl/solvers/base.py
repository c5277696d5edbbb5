"""
Solver interface shared by every variant.

A solver is created at the start of a session, sees every transition of every
trial in that session, and is discarded afterwards. The harness talks to it
only through this small interface:

    begin_trial(state)      -- a new episode starts
    select_action(state, rng) -- behaviour policy (may explore)
    observe(state, action, reward, next_state, done) -- learn from a step
    end_trial()             -- the episode ended (terminal, step cap or cancel)
    greedy_action(state)    -- evaluation policy, no exploration, no learning

Each solver carries a re-entrant lock; the harness holds it around updates
and evaluations so an assessment never interleaves with training steps of the
same solver.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from taxirl.state import Action, State, StateIndexer
from taxirl.world import World


class Solver(ABC):
    """Base class of all solvers."""

    name: str = "Solver"

    def __init__(self, world: World) -> None:
        self.world = world
        self.lock = threading.RLock()

    def begin_trial(self, state: State) -> None:
        """Called before the first action of a trial."""

    @abstractmethod
    def select_action(self, state: State, rng: np.random.Generator) -> Action:
        """Choose the next action to take while training."""

    def observe(
        self,
        state: State,
        action: Action,
        reward: float,
        next_state: State,
        done: bool,
    ) -> None:
        """Learn from one transition. Solvers that do not learn ignore it."""

    def end_trial(self) -> None:
        """Called once a trial has ended, whatever the reason."""

    @abstractmethod
    def greedy_action(self, state: State) -> Optional[Action]:
        """
        Action of the learned policy, without exploration.

        Returns None when the solver has no action to offer for the state;
        evaluation then stops.
        """

    def __repr__(self) -> str:
        return f"{type(self).__name__}(world={self.world!r})"


class TabularSolver(Solver):
    """A solver that stores its knowledge in arrays indexed by state."""

    def __init__(self, world: World) -> None:
        super().__init__(world)
        self.indexer = StateIndexer(world)
        self.terminal = self.indexer.terminal_mask()
