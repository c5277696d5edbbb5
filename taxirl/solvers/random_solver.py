"""Uniformly random baseline solver."""

from __future__ import annotations

from typing import Optional

import numpy as np

from taxirl.solvers.base import Solver
from taxirl.state import Action, NUM_ACTIONS, State


class RandomSolver(Solver):
    """
    Picks every action uniformly at random and never learns.

    Useful as a null baseline and to check the harness plumbing. Its greedy
    policy is undefined, so probes always fail for it.
    """

    name = "Random"

    def select_action(self, state: State, rng: np.random.Generator) -> Action:
        return Action(int(rng.integers(0, NUM_ACTIONS)))

    def greedy_action(self, state: State) -> Optional[Action]:
        return None
