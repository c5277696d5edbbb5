"""
State Module

Actions, positions and states of the taxi domain, plus the StateIndexer that
maps every state of a world onto a dense integer index for tabular solvers.

Coordinates are (x, y) with x growing to the east and y growing to the south,
so the north-west corner of the map is (0, 0).

The passenger is either waiting at one of the world's named locations (its
single-character id) or riding in the taxi, which is represented by None.
A state is terminal once the passenger has been dropped at the destination.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple, TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from taxirl.world import World


class Action(IntEnum):
    """
    The six taxi actions.

    The declaration order doubles as the fixed priority order used to break
    ties between equally valued actions, which keeps every solver
    reproducible.
    """

    NORTH = 0
    SOUTH = 1
    EAST = 2
    WEST = 3
    PICKUP = 4
    DROPOFF = 5

    @property
    def is_movement(self) -> bool:
        return self in MOVEMENT_ACTIONS

    def __str__(self) -> str:
        return self.name.capitalize()


MOVEMENT_ACTIONS: Tuple[Action, ...] = (Action.NORTH, Action.SOUTH, Action.EAST, Action.WEST)

NUM_ACTIONS: int = len(Action)

# Movement deltas: (delta_x, delta_y) for each movement action
ACTION_DELTAS: Dict[Action, Tuple[int, int]] = {
    Action.NORTH: (0, -1),
    Action.SOUTH: (0, 1),
    Action.EAST: (1, 0),
    Action.WEST: (-1, 0),
}


class Position(NamedTuple):
    """A cell of the grid."""

    x: int
    y: int

    def moved(self, action: Action) -> "Position":
        dx, dy = ACTION_DELTAS[action]
        return Position(self.x + dx, self.y + dy)

    def __str__(self) -> str:
        return f"({self.x},{self.y})"


@dataclass(frozen=True)
class State:
    """
    A taxi domain state.

    Attributes:
        taxi: Position of the taxi.
        passenger: Location id where the passenger waits, or None while the
            passenger is in the taxi.
        destination: Location id where the passenger wants to go.
    """

    taxi: Position
    passenger: Optional[str]
    destination: str

    @property
    def in_taxi(self) -> bool:
        return self.passenger is None

    @property
    def at_destination(self) -> bool:
        """True once the passenger has been delivered (terminal state)."""
        return self.passenger == self.destination

    def with_taxi(self, taxi: Position) -> "State":
        return State(taxi, self.passenger, self.destination)

    def with_passenger(self, passenger: Optional[str]) -> "State":
        return State(self.taxi, passenger, self.destination)

    def __str__(self) -> str:
        passenger = "taxi" if self.in_taxi else self.passenger
        return f"State(taxi={self.taxi}, passenger={passenger}, destination={self.destination})"


class StateIndexer:
    """
    Dense integer indexing of all states of a world.

    Every combination of taxi cell, passenger value (each location plus
    "in taxi") and destination gets an index, terminal states included, so
    value functions and models can be stored as numpy arrays.

    Attributes:
        num_states: Total number of indexed states.
        states: List of states, ``states[i]`` has index ``i``.

    Example:
        >>> indexer = StateIndexer(world)
        >>> s = indexer.index(state)
        >>> assert indexer.state(s) == state
    """

    def __init__(self, world: "World") -> None:
        self.width: int = world.width
        self.height: int = world.height
        self._locations: List[str] = list(world.locations)
        self._passenger_values: List[Optional[str]] = self._locations + [None]
        self._passenger_index: Dict[Optional[str], int] = {
            p: i for i, p in enumerate(self._passenger_values)
        }
        self._destination_index: Dict[str, int] = {
            d: i for i, d in enumerate(self._locations)
        }

        self.num_cells: int = self.width * self.height
        self.num_states: int = (
            self.num_cells * len(self._passenger_values) * len(self._locations)
        )

        self.states: List[State] = [self._decode(i) for i in range(self.num_states)]

    def index(self, state: State) -> int:
        """
        Get the index of a state.

        Raises:
            ValueError: If the state does not belong to the indexed world.
        """
        x, y = state.taxi
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ValueError(f"Taxi position {state.taxi} is outside the grid")
        try:
            p = self._passenger_index[state.passenger]
            d = self._destination_index[state.destination]
        except KeyError as exc:
            raise ValueError(f"Unknown location {exc.args[0]!r} in {state}") from None
        return ((d * len(self._passenger_values) + p) * self.height + y) * self.width + x

    def state(self, index: int) -> State:
        return self.states[index]

    def _decode(self, index: int) -> State:
        x = index % self.width
        rest = index // self.width
        y = rest % self.height
        rest //= self.height
        p = rest % len(self._passenger_values)
        d = rest // len(self._passenger_values)
        return State(Position(x, y), self._passenger_values[p], self._locations[d])

    def terminal_mask(self) -> np.ndarray:
        """Boolean array of shape (num_states,), True for delivered states."""
        return np.array([s.at_destination for s in self.states], dtype=bool)

    def __iter__(self) -> Iterator[State]:
        return iter(self.states)

    def __len__(self) -> int:
        return self.num_states
