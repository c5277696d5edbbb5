"""
World Module

This module provides the Costs and World classes that make up the taxi
domain: a deterministic grid MDP with walls, named pickup/dropoff locations
and a table of rewards.

The world is parsed from a box-drawing map where cell rows alternate with
wall rows:

    ┌───┬─────┐
    │R .│. . G│
    │   │     │
    │. .│. . .│
    │         │
    │. . . . .│
    │         │
    │.│. .│. .│
    │ │   │   │
    │Y│. .│B .│
    └─┴───┴───┘

    - Cell (x, y) sits at line 2y+1, column 2x+1: '.' is a plain cell and a
      letter or digit marks a named location.
    - The character right of a cell (column 2x+2) is the wall towards the
      east neighbour; a space means the way is open.
    - The character below a cell (line 2y+2) is the wall towards the south
      neighbour.
    - The grid edge is always a wall.

Transitions are a pure function of (state, action): the world itself is never
mutated after it has been built.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import numpy as np

from taxirl.errors import InvalidScenarioError, WorldParseError
from taxirl.log import get_logger
from taxirl.state import Action, MOVEMENT_ACTIONS, Position, State

logger = get_logger(__name__)

# Reward for a successful dropoff when none is configured explicitly.
DEFAULT_SUCCESSFUL_DROPOFF: float = 0.0

_CELL_CHAR = "."


@dataclass(frozen=True)
class Costs:
    """
    Rewards charged by the world.

    Attributes:
        movement: Reward of every movement action (blocked or not) and of a
            successful pickup.
        miss_pickup: Pickup attempted where the passenger is not waiting.
        miss_dropoff: Dropoff attempted with the passenger aboard but away
            from the destination.
        empty_dropoff: Dropoff attempted without the passenger aboard.
        successful_dropoff: Reward of the terminal dropoff. It has no
            natural default; when left unset it falls back to
            DEFAULT_SUCCESSFUL_DROPOFF and a warning is logged.
    """

    movement: float = -1.0
    miss_pickup: float = -10.0
    miss_dropoff: float = -10.0
    empty_dropoff: float = -11.0
    successful_dropoff: Optional[float] = None

    def __post_init__(self) -> None:
        if self.successful_dropoff is None:
            logger.warning(
                "No successful_dropoff reward configured, assuming %s",
                DEFAULT_SUCCESSFUL_DROPOFF,
            )
            object.__setattr__(self, "successful_dropoff", DEFAULT_SUCCESSFUL_DROPOFF)
        for f in fields(self):
            object.__setattr__(self, f.name, float(getattr(self, f.name)))

    def max_reward(self) -> float:
        return max(float(getattr(self, f.name)) for f in fields(self))


class World:
    """
    The taxi grid world.

    Attributes:
        width: Number of columns.
        height: Number of rows.
        costs: Reward table.
        locations: Mapping from location id to position, in map reading order.
        walls: Boolean array of shape (height, width, 4); ``walls[y, x, a]``
            is True if movement action ``a`` is blocked from cell (x, y).

    Example:
        >>> world = World.from_txt("configs/standard.txt", Costs(successful_dropoff=0.0))
        >>> state = world.build_state((2, 2), "Y", "R")
        >>> next_state, reward, done = world.step(state, Action.NORTH)
    """

    def __init__(
        self,
        lines: List[str],
        costs: Optional[Costs] = None,
    ) -> None:
        """
        Initialize the World from the lines of a map.

        Args:
            lines: Map lines, see the module docstring for the format.
            costs: Reward table. If None, the default Costs are used.

        Raises:
            WorldParseError: If the map is malformed, has fewer than two
                named locations, or has cells that cannot reach each other.
        """
        self._lines: List[str] = self._normalize_lines(lines)
        self.height: int = (len(self._lines) - 1) // 2
        self.width: int = (len(self._lines[0]) - 1) // 2
        self.costs: Costs = costs if costs is not None else Costs()

        self.locations: Dict[str, Position] = self._parse_locations()
        self._position_to_location: Dict[Position, str] = {
            pos: loc for loc, pos in self.locations.items()
        }
        self.walls: np.ndarray = self._parse_walls()

        self._validate_connected()

    @classmethod
    def from_str(cls, source: str, costs: Optional[Costs] = None) -> "World":
        """Build a World from map text."""
        return cls(source.split("\n"), costs=costs)

    @classmethod
    def from_txt(cls, path: str | Path, costs: Optional[Costs] = None) -> "World":
        """
        Load and build a World from a map file.

        Raises:
            FileNotFoundError: If the file does not exist.
            WorldParseError: If the file contains an invalid map.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"World file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            return cls.from_str(f.read(), costs=costs)

    @staticmethod
    def _normalize_lines(lines: List[str]) -> List[str]:
        lines = [line.rstrip("\r") for line in lines]
        while lines and lines[0] == "":
            lines.pop(0)
        while lines and lines[-1] == "":
            lines.pop()

        if len(lines) < 3 or len(lines) % 2 == 0:
            raise WorldParseError(
                f"Map must have an odd number of lines (at least 3), got {len(lines)}"
            )

        line_width = len(lines[0])
        if line_width < 3 or line_width % 2 == 0:
            raise WorldParseError(
                f"Map lines must have an odd width (at least 3), got {line_width}"
            )
        for i, line in enumerate(lines):
            if len(line) != line_width:
                raise WorldParseError(
                    f"Map line {i} has width {len(line)}, expected {line_width}"
                )
        return lines

    def _parse_locations(self) -> Dict[str, Position]:
        locations: Dict[str, Position] = {}
        for y in range(self.height):
            for x in range(self.width):
                char = self._lines[2 * y + 1][2 * x + 1]
                if char == _CELL_CHAR:
                    continue
                if not char.isalnum():
                    raise WorldParseError(
                        f"Invalid cell character '{char}' at position ({x},{y})"
                    )
                if char in locations:
                    raise WorldParseError(f"Location '{char}' appears more than once")
                locations[char] = Position(x, y)

        if len(locations) < 2:
            raise WorldParseError(
                f"World must have at least two named locations, found {len(locations)}"
            )
        return locations

    def _parse_walls(self) -> np.ndarray:
        walls = np.zeros((self.height, self.width, len(MOVEMENT_ACTIONS)), dtype=bool)

        for y in range(self.height):
            for x in range(self.width):
                east = x == self.width - 1 or self._lines[2 * y + 1][2 * x + 2] != " "
                south = y == self.height - 1 or self._lines[2 * y + 2][2 * x + 1] != " "
                walls[y, x, Action.EAST] = east
                walls[y, x, Action.SOUTH] = south
                if x + 1 < self.width:
                    walls[y, x + 1, Action.WEST] = east
                if y + 1 < self.height:
                    walls[y + 1, x, Action.NORTH] = south

        walls[:, 0, Action.WEST] = True
        walls[0, :, Action.NORTH] = True
        return walls

    def _validate_connected(self) -> None:
        """Check every cell can reach every other cell (movement is symmetric)."""
        start = Position(0, 0)
        seen = {start}
        frontier = deque([start])
        while frontier:
            pos = frontier.popleft()
            for action in MOVEMENT_ACTIONS:
                if not self.blocked(pos, action):
                    nxt = pos.moved(action)
                    if nxt not in seen:
                        seen.add(nxt)
                        frontier.append(nxt)

        if len(seen) != self.width * self.height:
            missing = [
                Position(x, y)
                for y in range(self.height)
                for x in range(self.width)
                if Position(x, y) not in seen
            ]
            raise WorldParseError(
                f"World is not connected, unreachable cells: {', '.join(map(str, missing))}"
            )

    def blocked(self, position: Position, action: Action) -> bool:
        """True if the movement action cannot leave the given cell."""
        return bool(self.walls[position.y, position.x, action])

    def in_bounds(self, position: Tuple[int, int]) -> bool:
        x, y = position
        return 0 <= x < self.width and 0 <= y < self.height

    def location_at(self, position: Position) -> Optional[str]:
        """The id of the named location at a cell, or None."""
        return self._position_to_location.get(position)

    def max_reward(self) -> float:
        """Largest reward the world can hand out (the R-max constant)."""
        return self.costs.max_reward()

    def build_state(
        self,
        taxi_pos: Tuple[int, int],
        passenger_loc: Optional[str],
        destination_loc: str,
    ) -> State:
        """
        Build and validate a state.

        Args:
            taxi_pos: (x, y) taxi coordinate.
            passenger_loc: Location id where the passenger waits, or None if
                the passenger is already in the taxi.
            destination_loc: Destination location id.

        Returns:
            The state.

        Raises:
            InvalidScenarioError: If the taxi is outside the grid or a
                location id is unknown.
        """
        if not self.in_bounds(taxi_pos):
            raise InvalidScenarioError(
                f"Taxi position ({taxi_pos[0]},{taxi_pos[1]}) is outside the "
                f"{self.width}x{self.height} grid"
            )
        if passenger_loc is not None and passenger_loc not in self.locations:
            raise InvalidScenarioError(f"Unknown passenger location '{passenger_loc}'")
        if destination_loc not in self.locations:
            raise InvalidScenarioError(f"Unknown destination location '{destination_loc}'")
        return State(Position(*taxi_pos), passenger_loc, destination_loc)

    def validate_start(self, state: State) -> State:
        """
        Check that a state can start an episode.

        Raises:
            InvalidScenarioError: If the state is not a valid episode start.
        """
        state = self.build_state(state.taxi, state.passenger, state.destination)
        if state.passenger is None:
            raise InvalidScenarioError(f"Passenger must wait at a location at episode start: {state}")
        if state.passenger == state.destination:
            raise InvalidScenarioError(
                f"Passenger location equals destination '{state.destination}' at episode start"
            )
        return state

    def reset(self, state: State) -> State:
        """Start an episode from the given state (validated)."""
        return self.validate_start(state)

    def random_state(self, rng: np.random.Generator) -> State:
        """
        Draw a uniformly random episode start.

        The taxi cell, the passenger location and a destination different
        from the passenger location are drawn in that order from ``rng``.
        """
        x = int(rng.integers(0, self.width))
        y = int(rng.integers(0, self.height))
        ids = list(self.locations)
        passenger = ids[int(rng.integers(0, len(ids)))]
        others = [loc for loc in ids if loc != passenger]
        destination = others[int(rng.integers(0, len(others)))]
        return State(Position(x, y), passenger, destination)

    def step(self, state: State, action: Action) -> Tuple[State, float, bool]:
        """
        Apply an action.

        Args:
            state: Current (non-terminal) state.
            action: Action to take.

        Returns:
            Tuple of (next_state, reward, done).

        Raises:
            InvalidScenarioError: If the state is already terminal.
        """
        if state.at_destination:
            raise InvalidScenarioError(f"Cannot act in terminal state {state}")

        action = Action(action)
        costs = self.costs

        if action.is_movement:
            if self.blocked(state.taxi, action):
                return state, costs.movement, False
            return state.with_taxi(state.taxi.moved(action)), costs.movement, False

        if action == Action.PICKUP:
            if not state.in_taxi and self.locations[state.passenger] == state.taxi:
                return state.with_passenger(None), costs.movement, False
            return state, costs.miss_pickup, False

        # Dropoff
        if not state.in_taxi:
            return state, costs.empty_dropoff, False
        if self.locations[state.destination] != state.taxi:
            return state, costs.miss_dropoff, False
        return state.with_passenger(state.destination), costs.successful_dropoff, True

    def display_strings(self) -> List[str]:
        """The map lines, as parsed."""
        return list(self._lines)

    def get_grid_string(self) -> str:
        return "\n".join(self._lines)

    def __repr__(self) -> str:
        return (
            f"World(width={self.width}, height={self.height}, "
            f"locations={''.join(self.locations)})"
        )

    def __str__(self) -> str:
        return self.get_grid_string()
