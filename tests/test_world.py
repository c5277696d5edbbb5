"""
Unit Tests for World

Tests map parsing and validation, walls, the cost table, the transition
function and start-state handling.
"""

import logging

import numpy as np
import pytest

from taxirl.errors import InvalidScenarioError, WorldParseError
from taxirl.state import Action, Position, State
from taxirl.world import DEFAULT_SUCCESSFUL_DROPOFF, Costs, World


class TestWorldParsing:
    """Tests for map parsing and validation."""

    def test_parse_standard_map(self, standard_world):
        assert standard_world.width == 5
        assert standard_world.height == 5
        assert standard_world.locations == {
            "R": Position(0, 0),
            "G": Position(4, 0),
            "Y": Position(0, 4),
            "B": Position(3, 4),
        }
        assert list(standard_world.locations) == ["R", "G", "Y", "B"]

    def test_from_txt(self, tmp_path, costs):
        path = tmp_path / "bench.txt"
        path.write_text("┌───┐\n│R G│\n└───┘\n", encoding="utf-8")

        world = World.from_txt(path, costs)

        assert world.width == 2
        assert world.height == 1
        assert world.location_at(Position(1, 0)) == "G"

    def test_file_not_found(self):
        with pytest.raises(FileNotFoundError):
            World.from_txt("nonexistent_map.txt")

    def test_even_line_count_error(self, costs):
        with pytest.raises(WorldParseError, match="odd number of lines"):
            World.from_str("┌───┐\n│R G│", costs)

    def test_ragged_lines_error(self, costs):
        with pytest.raises(WorldParseError, match="line 1 has width 4, expected 5"):
            World.from_str("┌───┐\n│R G\n└───┘", costs)

    def test_even_width_error(self, costs):
        with pytest.raises(WorldParseError, match="odd width"):
            World.from_str("┌──┐\n│RG│\n└──┘", costs)

    def test_duplicate_location_error(self, costs):
        with pytest.raises(WorldParseError, match="more than once"):
            World.from_str("┌───┐\n│R R│\n└───┘", costs)

    def test_too_few_locations_error(self, costs):
        with pytest.raises(WorldParseError, match="at least two"):
            World.from_str("┌───┐\n│R .│\n└───┘", costs)

    def test_invalid_character_error(self, costs):
        with pytest.raises(WorldParseError, match="Invalid cell character"):
            World.from_str("┌─────┐\n│R # G│\n└─────┘", costs)

    def test_disconnected_world_error(self, costs):
        with pytest.raises(WorldParseError, match="not connected"):
            World.from_str("┌───┐\n│R│G│\n└─┴─┘", costs)

    def test_display_strings_reproduce_map(self, standard_world):
        from taxirl.config import STANDARD_MAP

        assert standard_world.display_strings() == STANDARD_MAP.split("\n")
        assert str(standard_world) == STANDARD_MAP


class TestWalls:
    """Tests for the wall predicate."""

    def test_internal_walls(self, standard_world):
        assert standard_world.blocked(Position(1, 0), Action.EAST)
        assert standard_world.blocked(Position(2, 0), Action.WEST)
        assert standard_world.blocked(Position(0, 3), Action.EAST)
        assert standard_world.blocked(Position(3, 4), Action.WEST)

    def test_edges_are_walls(self, standard_world):
        assert standard_world.blocked(Position(0, 0), Action.NORTH)
        assert standard_world.blocked(Position(0, 0), Action.WEST)
        assert standard_world.blocked(Position(4, 4), Action.SOUTH)
        assert standard_world.blocked(Position(4, 4), Action.EAST)

    def test_open_cells(self, standard_world):
        assert not standard_world.blocked(Position(2, 2), Action.EAST)
        assert not standard_world.blocked(Position(0, 3), Action.SOUTH)

    def test_walls_symmetric(self, standard_world):
        walls = standard_world.walls
        assert np.array_equal(walls[:, :-1, Action.EAST], walls[:, 1:, Action.WEST])
        assert np.array_equal(walls[:-1, :, Action.SOUTH], walls[1:, :, Action.NORTH])


class TestCosts:
    """Tests for the reward table."""

    def test_defaults(self, costs):
        assert costs.movement == -1.0
        assert costs.miss_pickup == -10.0
        assert costs.miss_dropoff == -10.0
        assert costs.empty_dropoff == -11.0
        assert costs.successful_dropoff == 0.0

    def test_missing_successful_dropoff_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="taxirl"):
            costs = Costs()

        assert costs.successful_dropoff == DEFAULT_SUCCESSFUL_DROPOFF
        assert "successful_dropoff" in caplog.text

    def test_max_reward(self):
        assert Costs(successful_dropoff=20).max_reward() == 20.0
        assert Costs(successful_dropoff=-5).max_reward() == -1.0


class TestStep:
    """Tests for the transition function."""

    def test_move(self, standard_world):
        state = State(Position(2, 2), "Y", "R")
        next_state, reward, done = standard_world.step(state, Action.NORTH)
        assert next_state == State(Position(2, 1), "Y", "R")
        assert reward == -1.0
        assert not done

    def test_move_into_wall(self, standard_world):
        state = State(Position(1, 0), "Y", "R")
        next_state, reward, done = standard_world.step(state, Action.EAST)
        assert next_state == state
        assert reward == -1.0
        assert not done

    def test_move_off_edge(self, standard_world):
        state = State(Position(0, 0), "Y", "R")
        next_state, reward, _ = standard_world.step(state, Action.NORTH)
        assert next_state == state
        assert reward == -1.0

    def test_pickup(self, standard_world):
        state = State(Position(0, 4), "Y", "R")
        next_state, reward, done = standard_world.step(state, Action.PICKUP)
        assert next_state.in_taxi
        assert next_state.taxi == Position(0, 4)
        assert reward == -1.0
        assert not done

    def test_pickup_away_from_passenger(self, standard_world):
        state = State(Position(1, 4), "Y", "R")
        next_state, reward, _ = standard_world.step(state, Action.PICKUP)
        assert next_state == state
        assert reward == -10.0

    def test_pickup_when_carrying(self, standard_world):
        state = State(Position(0, 4), None, "R")
        next_state, reward, _ = standard_world.step(state, Action.PICKUP)
        assert next_state == state
        assert reward == -10.0

    def test_empty_dropoff(self, standard_world):
        state = State(Position(0, 0), "Y", "R")
        next_state, reward, done = standard_world.step(state, Action.DROPOFF)
        assert next_state == state
        assert reward == -11.0
        assert not done

    def test_dropoff_away_from_destination(self, standard_world):
        state = State(Position(0, 4), None, "R")
        next_state, reward, done = standard_world.step(state, Action.DROPOFF)
        assert next_state == state
        assert reward == -10.0
        assert not done

    def test_successful_dropoff(self, standard_world):
        state = State(Position(0, 0), None, "R")
        next_state, reward, done = standard_world.step(state, Action.DROPOFF)
        assert next_state == State(Position(0, 0), "R", "R")
        assert next_state.at_destination
        assert reward == 0.0
        assert done

    def test_successful_dropoff_reward_configurable(self):
        from taxirl.config import STANDARD_MAP

        world = World.from_str(STANDARD_MAP, Costs(successful_dropoff=20.0))
        _, reward, done = world.step(State(Position(3, 4), None, "B"), Action.DROPOFF)
        assert reward == 20.0
        assert done

    def test_step_is_pure(self, standard_world):
        state = State(Position(2, 2), "Y", "R")
        results = [standard_world.step(state, action) for action in Action]
        again = [standard_world.step(state, action) for action in Action]
        assert results == again
        assert state == State(Position(2, 2), "Y", "R")

    def test_terminal_state_error(self, standard_world):
        with pytest.raises(InvalidScenarioError, match="terminal"):
            standard_world.step(State(Position(0, 0), "R", "R"), Action.NORTH)


class TestStartStates:
    """Tests for building, validating and drawing start states."""

    def test_build_state(self, standard_world):
        state = standard_world.build_state((2, 2), "Y", "R")
        assert state == State(Position(2, 2), "Y", "R")

    def test_build_state_outside_grid(self, standard_world):
        with pytest.raises(InvalidScenarioError, match="outside"):
            standard_world.build_state((5, 2), "Y", "R")

    def test_build_state_unknown_location(self, standard_world):
        with pytest.raises(InvalidScenarioError, match="Unknown destination"):
            standard_world.build_state((2, 2), "Y", "Q")

    def test_reset_rejects_delivered_passenger(self, standard_world):
        with pytest.raises(InvalidScenarioError, match="equals destination"):
            standard_world.reset(State(Position(2, 2), "R", "R"))

    def test_reset_rejects_passenger_in_taxi(self, standard_world):
        with pytest.raises(InvalidScenarioError, match="must wait"):
            standard_world.reset(State(Position(2, 2), None, "R"))

    def test_random_states_valid(self, standard_world):
        rng = np.random.default_rng(0)
        for _ in range(200):
            state = standard_world.random_state(rng)
            assert standard_world.reset(state) == state

    def test_random_states_reproducible(self, standard_world):
        first = [standard_world.random_state(np.random.default_rng(7)) for _ in range(3)]
        rng_a = np.random.default_rng(7)
        rng_b = np.random.default_rng(7)
        a = [standard_world.random_state(rng_a) for _ in range(50)]
        b = [standard_world.random_state(rng_b) for _ in range(50)]
        assert a == b
        assert first[0] == first[1] == first[2] == a[0]
