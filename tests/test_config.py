"""
Unit Tests for Configuration Loading and Saving
"""

import logging
from pathlib import Path

import pytest

from taxirl.config import (
    STANDARD_PROBES,
    Configuration,
    DoorMaxSettings,
    FactoredRMaxSettings,
    ProbeConfig,
    QLearnerSettings,
    RMaxSettings,
    ReplayConfig,
    load_config,
    standard_configuration,
)
from taxirl.errors import ConfigurationError, InvalidScenarioError
from taxirl.runner import session_seeds
from taxirl.solvers import SolverKind
from taxirl.state import Position

CONFIGS = Path(__file__).parent.parent / "configs"


class TestConfiguration:
    """Tests for the Configuration dataclass."""

    def test_defaults(self):
        config = Configuration()

        assert config.sessions == 20
        assert config.max_trials == 100
        assert config.max_trial_steps == 200
        assert config.probe_interval == 1
        assert list(config.solvers) == [SolverKind.DOOR_MAX]
        assert config.solvers[SolverKind.DOOR_MAX] == DoorMaxSettings()
        assert config.replay is None

    def test_default_world_is_standard(self):
        world = Configuration(costs={"successful_dropoff": 0.0}).build_world()
        assert (world.width, world.height) == (5, 5)
        assert world.locations == {
            "R": Position(0, 0),
            "G": Position(4, 0),
            "Y": Position(0, 4),
            "B": Position(3, 4),
        }

    @pytest.mark.parametrize("name", ["sessions", "max_trials", "max_trial_steps", "probe_interval"])
    def test_non_positive_counts_rejected(self, name):
        with pytest.raises(ConfigurationError, match=name):
            Configuration(**{name: 0})

    def test_negative_root_seed_rejected(self):
        with pytest.raises(ConfigurationError, match="root_seed"):
            Configuration(root_seed=-1)

    def test_invalid_costs(self):
        config = Configuration(costs={"movement": "fast"})
        with pytest.raises(ConfigurationError, match="costs"):
            config.build_costs()

    def test_missing_successful_dropoff_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="taxirl"):
            world = Configuration().build_world()

        assert world.costs.successful_dropoff == 0.0
        assert "successful_dropoff" in caplog.text

    def test_seeds_from_root_seed(self):
        config = Configuration(sessions=4, root_seed=99)
        assert config.seeds() == session_seeds(99, 4)

    def test_rerun_seeds_override(self):
        config = Configuration(sessions=4, root_seed=99, rerun_seeds=[5, 7])
        assert config.seeds() == [5, 7]

    def test_probe_scenarios_validated(self, standard_world):
        config = Configuration(probes=[ProbeConfig((1, 1), "R", "R", 10)])
        with pytest.raises(InvalidScenarioError):
            config.build_probes(standard_world)

    def test_check_solvers_rejects_undiscounted_bonus(self, rewarding_world):
        config = Configuration(solvers={SolverKind.R_MAX: RMaxSettings(gamma=1.0)})
        with pytest.raises(ConfigurationError, match="RMax: gamma must be below 1"):
            config.check_solvers(rewarding_world)

    def test_check_solvers_accepts_discounted_bonus(self, rewarding_world, standard_world):
        Configuration(solvers={SolverKind.R_MAX: RMaxSettings(gamma=0.95)}).check_solvers(rewarding_world)
        Configuration(solvers={SolverKind.R_MAX: RMaxSettings(gamma=1.0)}).check_solvers(standard_world)

    def test_replay_scenario(self, standard_world):
        config = Configuration(replay=ReplayConfig("RMax", [2, 2], "Y", "R", 50))
        scenario = config.build_replay(standard_world)

        assert scenario.kind == SolverKind.R_MAX
        assert scenario.state.taxi == Position(2, 2)
        assert scenario.max_steps == 50


class TestFromDict:
    """Tests for building a configuration from plain values."""

    def test_solver_settings(self):
        config = Configuration.from_dict(
            {
                "solvers": {
                    "QLearner": {"alpha": 0.5},
                    "FactoredRMax": {"report": False, "variable_known_counts": {"taxi_x": 2}},
                }
            }
        )

        assert config.solvers[SolverKind.Q_LEARNER] == QLearnerSettings(alpha=0.5)
        assert config.solvers[SolverKind.FACTORED_R_MAX] == FactoredRMaxSettings(
            report=False, variable_known_counts={"taxi_x": 2}
        )

    def test_empty_solvers_section(self):
        assert Configuration.from_dict({"solvers": None}).solvers == {}

    def test_probes_normalized(self):
        config = Configuration.from_dict(
            {"probes": [{"taxi": [2, 2], "passenger": "Y", "destination": "R", "max_steps": 10}]}
        )
        assert config.probes == [ProbeConfig((2, 2), "Y", "R", 10)]

    def test_unknown_key(self):
        with pytest.raises(ConfigurationError, match="trials"):
            Configuration.from_dict({"trials": 10})

    def test_unknown_solver(self):
        with pytest.raises(ConfigurationError, match="Unknown solver 'SARSA'"):
            Configuration.from_dict({"solvers": {"SARSA": {}}})

    def test_unknown_setting(self):
        with pytest.raises(ConfigurationError, match="temperature"):
            Configuration.from_dict({"solvers": {"QLearner": {"temperature": 1.0}}})

    def test_unknown_cost(self):
        with pytest.raises(ConfigurationError, match="fuel"):
            Configuration.from_dict({"costs": {"fuel": -1}})

    @pytest.mark.parametrize(
        "solver, values, message",
        [
            ("DoorMax", {"known_count": 0}, "known_count must be a positive integer"),
            ("RMax", {"gamma": 1.5}, r"gamma must be in \[0, 1\]"),
            ("QLearner", {"epsilon": 2}, r"epsilon must be in \[0, 1\]"),
            ("QLearner", {"alpha": 0}, r"alpha must be in \(0, 1\]"),
            ("FactoredRMax", {"error_delta": 0}, "error_delta must be positive"),
            ("FactoredRMax", {"variable_known_counts": {"fuel": 2}}, "Unknown variable 'fuel'"),
            ("FactoredRMax", {"variable_known_counts": {"reward": 0}}, "known_count of reward"),
            ("MaxQ", {"gamma": "high"}, "gamma must be a number"),
            ("DoorMax", {"max_iterations": 2.5}, "max_iterations must be a positive integer"),
            ("Random", {"report": "yes"}, "report must be true or false"),
        ],
    )
    def test_out_of_range_settings(self, solver, values, message):
        with pytest.raises(ConfigurationError, match=message):
            Configuration.from_dict({"solvers": {solver: values}})

    def test_probe_missing_field(self):
        with pytest.raises(ConfigurationError, match="probe"):
            Configuration.from_dict({"probes": [{"taxi": [0, 0], "passenger": "Y", "destination": "R"}]})

    def test_replay_unknown_solver(self):
        replay = {"solver": "SARSA", "taxi": [0, 0], "passenger": "Y", "destination": "R", "max_steps": 5}
        with pytest.raises(ConfigurationError):
            Configuration.from_dict({"replay": replay})

    def test_invalid_value(self):
        with pytest.raises(ConfigurationError, match="sessions"):
            Configuration.from_dict({"sessions": 0})

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError, match="mapping"):
            Configuration.from_dict([1, 2])


class TestYaml:
    """Tests for YAML files."""

    def test_standard_file(self):
        config = Configuration.from_yaml(CONFIGS / "standard.yaml")
        world = config.build_world()

        assert Path(config.world_file) == CONFIGS / "standard.txt"
        assert (world.width, world.height) == (5, 5)
        assert len(config.build_probes(world)) == 6
        assert config.build_replay(world).kind == SolverKind.DOOR_MAX
        assert set(config.solvers) == set(SolverKind) - {SolverKind.RANDOM}
        assert [kind for kind, settings in config.solvers.items() if settings.report] == [SolverKind.DOOR_MAX]

    def test_round_trip(self, tmp_path):
        config = standard_configuration()
        config.root_seed = 3
        config.solvers[SolverKind.FACTORED_R_MAX] = FactoredRMaxSettings(variable_known_counts={"reward": 2})
        path = tmp_path / "nested" / "run.yaml"

        config.save(path)
        loaded = Configuration.from_yaml(path)

        assert loaded == config

    def test_relative_world_file(self, tmp_path):
        (tmp_path / "maps").mkdir()
        (tmp_path / "maps" / "standard.txt").write_text(
            (CONFIGS / "standard.txt").read_text(encoding="utf-8"), encoding="utf-8"
        )
        (tmp_path / "run.yaml").write_text(
            "world_file: maps/standard.txt\ncosts: {successful_dropoff: 0}\n", encoding="utf-8"
        )

        world = Configuration.from_yaml(tmp_path / "run.yaml").build_world()
        assert len(world.locations) == 4

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert Configuration.from_yaml(path) == Configuration()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("sessions: [1, 2\n", encoding="utf-8")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            Configuration.from_yaml(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Configuration.from_yaml(tmp_path / "missing.yaml")


class TestStandardConfiguration:
    """Tests for the built-in configuration."""

    def test_standard_configuration(self):
        config = load_config()
        world = config.build_world()
        probes = config.build_probes(world)

        assert config.costs["successful_dropoff"] == 0.0
        assert [p.max_steps for p in probes] == [p.max_steps for p in STANDARD_PROBES]
        assert probes[0].state == world.build_state((2, 2), "Y", "R")
        assert config.build_replay(world).max_steps == 1000

    def test_probes_are_copies(self):
        config = standard_configuration()
        config.probes[0].max_steps = 1
        assert STANDARD_PROBES[0].max_steps == 10
