"""
Configuration Module

Dataclass configuration of a taxirl run, loaded from and saved to YAML.

Example config:

    world_file: standard.txt        # relative to the YAML file
    costs:
      movement: -1
      miss_pickup: -10
      miss_dropoff: -10
      empty_dropoff: -11
      successful_dropoff: 0
    sessions: 20
    max_trials: 100
    max_trial_steps: 200
    root_seed: 1234
    solvers:
      DoorMax:
        gamma: 0.95
        known_count: 1
        error_delta: 1.0e-6
        use_reward_learner: true
    probes:
      - {taxi: [2, 2], passenger: Y, destination: R, max_steps: 10}
    replay: {solver: DoorMax, taxi: [2, 2], passenger: Y, destination: R, max_steps: 1000}

Without ``world_file`` or ``world_map`` the standard 5x5 map is used.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Type

import yaml

from taxirl.errors import ConfigurationError
from taxirl.log import get_logger
from taxirl.planning import DEFAULT_MAX_ITERATIONS, check_optimism
from taxirl.runner import Probe, Replay, session_seeds
from taxirl.solvers import SolverKind
from taxirl.solvers.factored_rmax import VARIABLES as FACTORED_VARIABLES
from taxirl.world import Costs, World

logger = get_logger(__name__)

STANDARD_MAP = """\
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
└─┴───┴───┘"""


def _check_range(
    settings: "SolverSettings", name: str, low: float, high: float, low_open: bool = False
) -> None:
    value = getattr(settings, name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")
    if value > high or value < low or (low_open and value == low):
        bracket = "(" if low_open else "["
        raise ConfigurationError(f"{name} must be in {bracket}{low:g}, {high:g}], got {value!r}")


def _check_positive(settings: "SolverSettings", name: str, integer: bool = False) -> None:
    value = getattr(settings, name)
    valid_type = int if integer else (int, float)
    if isinstance(value, bool) or not isinstance(value, valid_type) or value <= 0:
        kind = "a positive integer" if integer else "positive"
        raise ConfigurationError(f"{name} must be {kind}, got {value!r}")


@dataclass
class SolverSettings:
    """Settings shared by every solver: whether it is reported by the CLI."""

    report: bool = True

    def __post_init__(self) -> None:
        if not isinstance(self.report, bool):
            raise ConfigurationError(f"report must be true or false, got {self.report!r}")


@dataclass
class RandomSettings(SolverSettings):
    pass


@dataclass
class QLearnerSettings(SolverSettings):
    alpha: float = 0.1
    gamma: float = 0.3
    epsilon: float = 0.6

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_range(self, "alpha", 0.0, 1.0, low_open=True)
        _check_range(self, "gamma", 0.0, 1.0)
        _check_range(self, "epsilon", 0.0, 1.0)


@dataclass
class PlanningSettings(SolverSettings):
    """Settings of the solvers that plan by value iteration over a learned model."""

    gamma: float = 0.95
    known_count: int = 1
    error_delta: float = 1e-6
    max_iterations: int = DEFAULT_MAX_ITERATIONS

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_range(self, "gamma", 0.0, 1.0)
        _check_positive(self, "known_count", integer=True)
        _check_positive(self, "error_delta")
        _check_positive(self, "max_iterations", integer=True)


@dataclass
class RMaxSettings(PlanningSettings):
    gamma: float = 1.0


@dataclass
class FactoredRMaxSettings(PlanningSettings):
    gamma: float = 0.3
    # Per-variable override of known_count (taxi_x, taxi_y, passenger, reward)
    variable_known_counts: Optional[Dict[str, int]] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        overrides = self.variable_known_counts or {}
        if not isinstance(overrides, dict):
            raise ConfigurationError("variable_known_counts must be a mapping of variable to count")
        for variable, count in overrides.items():
            if variable not in FACTORED_VARIABLES:
                raise ConfigurationError(
                    f"Unknown variable '{variable}' in variable_known_counts, "
                    f"expected one of: {', '.join(FACTORED_VARIABLES)}"
                )
            if isinstance(count, bool) or not isinstance(count, int) or count < 1:
                raise ConfigurationError(
                    f"known_count of {variable} must be a positive integer, got {count!r}"
                )


@dataclass
class DoorMaxSettings(PlanningSettings):
    gamma: float = 0.95
    use_reward_learner: bool = True

    def __post_init__(self) -> None:
        super().__post_init__()
        if not isinstance(self.use_reward_learner, bool):
            raise ConfigurationError(
                f"use_reward_learner must be true or false, got {self.use_reward_learner!r}"
            )


@dataclass
class MaxQSettings(SolverSettings):
    alpha: float = 0.1
    gamma: float = 0.9
    epsilon: float = 0.0
    pseudo_reward: float = 0.0

    def __post_init__(self) -> None:
        super().__post_init__()
        _check_range(self, "alpha", 0.0, 1.0, low_open=True)
        _check_range(self, "gamma", 0.0, 1.0)
        _check_range(self, "epsilon", 0.0, 1.0)


SETTINGS_TYPES: Dict[SolverKind, Type[SolverSettings]] = {
    SolverKind.RANDOM: RandomSettings,
    SolverKind.Q_LEARNER: QLearnerSettings,
    SolverKind.R_MAX: RMaxSettings,
    SolverKind.FACTORED_R_MAX: FactoredRMaxSettings,
    SolverKind.DOOR_MAX: DoorMaxSettings,
    SolverKind.MAX_Q: MaxQSettings,
}


@dataclass
class ProbeConfig:
    """A probe scenario as written in a configuration file."""

    taxi: Tuple[int, int]
    passenger: str
    destination: str
    max_steps: int

    def __post_init__(self) -> None:
        self.taxi = tuple(self.taxi)

    def to_probe(self, world: World) -> Probe:
        state = world.validate_start(world.build_state(tuple(self.taxi), self.passenger, self.destination))
        return Probe(state, int(self.max_steps))


@dataclass
class ReplayConfig:
    """A replay scenario as written in a configuration file."""

    solver: str
    taxi: Tuple[int, int]
    passenger: str
    destination: str
    max_steps: int

    def __post_init__(self) -> None:
        self.taxi = tuple(self.taxi)

    def to_replay(self, world: World) -> Replay:
        state = world.validate_start(world.build_state(tuple(self.taxi), self.passenger, self.destination))
        return Replay(SolverKind(self.solver), state, int(self.max_steps))


def _settings_from_dict(kind: SolverKind, values: Optional[Dict[str, Any]]) -> SolverSettings:
    settings_type = SETTINGS_TYPES[kind]
    values = dict(values or {})
    known = {f.name for f in fields(settings_type)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown settings for {kind}: {', '.join(unknown)}")
    return settings_type(**values)


def _check_keys(section: str, values: Dict[str, Any], allowed: List[str]) -> None:
    unknown = sorted(set(values) - set(allowed))
    if unknown:
        raise ConfigurationError(f"Unknown keys in {section}: {', '.join(unknown)}")


@dataclass
class Configuration:
    """
    Complete configuration of a run.

    Attributes:
        world_map: Map text, used when no world_file is given.
        world_file: Path of a map file.
        costs: Reward table overrides (keys of taxirl.world.Costs).
        sessions: Number of independent sessions per solver.
        max_trials: Trials per session.
        max_trial_steps: Step cap of every trial.
        root_seed: Root of the session seeds; None draws fresh entropy.
        rerun_seeds: Explicit session seeds. When set, they replace the
            seeds derived from root_seed, to reproduce specific sessions.
        probe_interval: Trials between probe evaluations.
        stop_when_solved: End a session as soon as every probe passes.
        solvers: Settings of every solver to run.
        probes: Probe scenarios.
        replay: Optional replay scenario.
    """

    world_map: str = STANDARD_MAP
    world_file: Optional[str] = None
    costs: Dict[str, float] = field(default_factory=dict)

    sessions: int = 20
    max_trials: int = 100
    max_trial_steps: int = 200
    root_seed: Optional[int] = None
    rerun_seeds: List[int] = field(default_factory=list)
    probe_interval: int = 1
    stop_when_solved: bool = False

    solvers: Dict[SolverKind, SolverSettings] = field(
        default_factory=lambda: {SolverKind.DOOR_MAX: DoorMaxSettings()}
    )
    probes: List[ProbeConfig] = field(default_factory=list)
    replay: Optional[ReplayConfig] = None

    def __post_init__(self) -> None:
        for name in ("sessions", "max_trials", "max_trial_steps", "probe_interval"):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
        if self.root_seed is not None and (not isinstance(self.root_seed, int) or self.root_seed < 0):
            raise ConfigurationError(f"root_seed must be a non-negative integer, got {self.root_seed!r}")

    def build_costs(self) -> Costs:
        try:
            return Costs(**self.costs)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid costs {self.costs}: {exc}") from None

    def build_world(self) -> World:
        """Build the world from world_file (if set) or world_map."""
        costs = self.build_costs()
        if self.world_file is not None:
            return World.from_txt(self.world_file, costs)
        return World.from_str(self.world_map, costs)

    def build_probes(self, world: World) -> List[Probe]:
        return [probe.to_probe(world) for probe in self.probes]

    def build_replay(self, world: World) -> Optional[Replay]:
        return self.replay.to_replay(world) if self.replay is not None else None

    def check_solvers(self, world: World) -> None:
        """
        Check the solver settings against the world's rewards.

        Raises:
            ConfigurationError: If a model-based solver would plan without
                discounting while unknown pairs promise a positive reward.
        """
        rmax = world.max_reward()
        for kind, settings in self.solvers.items():
            if isinstance(settings, PlanningSettings):
                try:
                    check_optimism(settings.gamma, rmax)
                except ValueError as exc:
                    raise ConfigurationError(f"{kind}: {exc}") from None

    def seeds(self) -> List[int]:
        """Session seeds: rerun_seeds if given, else derived from root_seed."""
        if self.rerun_seeds:
            return [int(seed) for seed in self.rerun_seeds]
        return session_seeds(self.root_seed, self.sessions)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a plain dictionary (YAML-safe)."""
        d = asdict(self)
        d["solvers"] = {kind.value: asdict(settings) for kind, settings in self.solvers.items()}
        for probe in d["probes"]:
            probe["taxi"] = list(probe["taxi"])
        if d["replay"] is not None:
            d["replay"]["taxi"] = list(d["replay"]["taxi"])
        return d

    def save(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Configuration":
        """
        Create from a dictionary.

        Raises:
            ConfigurationError: On unknown keys, unknown solvers or values of
                the wrong shape.
        """
        if not isinstance(d, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(d).__name__}")
        d = dict(d)
        _check_keys("configuration", d, [f.name for f in fields(cls)])

        costs = d.get("costs") or {}
        if not isinstance(costs, dict):
            raise ConfigurationError("costs must be a mapping")
        _check_keys("costs", costs, [f.name for f in fields(Costs)])
        d["costs"] = costs

        if "solvers" in d:
            solvers = d["solvers"] or {}
            if not isinstance(solvers, dict):
                raise ConfigurationError("solvers must be a mapping of solver name to settings")
            parsed: Dict[SolverKind, SolverSettings] = {}
            for name, values in solvers.items():
                try:
                    kind = SolverKind(name)
                except ValueError:
                    choices = ", ".join(k.value for k in SolverKind)
                    raise ConfigurationError(f"Unknown solver '{name}', expected one of: {choices}") from None
                parsed[kind] = _settings_from_dict(kind, values)
            d["solvers"] = parsed

        try:
            d["probes"] = [ProbeConfig(**probe) for probe in d.get("probes") or []]
            if d.get("replay") is not None:
                d["replay"] = ReplayConfig(**d["replay"])
                SolverKind(d["replay"].solver)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid probe or replay: {exc}") from None

        if d.get("rerun_seeds") is None:
            d.pop("rerun_seeds", None)
        return cls(**d)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Configuration":
        """
        Load configuration from a YAML file.

        A relative world_file is resolved against the YAML file's directory.

        Raises:
            FileNotFoundError: If the file does not exist.
            ConfigurationError: If the file is not a valid configuration.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            try:
                d = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from None

        config = cls.from_dict(d or {})
        if config.world_file is not None and not Path(config.world_file).is_absolute():
            config.world_file = str(path.parent / config.world_file)
        logger.debug("Loaded configuration from %s", path)
        return config


STANDARD_PROBES: List[ProbeConfig] = [
    ProbeConfig((2, 2), "Y", "R", 10),
    ProbeConfig((2, 2), "Y", "G", 14),
    ProbeConfig((2, 2), "Y", "B", 13),
    ProbeConfig((2, 2), "R", "B", 13),
    ProbeConfig((0, 4), "Y", "R", 6),
    ProbeConfig((0, 3), "B", "G", 13),
]


def standard_configuration() -> Configuration:
    """The standard map and costs with the standard probes and a DoorMax replay."""
    return Configuration(
        costs={
            "movement": -1.0,
            "miss_pickup": -10.0,
            "miss_dropoff": -10.0,
            "empty_dropoff": -11.0,
            "successful_dropoff": 0.0,
        },
        probes=[ProbeConfig(p.taxi, p.passenger, p.destination, p.max_steps) for p in STANDARD_PROBES],
        replay=ReplayConfig(SolverKind.DOOR_MAX.value, (2, 2), "Y", "R", 1000),
    )


def load_config(path: Optional[str | Path] = None) -> Configuration:
    """Load a configuration file, or the standard configuration if path is None."""
    if path is None:
        return standard_configuration()
    return Configuration.from_yaml(path)
