"""
taxirl: A research harness for model-based reinforcement learning in the taxi domain.

This package provides tools for:
- Parsing taxi worlds (walls, named locations, costs) from text maps
- Learning with tabular, factored, rule-based and hierarchical solvers
- Running seeded trials and sessions, optionally in parallel
- Checking learned policies with probe and replay scenarios
"""

from taxirl.config import Configuration, load_config
from taxirl.errors import (
    ConfigurationError,
    InvalidScenarioError,
    ModelInconsistencyError,
    TaxiError,
    WorldParseError,
)
from taxirl.runner import (
    Probe,
    Replay,
    attempt,
    evaluate_probes,
    replay,
    run_session,
    run_sessions,
    run_trial,
    session_seeds,
)
from taxirl.solvers import SolverKind, build_solver
from taxirl.state import Action, Position, State, StateIndexer
from taxirl.world import Costs, World

__version__ = "0.1.0"
__all__ = [
    "Action",
    "Configuration",
    "ConfigurationError",
    "Costs",
    "InvalidScenarioError",
    "ModelInconsistencyError",
    "Position",
    "Probe",
    "Replay",
    "SolverKind",
    "State",
    "StateIndexer",
    "TaxiError",
    "World",
    "WorldParseError",
    "attempt",
    "build_solver",
    "evaluate_probes",
    "load_config",
    "replay",
    "run_session",
    "run_sessions",
    "run_trial",
    "session_seeds",
]
