"""
Command line entry point.

Usage:
    python -m taxirl [config.yaml] [--workers N] [--log-level INFO] [--plot replay.png]

Runs every configured solver for the configured number of sessions, prints
the mean and standard deviation of the training steps each solver needed
until all probes passed, and replays the trained solver of the configured
replay scenario.
"""

from __future__ import annotations

import argparse
import sys
from functools import partial
from typing import Dict, List, Optional

from taxirl.config import SETTINGS_TYPES, Configuration, load_config
from taxirl.errors import TaxiError
from taxirl.log import get_logger, set_log_level
from taxirl.render import format_attempt
from taxirl.runner import (
    Attempt,
    SessionResult,
    fresh_root_seed,
    replay,
    run_sessions,
    summarize_sessions,
)
from taxirl.solvers import SolverKind, build_solver
from taxirl.world import World

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Run taxi domain solvers and evaluate them with probes")

    parser.add_argument(
        "config",
        nargs="?",
        default=None,
        help="YAML configuration file (default: standard map, DoorMax, standard probes)",
    )

    # Run shape
    parser.add_argument(
        "--sessions",
        type=int,
        default=None,
        help="Override the number of sessions per solver",
    )
    parser.add_argument(
        "--root-seed",
        type=int,
        default=None,
        help="Override the root seed of the session seeds",
    )
    parser.add_argument(
        "--solver",
        action="append",
        choices=[kind.value for kind in SolverKind],
        default=None,
        help="Only run the given solver (repeatable)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Sessions run in parallel threads (default: 1)",
    )

    # Output
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--plot",
        type=str,
        default=None,
        help="Save a figure of the replayed trajectory to this path",
    )
    parser.add_argument(
        "--quiet-replay",
        action="store_true",
        help="Print only the actions of the replay, not the maps",
    )

    return parser.parse_args(argv)


def apply_overrides(config: Configuration, args: argparse.Namespace) -> Configuration:
    if args.sessions is not None:
        config.sessions = args.sessions
    if args.root_seed is not None:
        config.root_seed = args.root_seed
    if args.solver:
        selected = {SolverKind(name) for name in args.solver}
        config.solvers = {
            kind: config.solvers.get(kind, SETTINGS_TYPES[kind]())
            for kind in SolverKind
            if kind in selected
        }
    return config


def print_summary(kind: SolverKind, results: List[SessionResult]) -> None:
    summary = summarize_sessions(results)
    print(f"{kind}:")
    print(f"  Sessions solved:  {summary.solved}/{summary.sessions}")
    print(f"  Steps to solve:   {summary.mean_steps:.1f} ± {summary.std_steps:.1f}")
    print(f"  Mean reward:      {summary.mean_reward:.1f}")
    print(f"  Probe pass rate:  {summary.probe_pass_rate:.1%}")


def save_plot(world: World, outcome: Attempt, path: str) -> None:
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    from taxirl.render import visualize_trajectory

    ax = visualize_trajectory(world, outcome)
    ax.figure.savefig(path, bbox_inches="tight")
    plt.close(ax.figure)
    print(f"Saved trajectory plot to: {path}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run the configured solvers. Returns the process exit code."""
    args = parse_args(argv)
    set_log_level(args.log_level)

    try:
        config = apply_overrides(load_config(args.config), args)
        world = config.build_world()
        probes = config.build_probes(world)
        scenario = config.build_replay(world)
        if scenario is not None and scenario.kind not in config.solvers:
            config.solvers[scenario.kind] = SETTINGS_TYPES[scenario.kind](report=False)
        config.check_solvers(world)
        if config.root_seed is None and not config.rerun_seeds:
            config.root_seed = fresh_root_seed()
        seeds = config.seeds()
    except (TaxiError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 2

    print("=" * 60)
    print("Taxi Domain")
    print("=" * 60)
    print(f"World:          {world.width}x{world.height}, locations {', '.join(world.locations)}")
    if config.rerun_seeds:
        print(f"Rerun seeds:    {', '.join(str(seed) for seed in seeds)}")
    else:
        print(f"Root seed:      {config.root_seed}")
    print(f"Sessions:       {len(seeds)}")
    print(f"Trials:         {config.max_trials} x {config.max_trial_steps} steps")
    print(f"Probes:         {len(probes)}")
    print(f"Workers:        {args.workers}")
    print("=" * 60)
    print()

    reported = [kind for kind, settings in config.solvers.items() if settings.report]
    kinds = list(reported)
    if scenario is not None and scenario.kind not in kinds:
        kinds.append(scenario.kind)

    results: Dict[SolverKind, List[SessionResult]] = {}
    try:
        for kind in kinds:
            settings = config.solvers[kind]
            results[kind] = run_sessions(
                world,
                partial(build_solver, kind, world, settings),
                seeds,
                config.max_trials,
                config.max_trial_steps,
                probes=probes,
                probe_interval=config.probe_interval,
                stop_when_solved=config.stop_when_solved,
                workers=args.workers,
            )
            if kind in reported:
                print_summary(kind, results[kind])
                print()
    except TaxiError as exc:
        logger.error("%s", exc)
        return 1

    if scenario is not None and results.get(scenario.kind):
        trained = results[scenario.kind][0]
        print(f"Replay of {scenario.kind} (session seed {trained.seed}):")
        outcome = replay(world, trained.solver, scenario)
        print(format_attempt(world, outcome, show_maps=not args.quiet_replay))
        if args.plot:
            save_plot(world, outcome, args.plot)

    return 0


if __name__ == "__main__":
    sys.exit(main())
