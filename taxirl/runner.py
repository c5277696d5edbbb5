"""
Runner Module

Trial harness, session driver and probe/replay evaluation.

    run_trial     -- one bounded episode of training
    run_session   -- max_trials trials against one solver, seeded
    run_sessions  -- independent sessions (fresh solver, derived seed each)
    attempt       -- greedy, non-learning rollout used by probes and replays

All randomness of a session comes from one numpy Generator seeded with the
session seed, so re-running a session with the same seed reproduces its
start states, actions and rewards exactly.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

import numpy as np

from taxirl.log import get_logger
from taxirl.solvers import SolverKind
from taxirl.solvers.base import Solver
from taxirl.state import Action, State
from taxirl.world import World

logger = get_logger(__name__)


class TrialStatus(Enum):
    CREATED = "created"
    RUNNING = "running"
    TERMINATED = "terminated"
    STEP_CAPPED = "step_capped"
    CANCELLED = "cancelled"


@dataclass
class TrialResult:
    """Outcome of one training trial."""

    start: State
    steps: int = 0
    total_reward: float = 0.0
    status: TrialStatus = TrialStatus.CREATED

    @property
    def terminated(self) -> bool:
        return self.status == TrialStatus.TERMINATED


@dataclass(frozen=True)
class Probe:
    """A fixed start state and the step budget a good policy needs from it."""

    state: State
    max_steps: int


@dataclass(frozen=True)
class Replay:
    """Replay of the trained solver of one kind from a fixed state."""

    kind: SolverKind
    state: State
    max_steps: int


@dataclass(frozen=True)
class TrajectoryStep:
    state: State
    action: Action
    reward: float


@dataclass
class Attempt:
    """
    A greedy rollout of a solver's policy.

    Attributes:
        start: Start state.
        max_steps: Step budget.
        steps: The (state, action, reward) sequence taken.
        final_state: State after the last step.
        success: True if the passenger was delivered within the budget.
    """

    start: State
    max_steps: int
    steps: List[TrajectoryStep] = field(default_factory=list)
    final_state: Optional[State] = None
    success: bool = False

    @property
    def total_reward(self) -> float:
        return float(sum(step.reward for step in self.steps))

    def states(self) -> List[State]:
        """Visited states, start and final state included."""
        visited = [step.state for step in self.steps]
        visited.append(self.final_state if self.final_state is not None else self.start)
        return visited


@dataclass(frozen=True)
class ProbeResult:
    probe: Probe
    steps: int
    success: bool
    total_reward: float


@dataclass
class SessionResult:
    """
    Outcome of one session.

    Attributes:
        seed: Seed of the session's random stream.
        trials: Result of every trial, in order.
        probe_results: Results of the last probe evaluation.
        trials_to_solve: Number of trials trained when all probes first
            passed, or None.
        steps_to_solve: Training steps taken until then, or None.
        solver: The trained solver (kept for replays).
    """

    seed: int
    trials: List[TrialResult] = field(default_factory=list)
    probe_results: List[ProbeResult] = field(default_factory=list)
    trials_to_solve: Optional[int] = None
    steps_to_solve: Optional[int] = None
    solver: Optional[Solver] = None

    @property
    def trial_rewards(self) -> np.ndarray:
        return np.array([t.total_reward for t in self.trials], dtype=np.float64)

    @property
    def total_reward(self) -> float:
        return float(self.trial_rewards.sum())

    @property
    def total_steps(self) -> int:
        return sum(t.steps for t in self.trials)

    @property
    def solved(self) -> bool:
        return self.trials_to_solve is not None

    @property
    def start_states(self) -> List[State]:
        return [t.start for t in self.trials]


@dataclass(frozen=True)
class SessionSummary:
    """Aggregate over sessions of one solver."""

    sessions: int
    solved: int
    mean_steps: float
    std_steps: float
    mean_reward: float
    probe_pass_rate: float


def run_trial(
    world: World,
    solver: Solver,
    start: State,
    max_steps: int,
    rng: np.random.Generator,
    cancel: Optional[threading.Event] = None,
) -> TrialResult:
    """
    Run one training episode.

    Args:
        world: The world.
        solver: Solver to train; updated after every step.
        start: Start state (validated before anything happens).
        max_steps: Step cap.
        rng: Random stream of the session.
        cancel: If given and set, the trial stops at the next step boundary.

    Returns:
        TrialResult with status TERMINATED, STEP_CAPPED or CANCELLED.

    Raises:
        InvalidScenarioError: If the start state is not a valid episode start.
    """
    state = world.reset(start)
    result = TrialResult(start=state)
    result.status = TrialStatus.RUNNING
    solver.begin_trial(state)

    try:
        while result.status == TrialStatus.RUNNING:
            if result.steps >= max_steps:
                result.status = TrialStatus.STEP_CAPPED
                break
            if cancel is not None and cancel.is_set():
                result.status = TrialStatus.CANCELLED
                break

            with solver.lock:
                action = solver.select_action(state, rng)
            next_state, reward, done = world.step(state, action)
            with solver.lock:
                solver.observe(state, action, reward, next_state, done)

            result.steps += 1
            result.total_reward += reward
            state = next_state
            if done:
                result.status = TrialStatus.TERMINATED
    finally:
        solver.end_trial()

    return result


def attempt(world: World, solver: Solver, start: State, max_steps: int) -> Attempt:
    """
    Roll out the solver's greedy policy without learning.

    The solver's lock is held for the whole rollout.
    """
    state = world.reset(start)
    result = Attempt(start=state, max_steps=max_steps)

    with solver.lock:
        for _ in range(max_steps):
            action = solver.greedy_action(state)
            if action is None:
                break
            next_state, reward, done = world.step(state, action)
            result.steps.append(TrajectoryStep(state, action, reward))
            state = next_state
            if done:
                result.success = True
                break

    result.final_state = state
    return result


def replay(world: World, solver: Solver, scenario: Replay) -> Attempt:
    """
    Replay a trained solver from the scenario's state.

    Raises:
        ValueError: If the solver is not of the scenario's kind.
        InvalidScenarioError: If the scenario's state is not a valid start.
    """
    if solver.name != SolverKind(scenario.kind).value:
        raise ValueError(f"Replay expects a {scenario.kind} solver, got {solver.name}")
    return attempt(world, solver, scenario.state, scenario.max_steps)


def evaluate_probe(world: World, solver: Solver, probe: Probe) -> ProbeResult:
    outcome = attempt(world, solver, probe.state, probe.max_steps)
    return ProbeResult(probe, len(outcome.steps), outcome.success, outcome.total_reward)


def evaluate_probes(world: World, solver: Solver, probes: Sequence[Probe]) -> List[ProbeResult]:
    return [evaluate_probe(world, solver, probe) for probe in probes]


def fresh_root_seed() -> int:
    """Draw a root seed from OS entropy."""
    return int(np.random.SeedSequence().entropy)


def session_seeds(root_seed: Optional[int], sessions: int) -> List[int]:
    """
    Derive independent session seeds from a root seed.

    Args:
        root_seed: Root seed. If None, fresh entropy is drawn and logged so
            the run can be reproduced.
        sessions: Number of seeds.

    Returns:
        List of non-negative integer seeds; the same root seed always gives
        the same list.
    """
    sequence = np.random.SeedSequence(root_seed)
    if root_seed is None:
        logger.warning("No root seed given, using %d", sequence.entropy)
    return [int(s) for s in sequence.generate_state(sessions, dtype=np.uint64)]


def run_session(
    world: World,
    solver: Solver,
    max_trials: int,
    max_trial_steps: int,
    seed: int,
    probes: Sequence[Probe] = (),
    probe_interval: int = 1,
    stop_when_solved: bool = False,
    cancel: Optional[threading.Event] = None,
) -> SessionResult:
    """
    Train one solver for a sequence of trials.

    Start states are drawn from a Generator seeded with ``seed``. Probes are
    evaluated after every ``probe_interval`` trials and after the last one.

    Args:
        world: The world.
        solver: A fresh solver, owned by this session.
        max_trials: Number of trials.
        max_trial_steps: Step cap of every trial.
        seed: Session seed.
        probes: Evaluation scenarios.
        probe_interval: Trials between probe evaluations.
        stop_when_solved: Stop as soon as every probe passes.
        cancel: If given and set, the session stops at the next step boundary.

    Returns:
        SessionResult of the session.
    """
    if probe_interval < 1:
        raise ValueError(f"probe_interval must be at least 1, got {probe_interval}")

    rng = np.random.default_rng(seed)
    session = SessionResult(seed=seed, solver=solver)

    for trial_index in range(max_trials):
        start = world.random_state(rng)
        trial = run_trial(world, solver, start, max_trial_steps, rng, cancel=cancel)
        session.trials.append(trial)
        logger.debug(
            "Trial %d from %s: %s after %d steps, reward %.1f",
            trial_index,
            start,
            trial.status.value,
            trial.steps,
            trial.total_reward,
        )
        if trial.status == TrialStatus.CANCELLED:
            logger.info("Session %d cancelled after %d trials", seed, len(session.trials))
            break

        last_trial = trial_index == max_trials - 1
        if probes and ((trial_index + 1) % probe_interval == 0 or last_trial):
            session.probe_results = evaluate_probes(world, solver, probes)
            if session.trials_to_solve is None and all(r.success for r in session.probe_results):
                session.trials_to_solve = trial_index + 1
                session.steps_to_solve = session.total_steps
                logger.debug(
                    "All probes passed after %d trials (%d steps)",
                    session.trials_to_solve,
                    session.steps_to_solve,
                )
                if stop_when_solved:
                    break

    return session


def run_sessions(
    world: World,
    solver_factory: Callable[[], Solver],
    seeds: Sequence[int],
    max_trials: int,
    max_trial_steps: int,
    probes: Sequence[Probe] = (),
    probe_interval: int = 1,
    stop_when_solved: bool = False,
    workers: int = 1,
    cancel: Optional[threading.Event] = None,
) -> List[SessionResult]:
    """
    Run one independent session per seed.

    Each session gets a new solver from ``solver_factory``; sessions share
    nothing mutable, so with ``workers > 1`` they run in a thread pool. The
    results are returned in seed order either way.
    """

    def one_session(seed: int) -> SessionResult:
        result = run_session(
            world,
            solver_factory(),
            max_trials,
            max_trial_steps,
            seed,
            probes=probes,
            probe_interval=probe_interval,
            stop_when_solved=stop_when_solved,
            cancel=cancel,
        )
        logger.info(
            "Session %d: %d trials, total reward %.1f, probes %s",
            seed,
            len(result.trials),
            result.total_reward,
            f"passed after {result.trials_to_solve} trials" if result.solved else "not passed",
        )
        return result

    if workers <= 1:
        return [one_session(seed) for seed in seeds]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(one_session, seeds))


def summarize_sessions(results: Sequence[SessionResult]) -> SessionSummary:
    """
    Mean and standard deviation of the steps needed to pass the probes.

    Sessions that never passed count with their total training steps.
    """
    if not results:
        raise ValueError("No session results to summarize")

    steps = np.array(
        [r.steps_to_solve if r.solved else r.total_steps for r in results],
        dtype=np.float64,
    )
    rewards = np.array([r.total_reward for r in results], dtype=np.float64)
    probe_flags = [p.success for r in results for p in r.probe_results]

    return SessionSummary(
        sessions=len(results),
        solved=sum(r.solved for r in results),
        mean_steps=float(np.mean(steps)),
        std_steps=float(np.std(steps)),
        mean_reward=float(np.mean(rewards)),
        probe_pass_rate=float(np.mean(probe_flags)) if probe_flags else 0.0,
    )
