"""
Error Types

Exceptions raised by the taxi harness. Input problems (bad maps, bad
configuration, bad scenarios) are ``ValueError`` subclasses so callers can
treat them like any other validation failure. ``ModelInconsistencyError`` is
the only anomaly raised by a learner during training.

Running out of steps is not an error: trials report it through their status
and probes through their ``success`` flag.
"""

from __future__ import annotations


class TaxiError(Exception):
    """Base class for all taxirl errors."""


class WorldParseError(TaxiError, ValueError):
    """The textual world map is malformed or describes an invalid world."""


class ConfigurationError(TaxiError, ValueError):
    """A configuration file or mapping cannot be turned into a Configuration."""


class InvalidScenarioError(TaxiError, ValueError):
    """
    A start state for a trial, probe or replay is not valid for the world.

    Raised before the episode starts, e.g. when the taxi is outside the grid,
    a location id is unknown, or the passenger already sits on the destination.
    """


class ModelInconsistencyError(TaxiError, RuntimeError):
    """
    An observed effect contradicts the learned rules in a way that cannot be
    resolved by specialization.

    DoorMax assumes deterministic effects: seeing the same condition produce
    two different outcomes for the same action and variable means the
    assumption is broken.
    """

    def __init__(self, action, variable: str, condition, previous, observed) -> None:
        self.action = action
        self.variable = variable
        self.condition = condition
        self.previous = previous
        self.observed = observed
        super().__init__(
            f"Non-deterministic effect for {variable} under {action!s}: condition "
            f"{condition} produced {previous!r} before and {observed!r} now"
        )
