"""
Effect Rules

Conditional effect learning for DoorMax. An EffectLearner is responsible for
one (action, variable) pair. It keeps an ordered list of EffectRules, each
mapping a precondition to one deterministic outcome.

Conditions are tuples of booleans (one per condition term). A rule's
precondition is a *hypothesis*: a tuple where every term is True, False or
None (don't care). A hypothesis matches a condition when every fixed term
agrees.

Learning from an observed (condition, outcome):

    1. If a rule with a different outcome was already supported by exactly
       this condition, the effect is non-deterministic and
       ModelInconsistencyError is raised.
    2. Every rule with a different outcome whose hypothesis matches the
       condition is specialized: its supporting conditions are regrouped
       into rules that no longer match the condition.
    3. The first rule with the same outcome whose hypothesis can be
       generalized to cover the condition (without overlapping a rule with
       another outcome) absorbs it. Otherwise a new, exact rule is added.

Rules with different outcomes therefore never overlap. A rule only predicts
once it is supported by ``known_count`` observations; a condition that no
applicable rule matches is unmodeled.

Should two applicable rules with different outcomes ever match the same
condition, the one with the highest rank wins (ranks grow every time a rule
is created or specialized, so the most recently specialized rule wins), then
the most specific one, then the earliest in the list.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

from taxirl.errors import ModelInconsistencyError
from taxirl.log import get_logger

logger = get_logger(__name__)

Condition = Tuple[bool, ...]
Hypothesis = Tuple[Optional[bool], ...]


def matches(hypothesis: Hypothesis, condition: Condition) -> bool:
    """True if every fixed term of the hypothesis agrees with the condition."""
    return all(h is None or h == c for h, c in zip(hypothesis, condition))


def generalize(hypothesis: Hypothesis, condition: Condition) -> Hypothesis:
    """Least general hypothesis covering both: disagreeing terms become None."""
    return tuple(h if h == c else None for h, c in zip(hypothesis, condition))


def overlaps(first: Hypothesis, second: Hypothesis) -> bool:
    """True if some condition matches both hypotheses."""
    return all(a is None or b is None or a == b for a, b in zip(first, second))


def specificity(hypothesis: Hypothesis) -> int:
    """Number of fixed terms."""
    return sum(term is not None for term in hypothesis)


def format_hypothesis(hypothesis: Hypothesis, terms: Optional[Sequence[str]] = None) -> str:
    if terms is None:
        return "".join("*" if h is None else str(int(h)) for h in hypothesis)
    parts = [
        name if h else f"!{name}"
        for name, h in zip(terms, hypothesis)
        if h is not None
    ]
    return " & ".join(parts) if parts else "always"


@dataclass
class EffectRule:
    """
    A precondition and the outcome it produces.

    Attributes:
        hypothesis: Precondition over the condition terms.
        outcome: Deterministic outcome (an effect or a reward value).
        support: Observation count of every exact condition behind the rule.
        rank: Creation/specialization stamp, higher is more recent.
    """

    hypothesis: Hypothesis
    outcome: Hashable
    support: Dict[Condition, int] = field(default_factory=dict)
    rank: int = 0

    @property
    def evidence(self) -> int:
        return sum(self.support.values())


class EffectLearner:
    """
    Learns the outcome of one action on one variable as a set of rules.

    Args:
        action: The action the learner belongs to (used in messages).
        variable: The variable the learner belongs to.
        known_count: Supporting observations needed before a rule predicts.
        terms: Optional names of the condition terms, for display.

    Example:
        >>> learner = EffectLearner("East", "taxi_x", known_count=1)
        >>> learner.observe((False, True), "+1")
        True
        >>> learner.predict((False, True))
        '+1'
    """

    def __init__(
        self,
        action: Hashable,
        variable: str,
        known_count: int = 1,
        terms: Optional[Sequence[str]] = None,
    ) -> None:
        if known_count < 1:
            raise ValueError(f"known_count must be at least 1, got {known_count}")
        self.action = action
        self.variable = variable
        self.known_count = known_count
        self.terms = tuple(terms) if terms is not None else None
        self.rules: List[EffectRule] = []
        self._clock = 0

    def _next_rank(self) -> int:
        self._clock += 1
        return self._clock

    def _overlaps_other(self, hypothesis: Hypothesis, outcome: Hashable) -> bool:
        return any(
            rule.outcome != outcome and overlaps(rule.hypothesis, hypothesis)
            for rule in self.rules
        )

    def _specialize(self, rule: EffectRule, condition: Condition) -> List[EffectRule]:
        """Regroup the support of a rule into rules that do not match condition."""
        groups: List[EffectRule] = []
        for supported in sorted(rule.support):
            for group in groups:
                candidate = generalize(group.hypothesis, supported)
                if matches(candidate, condition) or self._overlaps_other(candidate, rule.outcome):
                    continue
                group.hypothesis = candidate
                group.support[supported] = rule.support[supported]
                break
            else:
                groups.append(
                    EffectRule(
                        supported,
                        rule.outcome,
                        {supported: rule.support[supported]},
                        self._next_rank(),
                    )
                )
        return groups

    def observe(self, condition: Condition, outcome: Hashable) -> bool:
        """
        Learn from one observation.

        Args:
            condition: Condition of the pre-state.
            outcome: Observed outcome.

        Returns:
            True if the learner's predictions may have changed.

        Raises:
            ModelInconsistencyError: If the same condition was seen with a
                different outcome before.
        """
        condition = tuple(condition)
        for rule in self.rules:
            if rule.outcome != outcome and condition in rule.support:
                raise ModelInconsistencyError(
                    self.action, self.variable, condition, rule.outcome, outcome
                )

        changed = False

        specialized: List[EffectRule] = []
        for rule in self.rules:
            if rule.outcome != outcome and matches(rule.hypothesis, condition):
                groups = self._specialize(rule, condition)
                logger.debug(
                    "%s/%s: specialized %s => %r into %d rule(s)",
                    self.action,
                    self.variable,
                    format_hypothesis(rule.hypothesis),
                    rule.outcome,
                    len(groups),
                )
                specialized.extend(groups)
                changed = True
            else:
                specialized.append(rule)
        self.rules = specialized

        for rule in self.rules:
            if rule.outcome == outcome and condition in rule.support:
                before = rule.evidence
                rule.support[condition] += 1
                return changed or before < self.known_count <= rule.evidence

        for rule in self.rules:
            if rule.outcome != outcome:
                continue
            candidate = generalize(rule.hypothesis, condition)
            if self._overlaps_other(candidate, outcome):
                continue
            before = rule.evidence
            widened = candidate != rule.hypothesis
            rule.hypothesis = candidate
            rule.support[condition] = 1
            return changed or widened or before < self.known_count <= rule.evidence

        self.rules.append(EffectRule(condition, outcome, {condition: 1}, self._next_rank()))
        return True

    def applicable_rules(self, condition: Condition) -> List[EffectRule]:
        """Rules with enough support whose hypothesis matches the condition."""
        return [
            rule
            for rule in self.rules
            if rule.evidence >= self.known_count and matches(rule.hypothesis, condition)
        ]

    def predict(self, condition: Condition) -> Optional[Hashable]:
        """
        Predicted outcome for a condition, or None if it is unmodeled.

        Conflicts between applicable rules are resolved by precedence (see
        the module docstring).
        """
        candidates = self.applicable_rules(tuple(condition))
        if not candidates:
            return None

        outcomes = {rule.outcome for rule in candidates}
        if len(outcomes) == 1:
            return candidates[0].outcome

        order = {id(rule): position for position, rule in enumerate(self.rules)}
        winner = max(
            candidates,
            key=lambda rule: (rule.rank, specificity(rule.hypothesis), -order[id(rule)]),
        )
        logger.debug(
            "%s/%s: conflicting rules for %s, using %s => %r",
            self.action,
            self.variable,
            condition,
            format_hypothesis(winner.hypothesis),
            winner.outcome,
        )
        return winner.outcome

    def __str__(self) -> str:
        rules = ", ".join(
            f"{format_hypothesis(rule.hypothesis, self.terms)} => {rule.outcome!r} "
            f"[{rule.evidence}]"
            for rule in self.rules
        )
        return f"{self.action!s} - {self.variable}: ( {rules} )"
