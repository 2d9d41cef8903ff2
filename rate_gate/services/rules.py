"""Admission rules and rule sets.

A rule is a pure function of ``(state snapshot, now)``. It returns its own
``Decision`` together with the state transition to apply if the whole
request is admitted; rules never write state themselves. That contract lets
the limiter evaluate any combination of rules against one snapshot and then
commit all transitions or none.

Timestamps and durations are float seconds.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Iterator

from rate_gate.adapters.state_store.base import ClientState, Mutation, WindowState
from rate_gate.core.errors import ConfigurationError


@dataclass(frozen=True)
class Decision:
    """Outcome of an admission check.

    Attributes:
        admitted: Whether the request may proceed.
        retry_after: Seconds to wait before a retry could be admitted; only
            meaningful when ``admitted`` is False and None when no wait would help.
        denied_by: Descriptions of the rules that denied the request.
    """

    admitted: bool
    retry_after: float | None = None
    denied_by: tuple[str, ...] = ()


ADMIT = Decision(admitted=True)


def _identity(state: ClientState) -> ClientState:
    return state


def _require_positive_duration(rule: str, parameter: str, value: object) -> None:
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or value <= 0
    ):
        raise ConfigurationError(
            code="invalid_rule_parameter",
            message=f"{rule}.{parameter} must be a positive, finite number of seconds",
            details={"rule": rule, "parameter": parameter, "actual_value": value},
        )


class Rule(ABC):
    """Base class for admission rules."""

    @abstractmethod
    def evaluate(self, state: ClientState, now: float) -> tuple[Decision, Mutation]:
        """Judge one request against a state snapshot.

        Args:
            state: Immutable snapshot of the client's state.
            now: Request timestamp in seconds.

        Returns:
            The rule's decision and the mutation to apply if the overall
            request is admitted (identity when denied).
        """
        raise NotImplementedError

    @abstractmethod
    def validate(self) -> None:
        """Raise ConfigurationError if the rule's parameters are unusable."""
        raise NotImplementedError

    def describe(self) -> str:
        return type(self).__name__

    def _deny(self, retry_after: float | None) -> tuple[Decision, Mutation]:
        decision = Decision(
            admitted=False,
            retry_after=retry_after,
            denied_by=(self.describe(),),
        )
        return decision, _identity


@dataclass(frozen=True)
class FixedWindowCount(Rule):
    """Admit at most ``max_calls`` calls per fixed window of ``window_seconds``.

    The window opens at the first admitted call and closes ``window_seconds``
    later; the first call after it closes opens a new one.
    """

    max_calls: int
    window_seconds: float

    @property
    def state_key(self) -> str:
        # repr keeps every digit, so near-equal windows never share a counter.
        return f"fixed_window:{self.max_calls}/{float(self.window_seconds)!r}"

    def describe(self) -> str:
        return (
            f"FixedWindowCount(max_calls={self.max_calls}, "
            f"window_seconds={self.window_seconds:g})"
        )

    def validate(self) -> None:
        if (
            isinstance(self.max_calls, bool)
            or not isinstance(self.max_calls, int)
            or self.max_calls < 1
        ):
            raise ConfigurationError(
                code="invalid_rule_parameter",
                message="FixedWindowCount.max_calls must be an integer >= 1",
                details={
                    "rule": "FixedWindowCount",
                    "parameter": "max_calls",
                    "actual_value": self.max_calls,
                    "hint": "max_calls=0 would make the resource permanently unreachable",
                },
            )
        _require_positive_duration("FixedWindowCount", "window_seconds", self.window_seconds)

    def evaluate(self, state: ClientState, now: float) -> tuple[Decision, Mutation]:
        key = self.state_key
        window = state.window(key)

        if window is None or now - window.start >= self.window_seconds:
            opened = WindowState(start=now, count=1)
            return ADMIT, lambda s: s.with_window(key, opened)

        if window.count < self.max_calls:
            advanced = WindowState(start=window.start, count=window.count + 1)
            return ADMIT, lambda s: s.with_window(key, advanced)

        return self._deny(self.window_seconds - (now - window.start))


@dataclass(frozen=True)
class Cooldown(Rule):
    """Require ``min_interval_seconds`` between two admitted calls."""

    min_interval_seconds: float

    def describe(self) -> str:
        return f"Cooldown(min_interval_seconds={self.min_interval_seconds:g})"

    def validate(self) -> None:
        _require_positive_duration("Cooldown", "min_interval_seconds", self.min_interval_seconds)

    def evaluate(self, state: ClientState, now: float) -> tuple[Decision, Mutation]:
        last = state.last_call_time
        if last is None or now - last >= self.min_interval_seconds:
            return ADMIT, lambda s: s.with_last_call(now)

        return self._deny(self.min_interval_seconds - (now - last))


@dataclass(frozen=True)
class RejectAll(Rule):
    """Deny every request; waiting does not help, so no retry guidance."""

    def validate(self) -> None:
        return None

    def evaluate(self, state: ClientState, now: float) -> tuple[Decision, Mutation]:
        return self._deny(None)


@dataclass(frozen=True)
class RuleSet:
    """Ordered, AND-combined group of rules.

    An empty rule set places no restriction on the request.
    """

    name: str
    rules: tuple[Rule, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "rules", tuple(self.rules))

    @classmethod
    def of(cls, name: str, *rules: Rule) -> RuleSet:
        return cls(name=name, rules=tuple(rules))

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def validate(self) -> None:
        """Validate every member rule.

        Raises:
            ConfigurationError: On the first member that is not a Rule or
                whose parameters are invalid.
        """
        for rule in self.rules:
            if not isinstance(rule, Rule):
                raise ConfigurationError(
                    code="invalid_rule",
                    message=f"Rule set '{self.name}' contains a non-rule member",
                    details={"rule_set": self.name, "actual_value": repr(rule)},
                )
            rule.validate()


def combine(name: str, rule_sets: Iterable[RuleSet]) -> RuleSet:
    """Concatenate rule sets in order into one effective rule set."""

    rules: list[Rule] = []
    names: list[str] = []
    for rule_set in rule_sets:
        rules.extend(rule_set.rules)
        names.append(rule_set.name)
    return RuleSet(name="+".join(names) or name, rules=tuple(rules))
