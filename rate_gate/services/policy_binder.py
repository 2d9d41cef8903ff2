"""Policy binding: which rule sets apply to a request.

Registrations pair a matcher with a rule set. A matcher selects requests by
exact resource id, by client class (derived from the token through an
injected classifier) or by token prefix. Every matching registration
contributes its rules; together they form one AND-combined rule set.

Requests that nothing matches get the binder's declared ``UnmatchedPolicy``.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from rate_gate.core.errors import ConfigurationError
from rate_gate.services.rules import RejectAll, RuleSet, combine

logger = logging.getLogger(__name__)

ClientClassifier = Callable[[str], "str | None"]


class UnmatchedPolicy(str, Enum):
    """Outcome for requests that no registration matches."""

    ADMIT = "admit"
    REJECT = "reject"


UNRESTRICTED = RuleSet(name="unmatched:admit")
REJECTED = RuleSet.of("unmatched:reject", RejectAll())


@dataclass(frozen=True)
class RequestContext:
    """What matchers see about a request."""

    token: str
    resource_id: str
    client_class: str | None


class Matcher(ABC):
    """Selects the requests a rule set is bound to."""

    @abstractmethod
    def matches(self, request: RequestContext) -> bool:
        raise NotImplementedError

    @abstractmethod
    def validate(self) -> None:
        raise NotImplementedError


def _require_value(matcher: str, value: object) -> None:
    if not isinstance(value, str) or not value:
        raise ConfigurationError(
            code="invalid_matcher",
            message=f"{matcher} requires a non-empty string",
            details={"parameter": matcher, "actual_value": value},
        )


@dataclass(frozen=True)
class ResourceMatcher(Matcher):
    resource_id: str

    def matches(self, request: RequestContext) -> bool:
        return request.resource_id == self.resource_id

    def validate(self) -> None:
        _require_value("ResourceMatcher", self.resource_id)


@dataclass(frozen=True)
class ClientClassMatcher(Matcher):
    """Matches tokens the binder's classifier assigns to ``client_class``."""

    client_class: str

    def matches(self, request: RequestContext) -> bool:
        return request.client_class == self.client_class

    def validate(self) -> None:
        _require_value("ClientClassMatcher", self.client_class)


@dataclass(frozen=True)
class TokenPrefixMatcher(Matcher):
    prefix: str

    def matches(self, request: RequestContext) -> bool:
        return request.token.startswith(self.prefix)

    def validate(self) -> None:
        _require_value("TokenPrefixMatcher", self.prefix)


def region_classifier(token: str) -> str | None:
    """Classify tokens shaped ``<REGION>-<id>`` by their region prefix.

    >>> region_classifier("us-abcd123")
    'US'
    >>> region_classifier("abcd123") is None
    True
    """

    region, sep, rest = token.partition("-")
    if not sep or not region or not rest:
        return None
    return region.upper()


class PolicyBinder:
    """Maps requests to the rule sets that govern them.

    Registration is expected to happen before traffic starts but is safe to
    call concurrently with ``resolve``: registrations are swapped in as a new
    immutable tuple, so a resolve in progress sees either the old or the new
    list, never a partial one.
    """

    def __init__(
        self,
        *,
        classifier: ClientClassifier | None = None,
        unmatched: UnmatchedPolicy = UnmatchedPolicy.ADMIT,
    ) -> None:
        self._classifier = classifier
        self._unmatched = UnmatchedPolicy(unmatched)
        self._lock = threading.Lock()
        self._bindings: tuple[tuple[Matcher, RuleSet], ...] = ()

    @property
    def unmatched(self) -> UnmatchedPolicy:
        return self._unmatched

    def register(self, matcher: Matcher, rule_set: RuleSet) -> None:
        """Bind ``rule_set`` to the requests selected by ``matcher``.

        Args:
            matcher: Request selector.
            rule_set: Rules every selected request must satisfy.

        Raises:
            ConfigurationError: If the matcher or any rule is invalid, or a
                client-class matcher is registered without a classifier.
                Nothing is installed in that case.
        """
        if not isinstance(matcher, Matcher):
            raise ConfigurationError(
                code="invalid_matcher",
                message="matcher must be a Matcher instance",
                details={"actual_value": repr(matcher)},
            )
        if not isinstance(rule_set, RuleSet):
            raise ConfigurationError(
                code="invalid_rule_set",
                message="rule_set must be a RuleSet instance",
                details={"actual_value": repr(rule_set)},
            )
        matcher.validate()
        rule_set.validate()
        if isinstance(matcher, ClientClassMatcher) and self._classifier is None:
            raise ConfigurationError(
                code="missing_classifier",
                message="Client-class matchers need a binder with a classifier",
                details={"rule_set": rule_set.name},
            )

        with self._lock:
            self._bindings = self._bindings + ((matcher, rule_set),)

        logger.info(
            "policy.registered",
            extra={
                "matcher": repr(matcher),
                "rule_set": rule_set.name,
                "rules": [rule.describe() for rule in rule_set],
            },
        )

    def resolve(self, token: str, resource_id: str) -> RuleSet:
        """Return the effective rule set for a request.

        Rule sets of all matching registrations are concatenated in
        registration order. When nothing matches, the declared unmatched
        policy applies.
        """

        bindings = self._bindings
        request = RequestContext(
            token=token,
            resource_id=resource_id,
            client_class=self._classifier(token) if self._classifier else None,
        )
        matched = [rule_set for matcher, rule_set in bindings if matcher.matches(request)]
        if matched:
            return combine(resource_id, matched)

        if self._unmatched is UnmatchedPolicy.REJECT:
            return REJECTED
        return UNRESTRICTED
