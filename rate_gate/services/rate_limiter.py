"""Rate limiter: resolve, evaluate and commit admission decisions.

Flow for one request:
1. Resolve the effective rule set through the PolicyBinder.
2. Inside the store's per-token transaction, evaluate every rule against the
   same state snapshot (rules never see each other's tentative changes).
3. If every rule admits, fold the collected mutations onto the snapshot in
   rule order and commit the result; otherwise commit nothing and report the
   longest retry-after among the denying rules.

Because steps 2-3 run inside a single transaction, concurrent checks for the
same token are serialized and cannot both spend the last slot of a window.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from rate_gate.adapters.state_store.base import AbstractClientStateStore, ClientState
from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore
from rate_gate.core.logging import hash_token
from rate_gate.services.policy_binder import PolicyBinder
from rate_gate.services.rules import ADMIT, Decision, RuleSet

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def evaluate_rule_set(
    rule_set: RuleSet, state: ClientState, now: float
) -> tuple[ClientState, Decision]:
    """Evaluate ``rule_set`` against ``state`` with all-or-nothing semantics.

    Args:
        rule_set: Rules to AND-combine.
        state: Snapshot every rule is evaluated against.
        now: Request timestamp in seconds.

    Returns:
        The state to commit (``state`` itself on denial) and the combined decision.
    """

    mutations = []
    denials: list[Decision] = []
    for rule in rule_set:
        decision, mutation = rule.evaluate(state, now)
        if decision.admitted:
            mutations.append(mutation)
        else:
            denials.append(decision)

    if denials:
        waits = [d.retry_after for d in denials if d.retry_after is not None]
        combined = Decision(
            admitted=False,
            retry_after=max(waits) if waits else None,
            denied_by=tuple(name for d in denials for name in d.denied_by),
        )
        return state, combined

    new_state = state
    for mutation in mutations:
        new_state = mutation(new_state)
    return new_state, ADMIT


class RateLimiter:
    """Admission checks for client tokens against per-resource policies.

    Each limiter owns its state store, so independent limiters never share
    client state.
    """

    def __init__(
        self,
        binder: PolicyBinder,
        *,
        store: AbstractClientStateStore | None = None,
        clock: Clock = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            binder: Source of the rule set for each request.
            store: Client state store; a fresh in-memory store when omitted.
            clock: Time source used by :meth:`check_now`.
        """
        self._binder = binder
        self._store = store if store is not None else InMemoryClientStateStore()
        self._clock = clock

    @property
    def binder(self) -> PolicyBinder:
        return self._binder

    @property
    def store(self) -> AbstractClientStateStore:
        return self._store

    def check(self, token: str, resource_id: str, now: float) -> Decision:
        """Decide whether ``token`` may access ``resource_id`` at ``now``.

        Admission commits the state changes of every rule; denial changes
        nothing.

        Args:
            token: Opaque client identity.
            resource_id: Identifier of the protected resource.
            now: Request timestamp in seconds, supplied by the caller.

        Returns:
            Decision with the admission outcome and retry guidance.

        Raises:
            ValueError: If token is empty.
        """
        if not token:
            raise ValueError("token must be a non-empty string")

        rule_set = self._binder.resolve(token, resource_id)
        if not rule_set.rules:
            decision = ADMIT
        else:
            decision = self._store.transact(
                token,
                lambda state: evaluate_rule_set(rule_set, state, now),
            )

        self._log_decision(token, resource_id, rule_set, decision)
        return decision

    def check_now(self, token: str, resource_id: str) -> Decision:
        """Run :meth:`check` with the timestamp from the injected clock."""

        return self.check(token, resource_id, self._clock())

    def _log_decision(
        self, token: str, resource_id: str, rule_set: RuleSet, decision: Decision
    ) -> None:
        extra: dict[str, object] = {
            "token_hash": hash_token(token),
            "resource_id": resource_id,
            "rule_set": rule_set.name,
        }
        if decision.admitted:
            logger.debug("admission.admitted", extra=extra)
            return

        extra["retry_after_s"] = decision.retry_after
        extra["denied_by"] = list(decision.denied_by)
        logger.info("admission.denied", extra=extra)
