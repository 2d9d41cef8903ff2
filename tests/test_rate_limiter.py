"""Behavioral tests for the rate limiter's composition and atomicity."""

import threading

import pytest

from rate_gate.adapters.state_store.base import EMPTY_STATE
from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore
from rate_gate.services.policy_binder import (
    ClientClassMatcher,
    PolicyBinder,
    ResourceMatcher,
    UnmatchedPolicy,
)
from rate_gate.services.rate_limiter import RateLimiter
from rate_gate.services.rules import Cooldown, FixedWindowCount, RuleSet


def _limiter_for(*rules, resource: str = "api") -> RateLimiter:
    binder = PolicyBinder()
    binder.register(ResourceMatcher(resource), RuleSet.of(resource, *rules))
    return RateLimiter(binder)


def test_window_admission_bound() -> None:
    limiter = _limiter_for(FixedWindowCount(max_calls=3, window_seconds=60))

    results = [limiter.check("t", "api", now) for now in (0, 10, 20)]
    fourth = limiter.check("t", "api", 30)

    assert all(d.admitted for d in results)
    assert fourth.admitted is False
    assert fourth.retry_after == pytest.approx(30.0)


def test_window_reset_after_window_elapses() -> None:
    rule = FixedWindowCount(max_calls=3, window_seconds=60)
    limiter = _limiter_for(rule)
    for now in (0, 10, 20, 30):
        limiter.check("t", "api", now)

    decision = limiter.check("t", "api", 130)

    assert decision.admitted is True
    state = limiter.store.get("t")
    assert state.window(rule.state_key).start == 130
    assert state.window(rule.state_key).count == 1


def test_cooldown_bound() -> None:
    limiter = _limiter_for(Cooldown(min_interval_seconds=60))

    assert limiter.check("t", "api", 0).admitted is True
    denied = limiter.check("t", "api", 30)
    assert denied.admitted is False
    assert denied.retry_after == pytest.approx(30.0)
    assert limiter.check("t", "api", 60).admitted is True


def test_partial_admission_commits_nothing() -> None:
    count_rule = FixedWindowCount(max_calls=1, window_seconds=60)
    limiter = _limiter_for(count_rule, Cooldown(min_interval_seconds=120))
    # Seed a recent call so the cooldown blocks while the count rule would pass.
    limiter.store.apply("t", lambda s: s.with_last_call(0.0))

    denied = limiter.check("t", "api", 10)

    assert denied.admitted is False
    assert denied.denied_by == ("Cooldown(min_interval_seconds=120)",)
    assert limiter.store.get("t").window(count_rule.state_key) is None

    # Once the cooldown clears, the count rule still has its single slot.
    assert limiter.check("t", "api", 120).admitted is True
    assert limiter.store.get("t").window(count_rule.state_key).count == 1


def test_admitted_call_applies_every_rule_mutation() -> None:
    count_rule = FixedWindowCount(max_calls=1, window_seconds=60)
    limiter = _limiter_for(count_rule, Cooldown(min_interval_seconds=120))

    assert limiter.check("t", "api", 0).admitted is True

    state = limiter.store.get("t")
    assert state.last_call_time == 0
    assert state.window(count_rule.state_key).count == 1

    # Within the window: denied by both rules, reporting the slower one.
    decision = limiter.check("t", "api", 30)
    assert decision.admitted is False
    assert decision.retry_after == pytest.approx(90.0)
    assert len(decision.denied_by) == 2


def test_denial_is_pure() -> None:
    limiter = _limiter_for(FixedWindowCount(max_calls=1, window_seconds=60))
    limiter.check("t", "api", 0)
    before = limiter.store.get("t")

    assert limiter.check("t", "api", 5).admitted is False
    assert limiter.store.get("t") == before


def test_two_window_rules_keep_independent_counters() -> None:
    per_minute = FixedWindowCount(max_calls=2, window_seconds=60)
    per_hour = FixedWindowCount(max_calls=3, window_seconds=3600)
    limiter = _limiter_for(per_minute, per_hour)

    assert limiter.check("t", "api", 0).admitted is True
    assert limiter.check("t", "api", 1).admitted is True
    assert limiter.check("t", "api", 2).admitted is False
    assert limiter.check("t", "api", 61).admitted is True

    denied = limiter.check("t", "api", 62)
    assert denied.admitted is False
    assert denied.retry_after == pytest.approx(3600 - 62)


def test_unseen_token_and_empty_rule_set() -> None:
    store = InMemoryClientStateStore()
    binder = PolicyBinder(unmatched=UnmatchedPolicy.ADMIT)
    binder.register(ResourceMatcher("open"), RuleSet(name="open"))
    limiter = RateLimiter(binder, store=store)

    assert store.get("fresh") == EMPTY_STATE
    for now in range(5):
        assert limiter.check("fresh", "open", now).admitted is True
        assert limiter.check("fresh", "unbound", now).admitted is True

    assert store.get("fresh") == EMPTY_STATE
    assert len(store) == 0


def test_unmatched_reject_denies_without_retry_guidance() -> None:
    limiter = RateLimiter(PolicyBinder(unmatched=UnmatchedPolicy.REJECT))

    decision = limiter.check("t", "unbound", 0)

    assert decision.admitted is False
    assert decision.retry_after is None
    assert limiter.store.get("t") == EMPTY_STATE


def test_limiters_do_not_share_state() -> None:
    first = _limiter_for(FixedWindowCount(max_calls=1, window_seconds=60))
    second = _limiter_for(FixedWindowCount(max_calls=1, window_seconds=60))

    assert first.check("t", "api", 0).admitted is True
    assert second.check("t", "api", 0).admitted is True


def test_check_now_uses_injected_clock(binder: PolicyBinder, limiter: RateLimiter, clock) -> None:
    binder.register(ClientClassMatcher("EU"), RuleSet.of("eu", Cooldown(min_interval_seconds=60)))

    assert limiter.check_now("EU-jhte456", "orders").admitted is True
    clock.advance(59)
    assert limiter.check_now("EU-jhte456", "orders").admitted is False
    clock.advance(1)
    assert limiter.check_now("EU-jhte456", "orders").admitted is True


def test_empty_token_is_rejected() -> None:
    limiter = _limiter_for(Cooldown(min_interval_seconds=1))

    with pytest.raises(ValueError):
        limiter.check("", "api", 0)


def test_concurrent_checks_admit_exactly_one() -> None:
    limiter = _limiter_for(FixedWindowCount(max_calls=1, window_seconds=60))
    workers = 32
    barrier = threading.Barrier(workers)
    outcomes: list[bool] = []
    outcomes_lock = threading.Lock()

    def _call() -> None:
        barrier.wait()
        decision = limiter.check("shared", "api", 0)
        with outcomes_lock:
            outcomes.append(decision.admitted)

    threads = [threading.Thread(target=_call) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(True) == 1
    assert outcomes.count(False) == workers - 1


def test_near_equal_window_rules_do_not_share_a_counter() -> None:
    binder = PolicyBinder()
    binder.register(ResourceMatcher("x"), RuleSet.of("x", FixedWindowCount(1, 60)))
    binder.register(ResourceMatcher("y"), RuleSet.of("y", FixedWindowCount(1, 60.000001)))
    limiter = RateLimiter(binder)

    assert limiter.check("t", "x", 0).admitted is True
    assert limiter.check("t", "y", 1).admitted is True
    assert limiter.check("t", "x", 2).admitted is False


def test_denied_unknown_token_does_not_evict_tracked_client() -> None:
    store = InMemoryClientStateStore(max_entries=1)
    binder = PolicyBinder(unmatched=UnmatchedPolicy.REJECT)
    binder.register(ResourceMatcher("api"), RuleSet.of("api", FixedWindowCount(1, 60)))
    limiter = RateLimiter(binder, store=store)

    assert limiter.check("alice", "api", 0).admitted is True
    assert limiter.check("stranger", "unbound", 1).admitted is False

    assert store.stats()["evictions"] == 0
    assert limiter.check("alice", "api", 2).admitted is False
