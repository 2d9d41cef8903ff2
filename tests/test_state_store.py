"""Unit tests for the in-memory client state store."""

import threading

import pytest

from rate_gate.adapters.state_store.base import EMPTY_STATE, ClientState
from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore


def _touch(now: float):
    return lambda state: state.with_last_call(now)


def test_get_unseen_token_returns_empty_state_without_tracking(
    store: InMemoryClientStateStore,
) -> None:
    assert store.get("never-seen") == EMPTY_STATE
    assert len(store) == 0


def test_apply_stores_and_returns_new_state(store: InMemoryClientStateStore) -> None:
    new_state = store.apply("k", _touch(10.0))

    assert new_state.last_call_time == 10.0
    assert store.get("k") == new_state


def test_transact_returns_result_and_commits_state(store: InMemoryClientStateStore) -> None:
    result = store.transact("k", lambda s: (s.with_last_call(5.0), "done"))

    assert result == "done"
    assert store.get("k").last_call_time == 5.0


def test_states_are_isolated_by_token(store: InMemoryClientStateStore) -> None:
    store.apply("k1", _touch(1.0))

    assert store.get("k2") == EMPTY_STATE
    assert store.get("k1").last_call_time == 1.0


def test_identity_transaction_on_unseen_token_leaves_nothing_behind(
    store: InMemoryClientStateStore,
) -> None:
    store.apply("k", lambda s: s)

    assert len(store) == 0
    assert store.get("k") == EMPTY_STATE


def test_failed_mutation_keeps_previous_state(store: InMemoryClientStateStore) -> None:
    store.apply("k", _touch(1.0))

    def _boom(state: ClientState) -> ClientState:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.apply("k", _boom)

    assert store.get("k").last_call_time == 1.0


def test_empty_token_is_rejected(store: InMemoryClientStateStore) -> None:
    with pytest.raises(ValueError):
        store.apply("", _touch(1.0))


def test_invalid_max_entries() -> None:
    with pytest.raises(ValueError):
        InMemoryClientStateStore(max_entries=0)


def test_lru_eviction_removes_least_recently_used() -> None:
    store = InMemoryClientStateStore(max_entries=2)
    store.apply("a", _touch(1.0))
    store.apply("b", _touch(2.0))

    # Touch "a" so that "b" becomes least recently used
    store.apply("a", _touch(3.0))
    store.apply("c", _touch(4.0))

    assert store.get("a").last_call_time == 3.0
    assert store.get("c").last_call_time == 4.0
    assert store.get("b") == EMPTY_STATE
    assert store.stats()["evictions"] == 1


def test_slot_in_use_is_never_evicted() -> None:
    store = InMemoryClientStateStore(max_entries=1)
    inner_done = threading.Event()

    def _outer(state: ClientState):
        # While "a" is mid-transaction another token forces an eviction pass.
        worker = threading.Thread(
            target=lambda: (store.apply("b", _touch(2.0)), inner_done.set())
        )
        worker.start()
        worker.join()
        return state.with_last_call(1.0), None

    store.transact("a", _outer)

    assert inner_done.is_set()
    assert store.get("a").last_call_time == 1.0


def test_clear_resets_state(store: InMemoryClientStateStore) -> None:
    store.apply("a", _touch(1.0))
    store.apply("b", _touch(2.0))

    store.clear()

    stats = store.stats()
    assert stats["entries"] == 0
    assert stats["evictions"] == 0
    assert store.get("a") == EMPTY_STATE


def test_concurrent_applies_on_one_token_are_serialized(
    store: InMemoryClientStateStore,
) -> None:
    total = 200

    def _increment(state: ClientState) -> ClientState:
        current = state.last_call_time or 0.0
        return state.with_last_call(current + 1)

    threads = [threading.Thread(target=store.apply, args=("k", _increment)) for _ in range(total)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("k").last_call_time == float(total)


def test_token_without_state_does_not_evict_tracked_tokens() -> None:
    store = InMemoryClientStateStore(max_entries=1)
    store.apply("alice", _touch(1.0))

    store.apply("stranger", lambda s: s)

    assert store.stats()["evictions"] == 0
    assert store.get("alice").last_call_time == 1.0
    assert len(store) == 1


def test_eviction_removes_only_the_overflow() -> None:
    store = InMemoryClientStateStore(max_entries=2)
    for now, token in enumerate("abcd"):
        store.apply(token, _touch(float(now)))

    assert store.stats() == {"max_entries": 2, "entries": 2, "evictions": 2}
    assert store.get("a") == EMPTY_STATE
    assert store.get("b") == EMPTY_STATE
    assert store.get("c").last_call_time == 2.0
    assert store.get("d").last_call_time == 3.0
