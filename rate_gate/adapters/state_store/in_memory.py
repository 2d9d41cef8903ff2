"""In-memory client state store with per-token locking.

Notes:
- Per-process only: running multiple workers gives each worker its own state.
- Thread-safe: a short registry lock guards the slot map, and every token has
  its own lock for the read-modify-write, so unrelated tokens never wait on
  each other during evaluation.
- Optional LRU cap: only tokens holding non-empty state count towards
  ``max_entries``. Eviction runs when a token first commits state and removes
  the least recently used idle tokens; a slot held by an in-flight
  transaction is never evicted.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from rate_gate.adapters.state_store.base import (
    EMPTY_STATE,
    AbstractClientStateStore,
    ClientState,
)
from rate_gate.core.logging import hash_token

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Slot:
    state: ClientState = EMPTY_STATE
    lock: threading.Lock = field(default_factory=threading.Lock)
    # Transactions that have claimed this slot and not yet released it.
    users: int = 0
    # Whether the slot holds state and counts towards max_entries.
    counted: bool = False


class InMemoryClientStateStore(AbstractClientStateStore):
    """Client state store keeping every token's state in process memory.

    Attributes:
        max_entries: Maximum number of tracked tokens (None for unlimited).
    """

    def __init__(self, *, max_entries: int | None = None) -> None:
        """Initialize the store.

        Args:
            max_entries: Optional cap on tracked tokens.

        Raises:
            ValueError: If max_entries is not a positive integer.
        """
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be >= 1")

        self._max_entries = max_entries
        self._registry_lock = threading.Lock()
        self._slots: OrderedDict[str, _Slot] = OrderedDict()
        self._tracked = 0
        self._evictions = 0

    def __len__(self) -> int:
        with self._registry_lock:
            return self._tracked

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryClientStateStore(max_entries={self._max_entries}, "
            f"size={self._tracked}, evictions={self._evictions})"
        )

    def get(self, token: str) -> ClientState:
        """Return the committed state for ``token``.

        Unseen tokens yield the empty state; no slot is created for them.
        """

        with self._registry_lock:
            slot = self._slots.get(token)
            if slot is None:
                return EMPTY_STATE
            slot.users += 1

        try:
            with slot.lock:
                return slot.state
        finally:
            self._release(token, slot)

    def transact(
        self,
        token: str,
        fn: Callable[[ClientState], tuple[ClientState, T]],
    ) -> T:
        """Run ``fn`` against the token's state while holding its lock.

        Args:
            token: Client token.
            fn: Function returning ``(new_state, result)`` for the current state.

        Returns:
            The result produced by ``fn``.

        Raises:
            ValueError: If token is empty.
        """
        if not token:
            raise ValueError("token must be a non-empty string")

        slot = self._claim(token)
        try:
            with slot.lock:
                new_state, result = fn(slot.state)
                if new_state is not slot.state:
                    slot.state = new_state
                return result
        finally:
            self._release(token, slot)

    def clear(self) -> None:
        """Drop every tracked token and reset counters."""

        with self._registry_lock:
            self._slots.clear()
            self._tracked = 0
            self._evictions = 0

    def stats(self) -> dict[str, int | None]:
        """Return lightweight store metrics without exposing tokens."""

        with self._registry_lock:
            return {
                "max_entries": self._max_entries,
                "entries": self._tracked,
                "evictions": self._evictions,
            }

    def _claim(self, token: str) -> _Slot:
        with self._registry_lock:
            slot = self._slots.get(token)
            if slot is None:
                slot = _Slot()
                self._slots[token] = slot
            else:
                self._slots.move_to_end(token)  # mark as recently used
            slot.users += 1
            return slot

    def _release(self, token: str, slot: _Slot) -> None:
        with self._registry_lock:
            slot.users -= 1
            if self._slots.get(token) is not slot:
                return  # dropped by clear() while in use

            holds_state = not slot.state.is_empty()
            if holds_state == slot.counted:
                if slot.users == 0 and not holds_state:
                    del self._slots[token]
                return

            slot.counted = holds_state
            if not holds_state:
                self._tracked -= 1
                if slot.users == 0:
                    del self._slots[token]
                return

            # Only a token that just started holding state can push the store
            # over capacity.
            self._tracked += 1
            self._evict_if_over_capacity_locked(keep=token)

    def _evict_if_over_capacity_locked(self, keep: str) -> None:
        if self._max_entries is None:
            return

        overflow = self._tracked - self._max_entries
        if overflow <= 0:
            return

        # Oldest first; slots in use by a transaction are skipped.
        victims: list[str] = []
        for key, slot in self._slots.items():
            if key != keep and slot.counted and slot.users == 0:
                victims.append(key)
                if len(victims) == overflow:
                    break

        for key in victims:
            del self._slots[key]
            self._tracked -= 1
            self._evictions += 1
            logger.debug(
                "state_store.evicted",
                extra={"token_hash": hash_token(key), "size": self._tracked},
            )
