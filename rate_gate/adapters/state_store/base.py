"""Client state model and store interface.

State values are immutable. A store only ever swaps one ``ClientState`` for
another, so a snapshot handed to rule evaluation can never change underneath
it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Callable, Mapping, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class WindowState:
    """Counter of admitted calls within one fixed window.

    Attributes:
        start: Timestamp (seconds) at which the window opened.
        count: Admitted calls inside ``[start, start + window)``.
    """

    start: float
    count: int


@dataclass(frozen=True)
class ClientState:
    """Per-token admission state.

    Attributes:
        last_call_time: Timestamp of the last admitted call, None before the first.
        windows: Fixed-window counters keyed by the owning rule's state key.
    """

    last_call_time: float | None = None
    windows: Mapping[str, WindowState] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def window(self, key: str) -> WindowState | None:
        return self.windows.get(key)

    def with_last_call(self, now: float) -> ClientState:
        return replace(self, last_call_time=now)

    def with_window(self, key: str, window: WindowState) -> ClientState:
        """Return a copy with the counter for ``key`` replaced."""

        windows = dict(self.windows)
        windows[key] = window
        return replace(self, windows=MappingProxyType(windows))

    def is_empty(self) -> bool:
        return self.last_call_time is None and not self.windows


EMPTY_STATE = ClientState()

Mutation = Callable[[ClientState], ClientState]


class AbstractClientStateStore(ABC):
    """Interface for per-token state stores.

    Implementations must serialize ``transact``/``apply`` per token: while a
    transaction for a token runs, no other transaction for that token may
    read its state.
    """

    @abstractmethod
    def get(self, token: str) -> ClientState:
        """Return the committed state for ``token`` (empty when unseen)."""
        raise NotImplementedError

    @abstractmethod
    def transact(
        self,
        token: str,
        fn: Callable[[ClientState], tuple[ClientState, T]],
    ) -> T:
        """Run ``fn`` on the current state under the token's exclusive lock.

        Args:
            token: Client token identifying the state slot.
            fn: Pure function receiving the current state and returning the
                state to store together with a result for the caller.

        Returns:
            Whatever ``fn`` returned as its result.
        """
        raise NotImplementedError

    def apply(self, token: str, mutation: Mutation) -> ClientState:
        """Atomically replace the state for ``token`` with ``mutation(state)``.

        Returns:
            The newly stored state.
        """

        def _run(state: ClientState) -> tuple[ClientState, ClientState]:
            new_state = mutation(state)
            return new_state, new_state

        return self.transact(token, _run)
