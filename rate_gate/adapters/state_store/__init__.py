"""Client state storage adapters.

The rate limiter depends on the abstract store only, so the in-memory
implementation can be replaced without touching rule evaluation.
"""

from rate_gate.adapters.state_store.base import (
    EMPTY_STATE,
    AbstractClientStateStore,
    ClientState,
    Mutation,
    WindowState,
)
from rate_gate.adapters.state_store.in_memory import InMemoryClientStateStore

__all__ = [
    "EMPTY_STATE",
    "AbstractClientStateStore",
    "ClientState",
    "InMemoryClientStateStore",
    "Mutation",
    "WindowState",
]
