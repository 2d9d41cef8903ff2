"""Application-level exception types.

A denied request is not an error: it is an ordinary ``Decision``. Exceptions
are reserved for misuse of the configuration surface and invalid input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    code: str
    message: str
    hint: str
    rule: str
    parameter: str
    actual_value: Any
    rule_set: str
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input fails validation."""


class ConfigurationError(AppError):
    """Raised when a rule or policy registration is invalid.

    Registration is atomic: when this is raised nothing from the offending
    call has been installed.
    """
