"""Pydantic schemas for the admission check endpoint."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from rate_gate.services.rules import Decision


class AdmissionCheckRequest(BaseModel):
    """Request to decide one admission."""

    token: str = Field(
        ..., min_length=1, description="Opaque client token identifying the caller."
    )
    resource_id: str = Field(
        ..., min_length=1, description="Identifier of the protected resource."
    )


class AdmissionDecisionResponse(BaseModel):
    """Admission outcome returned to the calling resource handler."""

    admitted: bool = Field(..., description="Whether the request may proceed.")
    retry_after_seconds: float | None = Field(
        default=None,
        description=(
            "Advisory wait before retrying; only set for denials that a wait can clear."
        ),
    )
    denied_by: List[str] = Field(
        default_factory=list,
        description="Rules that denied the request (empty when admitted).",
    )

    @classmethod
    def from_decision(cls, decision: Decision) -> AdmissionDecisionResponse:
        return cls(
            admitted=decision.admitted,
            retry_after_seconds=decision.retry_after,
            denied_by=list(decision.denied_by),
        )
