from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from rate_gate.core.rate_limit import get_rate_limiter
from rate_gate.schemas.admission import AdmissionCheckRequest, AdmissionDecisionResponse
from rate_gate.services.rate_limiter import RateLimiter

router = APIRouter(tags=["Admission"])


@router.post("/admission/check", response_model=AdmissionDecisionResponse)
async def check_admission(
    payload: AdmissionCheckRequest,
    limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> AdmissionDecisionResponse:
    """Decide whether a client may access a resource right now.

    A denial is a normal outcome and is returned with HTTP 200; callers map
    ``admitted=false`` to their own rejection (typically 429 with
    ``Retry-After: retry_after_seconds``).

    Args:
        payload: Token and resource to check.
        limiter: Application rate limiter.

    Returns:
        AdmissionDecisionResponse: The decision.
    """
    decision = limiter.check_now(payload.token, payload.resource_id)
    return AdmissionDecisionResponse.from_decision(decision)
