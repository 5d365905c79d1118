from fastapi import APIRouter, Depends, Request

from capgate.config import settings
from capgate.dependencies import get_cap_service
from capgate.middleware.rate_limit import get_real_client_ip, limiter
from capgate.schemas.challenge import (
    ChallengeResponse,
    ErrorResponse,
    RedeemRequest,
    RedeemResponse,
    ValidateRequest,
    ValidateResponse,
)
from capgate.services.cap_service import CapService

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "/challenge",
    response_model=ChallengeResponse,
    status_code=201,
    responses=ERROR_RESPONSES,
)
def create_challenge(request: Request, cap: CapService = Depends(get_cap_service)):
    """
    Request a proof-of-work challenge set.

    The client must find, for every [salt, target] pair, a nonce such that
    sha256(salt + nonce) starts with target, then call /redeem.
    """
    return cap.create_challenge(identifier=get_real_client_ip(request))


@router.post("/redeem", response_model=RedeemResponse, responses=ERROR_RESPONSES)
def redeem_challenge(
    request: Request,
    body: RedeemRequest,
    cap: CapService = Depends(get_cap_service),
):
    """Submit solutions for a challenge and receive a one-time verification token."""
    return cap.redeem_challenge(
        body.token,
        body.solutions,
        identifier=get_real_client_ip(request),
    )


@router.post(
    "/validate",
    response_model=ValidateResponse,
    response_model_exclude_none=True,
    responses={429: {"model": ErrorResponse}},
)
def validate_token(
    request: Request,
    body: ValidateRequest,
    cap: CapService = Depends(get_cap_service),
):
    """
    Check a verification token (called by the protected application's backend).

    Unknown, expired or malformed tokens return success=false with HTTP 200.
    """
    return cap.validate_token(
        body.token,
        keep_token=body.keep_token,
        identifier=get_real_client_ip(request),
    )


@router.get("/stats")
@limiter.limit(settings.rate_limit_stats)
def get_stats(request: Request, cap: CapService = Depends(get_cap_service)):
    """Storage, limiter and configuration snapshot for operators."""
    return cap.get_stats()
