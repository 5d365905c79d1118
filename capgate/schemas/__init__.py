from capgate.schemas.challenge import (
    ChallengeResponse,
    ErrorResponse,
    RedeemRequest,
    RedeemResponse,
    ValidateRequest,
    ValidateResponse,
)

__all__ = [
    "ChallengeResponse",
    "ErrorResponse",
    "RedeemRequest",
    "RedeemResponse",
    "ValidateRequest",
    "ValidateResponse",
]
