from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChallengeResponse(BaseModel):
    challenge: list[list[str]] = Field(..., description="Ordered [salt, target] pairs")
    token: str
    expires: int = Field(..., description="Expiry as unix milliseconds")


class RedeemRequest(BaseModel):
    token: str = Field(..., min_length=1)
    # Shape varies by client version; normalized by the solution validator
    solutions: list[Any] = Field(..., min_length=1)


class RedeemResponse(BaseModel):
    success: bool
    token: str
    expires: int


class ValidateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token: str = Field(..., min_length=1)
    keep_token: bool | None = Field(None, alias="keepToken")


class ValidateResponse(BaseModel):
    success: bool
    message: str | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: int
