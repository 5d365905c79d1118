import time
from collections.abc import Callable

from capgate.config import Settings
from capgate.exceptions import ChallengeExpired, InvalidChallenge
from capgate.logging_config import get_logger
from capgate.services.crypto_utils import generate_random_hex, sha256_hex
from capgate.services.rate_limiter import RateLimiter, enforce_rate_limit
from capgate.services.solution_service import SolutionValidator
from capgate.storage.base import StorageAdapter

TOKEN_ID_LENGTH = 16
TOKEN_SECRET_LENGTH = 30

logger = get_logger(__name__)


def token_storage_key(token_id: str, secret: str) -> str:
    """Storage key for a verification token. Only the secret's hash is stored."""
    return f"{token_id}:{sha256_hex(secret)}"


class TokenManager:
    """Turns solved challenges into verification tokens and checks those tokens."""

    def __init__(
        self,
        storage: StorageAdapter,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        validator: SolutionValidator | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.validator = validator or SolutionValidator()
        self._clock = clock

    def redeem(self, token: str, solutions: list, identifier: str | None = None) -> dict:
        """
        Exchange a solved challenge for a verification token.

        The challenge record is swapped for the token record in one storage call;
        if another request consumed it first, this one fails with ChallengeExpired.
        """
        enforce_rate_limit(self.rate_limiter, identifier)

        missing_token = not isinstance(token, str) or not token
        missing_solutions = not isinstance(solutions, list) or not solutions
        if missing_token or missing_solutions:
            raise InvalidChallenge("Invalid solution body: missing token or solutions")

        record = self.storage.get_challenge(token)
        if record is None:
            raise ChallengeExpired("Challenge not found or already used")

        now = self._clock()
        if record.get("expires", 0) / 1000 < now:
            raise ChallengeExpired("Challenge expired")

        self.validator.validate(solutions, record.get("challenge") or [], token)

        token_id = generate_random_hex(TOKEN_ID_LENGTH)
        secret = generate_random_hex(TOKEN_SECRET_LENGTH)
        expires_at = int(now) + self.settings.token_expires

        if not self.storage.set_token(token_storage_key(token_id, secret), expires_at, token):
            logger.info("challenge_redeem_race_lost")
            raise ChallengeExpired("Challenge not found or already used")

        logger.info("challenge_redeemed", token_id=token_id, expires_at=expires_at)

        return {
            "success": True,
            "token": f"{token_id}:{secret}",
            "expires": expires_at * 1000,
        }

    def validate(
        self,
        token: str,
        keep_token: bool | None = None,
        identifier: str | None = None,
    ) -> dict:
        """
        Check a verification token.

        Consumes it unless ``keep_token`` is true (default: keep only when
        ``token_verify_once`` is off). Failures are returned, not raised.
        """
        enforce_rate_limit(self.rate_limiter, identifier)

        parts = token.split(":") if isinstance(token, str) else []
        if len(parts) != 2 or not all(parts):
            return {"success": False, "message": "Invalid token format"}

        token_id, secret = parts
        if keep_token is None:
            keep_token = not self.settings.token_verify_once

        expires_at = self.storage.get_token(
            token_storage_key(token_id, secret), delete=not keep_token, cleanup=True
        )

        if expires_at is None:
            logger.info("token_validated", token_id=token_id, success=False, reason="not_found")
            return {"success": False, "message": "Token not found"}

        if expires_at < self._clock():
            logger.info("token_validated", token_id=token_id, success=False, reason="expired")
            return {"success": False, "message": "Token expired"}

        logger.info("token_validated", token_id=token_id, success=True, kept=keep_token)
        return {"success": True}
