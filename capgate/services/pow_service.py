import time
from collections.abc import Callable

from capgate.config import Settings
from capgate.exceptions import InvalidChallenge, StorageError
from capgate.logging_config import get_logger
from capgate.services.crypto_utils import generate_random_hex
from capgate.services.rate_limiter import RateLimiter, enforce_rate_limit
from capgate.storage.base import StorageAdapter

CHALLENGE_TOKEN_LENGTH = 50  # 200 bits

logger = get_logger(__name__)


class ChallengeEngine:
    """Issues proof-of-work challenge sets and records them in storage."""

    def __init__(
        self,
        storage: StorageAdapter,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage = storage
        self.settings = settings
        self.rate_limiter = rate_limiter
        self._clock = clock

    def create(self, identifier: str | None = None) -> dict:
        """
        Generate a challenge set bound to a fresh token.

        Count, salt size, difficulty and lifetime come from settings only, never
        from the request. Returns ``{"challenge": [[salt, target], ...],
        "token": str, "expires": ms}``.
        """
        enforce_rate_limit(self.rate_limiter, identifier)

        count = self.settings.challenge_count
        size = self.settings.challenge_size
        difficulty = self.settings.challenge_difficulty
        if count <= 0 or size <= 0 or difficulty <= 0 or self.settings.challenge_expires <= 0:
            raise InvalidChallenge("Challenge parameters must be positive")

        challenges = [
            [generate_random_hex(size), generate_random_hex(difficulty)] for _ in range(count)
        ]
        token = generate_random_hex(CHALLENGE_TOKEN_LENGTH)

        expires_at = int(self._clock()) + self.settings.challenge_expires
        expires_ms = expires_at * 1000

        data = {"challenge": challenges, "expires": expires_ms}
        if not self.storage.set_challenge(token, expires_at, data):
            raise StorageError("Failed to store challenge")

        logger.info(
            "challenge_created",
            challenge_count=count,
            difficulty=difficulty,
            expires_at=expires_at,
        )

        return {"challenge": challenges, "token": token, "expires": expires_ms}
