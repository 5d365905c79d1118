import time
from collections.abc import Callable

from capgate.config import Settings
from capgate.exceptions import StorageError, StorageNotDefined
from capgate.logging_config import get_logger
from capgate.services.pow_service import ChallengeEngine
from capgate.services.rate_limiter import RateLimiter
from capgate.services.token_service import TokenManager
from capgate.storage.base import StorageAdapter
from capgate.storage.factory import build_storage

logger = get_logger(__name__)


class CapService:
    """
    Public protocol surface: create, redeem, validate.

    Every operation takes an optional caller identifier (client address); when
    given, the shared token-bucket limiter is consulted before any other work.
    """

    def __init__(
        self,
        storage: StorageAdapter | None,
        settings: Settings,
        rate_limiter: RateLimiter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if storage is None:
            raise StorageNotDefined()

        if rate_limiter is None and settings.rate_limit_rps > 0 and settings.rate_limit_burst > 0:
            rate_limiter = RateLimiter(settings.rate_limit_rps, settings.rate_limit_burst)

        self.storage = storage
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.challenges = ChallengeEngine(storage, settings, rate_limiter, clock=clock)
        self.tokens = TokenManager(storage, settings, rate_limiter, clock=clock)

    def create_challenge(self, identifier: str | None = None) -> dict:
        return self.challenges.create(identifier)

    def redeem_challenge(self, token: str, solutions: list, identifier: str | None = None) -> dict:
        return self.tokens.redeem(token, solutions, identifier)

    def validate_token(
        self,
        token: str,
        keep_token: bool | None = None,
        identifier: str | None = None,
    ) -> dict:
        return self.tokens.validate(token, keep_token=keep_token, identifier=identifier)

    def cleanup(self) -> bool:
        """Sweep expired records. Failures are logged, not raised."""
        try:
            return self.storage.cleanup()
        except StorageError as e:
            logger.warning("storage_cleanup_failed", error=str(e))
            return False

    def sweep_rate_limits(self, max_age: int | None = None) -> int:
        """Forget buckets idle for longer than ``max_age`` seconds."""
        if self.rate_limiter is None:
            return 0
        if max_age is None:
            max_age = self.settings.rate_limit_bucket_max_age
        return self.rate_limiter.cleanup(max_age)

    def is_available(self) -> bool:
        return self.storage.is_available()

    def get_config(self) -> dict:
        return {
            "challengeCount": self.settings.challenge_count,
            "challengeSize": self.settings.challenge_size,
            "challengeDifficulty": self.settings.challenge_difficulty,
            "challengeExpires": self.settings.challenge_expires,
            "tokenExpires": self.settings.token_expires,
            "tokenVerifyOnce": self.settings.token_verify_once,
            "rateLimitRps": self.settings.rate_limit_rps,
            "rateLimitBurst": self.settings.rate_limit_burst,
        }

    def get_stats(self) -> dict:
        stats = {
            "storage_type": type(self.storage).__name__,
            "rate_limiter_enabled": self.rate_limiter is not None,
            "config": self.get_config(),
        }

        # Optional on adapters
        get_storage_stats = getattr(self.storage, "get_stats", None)
        if get_storage_stats is not None:
            stats["storage_stats"] = get_storage_stats()

        if self.rate_limiter is not None:
            stats["rate_limiter_stats"] = {
                **self.rate_limiter.get_limits(),
                "buckets": self.rate_limiter.bucket_count(),
            }

        return stats


def build_cap_service(settings: Settings) -> CapService:
    return CapService(build_storage(settings), settings)
