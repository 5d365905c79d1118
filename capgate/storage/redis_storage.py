import json

import redis

from capgate.exceptions import StorageError
from capgate.logging_config import get_logger
from capgate.storage.base import StorageAdapter

logger = get_logger(__name__)

DEFAULT_PREFIX = "cap:"

# KEYS[1] challenge key, KEYS[2] token key, ARGV[1] token expiry (unix seconds)
SWAP_CHALLENGE_FOR_TOKEN = """
if redis.call('DEL', KEYS[1]) == 1 then
    redis.call('SET', KEYS[2], ARGV[1])
    redis.call('EXPIREAT', KEYS[2], ARGV[1])
    return 1
end
return 0
"""


class RedisStorage(StorageAdapter):
    """
    Redis storage with one key per record and native expiry.

    Keys: ``{prefix}challenge:{token}`` holds the JSON challenge payload,
    ``{prefix}token:{id}:{hash}`` holds the token expiry. Redis evicts both at
    their expiry time, so ``cleanup()`` has nothing to do.
    """

    def __init__(self, client: redis.Redis, prefix: str = DEFAULT_PREFIX) -> None:
        self._redis = client
        self.prefix = prefix
        self._swap = client.register_script(SWAP_CHALLENGE_FOR_TOKEN)

    @classmethod
    def from_url(cls, url: str, prefix: str = DEFAULT_PREFIX) -> "RedisStorage":
        return cls(redis.Redis.from_url(url), prefix=prefix)

    def _challenge_key(self, token: str) -> str:
        return f"{self.prefix}challenge:{token}"

    def _token_key(self, key: str) -> str:
        return f"{self.prefix}token:{key}"

    def set_challenge(self, token: str, expires_at: int, data: dict) -> bool:
        try:
            stored = self._redis.set(self._challenge_key(token), json.dumps(data), exat=expires_at)
            return bool(stored)
        except redis.RedisError as e:
            self._fail("set_challenge", e)

    def get_challenge(self, token: str) -> dict | None:
        try:
            raw = self._redis.get(self._challenge_key(token))
        except redis.RedisError as e:
            self._fail("get_challenge", e)
        if raw is None:
            return None
        return json.loads(raw)

    def set_token(self, key: str, expires_at: int, challenge_token: str) -> bool:
        try:
            swapped = self._swap(
                keys=[self._challenge_key(challenge_token), self._token_key(key)],
                args=[expires_at],
            )
        except redis.RedisError as e:
            self._fail("set_token", e)
        return int(swapped) == 1

    def get_token(self, key: str, delete: bool = False, cleanup: bool = False) -> int | None:
        token_key = self._token_key(key)
        try:
            raw = self._redis.getdel(token_key) if delete else self._redis.get(token_key)
        except redis.RedisError as e:
            self._fail("get_token", e)
        if raw is None:
            return None
        return int(raw)

    def cleanup(self) -> bool:
        return True

    def is_available(self) -> bool:
        try:
            return bool(self._redis.ping())
        except redis.RedisError:
            return False

    def get_stats(self) -> dict:
        try:
            challenges = sum(1 for _ in self._redis.scan_iter(match=f"{self.prefix}challenge:*"))
            tokens = sum(1 for _ in self._redis.scan_iter(match=f"{self.prefix}token:*"))
        except redis.RedisError as e:
            self._fail("get_stats", e)
        return {"challenges_count": challenges, "tokens_count": tokens, "prefix": self.prefix}

    def close(self) -> None:
        self._redis.close()

    @staticmethod
    def _fail(operation: str, error: Exception):
        logger.error("storage_error", backend="redis", operation=operation, error=str(error))
        raise StorageError(f"Redis storage {operation} failed") from error
