import threading
import time
from collections.abc import Callable

from capgate.storage.base import StorageAdapter


class MemoryStorage(StorageAdapter):
    """In-process storage. State is lost on restart and not shared across workers."""

    def __init__(self, cleanup_interval: int = 300, clock: Callable[[], float] = time.time) -> None:
        self._challenges: dict[str, tuple[int, dict]] = {}
        self._tokens: dict[str, int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.cleanup_interval = cleanup_interval
        self.last_cleanup = int(clock())

    def set_challenge(self, token: str, expires_at: int, data: dict) -> bool:
        with self._lock:
            self._challenges[token] = (expires_at, data)
            self._maybe_cleanup()
        return True

    def get_challenge(self, token: str) -> dict | None:
        with self._lock:
            entry = self._challenges.get(token)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at < self._clock():
                del self._challenges[token]
                return None
            return data

    def set_token(self, key: str, expires_at: int, challenge_token: str) -> bool:
        with self._lock:
            if self._challenges.pop(challenge_token, None) is None:
                return False
            self._tokens[key] = expires_at
            self._maybe_cleanup()
        return True

    def get_token(self, key: str, delete: bool = False, cleanup: bool = False) -> int | None:
        with self._lock:
            if cleanup:
                self._sweep()
            if delete:
                return self._tokens.pop(key, None)
            return self._tokens.get(key)

    def cleanup(self) -> bool:
        with self._lock:
            self._sweep()
        return True

    def is_available(self) -> bool:
        return True

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "challenges_count": len(self._challenges),
                "tokens_count": len(self._tokens),
                "last_cleanup": self.last_cleanup,
                "cleanup_interval": self.cleanup_interval,
            }

    def clear(self) -> None:
        with self._lock:
            self._challenges.clear()
            self._tokens.clear()

    def _maybe_cleanup(self) -> None:
        # Caller holds the lock
        if self._clock() - self.last_cleanup >= self.cleanup_interval:
            self._sweep()

    def _sweep(self) -> None:
        now = self._clock()
        for token in [t for t, (exp, _) in self._challenges.items() if exp < now]:
            del self._challenges[token]
        for key in [k for k, exp in self._tokens.items() if exp < now]:
            del self._tokens[key]
        self.last_cleanup = int(now)
