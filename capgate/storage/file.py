import json
import os
import tempfile
import threading
import time
from collections.abc import Callable
from pathlib import Path

from capgate.exceptions import StorageError
from capgate.logging_config import get_logger
from capgate.storage.base import StorageAdapter

logger = get_logger(__name__)


class FileStorage(StorageAdapter):
    """
    JSON file storage.

    State is re-read before every operation and written back atomically
    (temp file + rename), so several processes see each other's writes. The
    challenge-to-token swap is atomic only within one process; run a single
    worker, or use the SQL or Redis backend, when strict at-most-once
    redemption across processes matters.

    File layout::

        {"challengesList": {token: {"challenge": [...], "expires": ms}},
         "tokensList": {key: expires_ms}}
    """

    def __init__(
        self,
        path: str = ".data/cap_storage.json",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.path = Path(path)
        self._clock = clock
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.path.parent}: {e}") from e

    def set_challenge(self, token: str, expires_at: int, data: dict) -> bool:
        with self._lock:
            state = self._load()
            state["challengesList"][token] = data
            self._save(state)
        return True

    def get_challenge(self, token: str) -> dict | None:
        with self._lock:
            data = self._load()["challengesList"].get(token)
        if data is None or data.get("expires", 0) < self._now_ms():
            return None
        return data

    def set_token(self, key: str, expires_at: int, challenge_token: str) -> bool:
        with self._lock:
            state = self._load()
            if state["challengesList"].pop(challenge_token, None) is None:
                return False
            state["tokensList"][key] = expires_at * 1000
            self._save(state)
        return True

    def get_token(self, key: str, delete: bool = False, cleanup: bool = False) -> int | None:
        with self._lock:
            state = self._load()
            changed = self._sweep(state) if cleanup else False

            expires_ms = state["tokensList"].get(key)
            if expires_ms is not None and delete:
                del state["tokensList"][key]
                changed = True

            if changed:
                self._save(state)

        if expires_ms is None:
            return None
        return int(expires_ms // 1000)

    def cleanup(self) -> bool:
        with self._lock:
            state = self._load()
            if self._sweep(state):
                self._save(state)
        return True

    def is_available(self) -> bool:
        return os.access(self.path.parent, os.W_OK)

    def get_stats(self) -> dict:
        with self._lock:
            state = self._load()
        return {
            "challenges_count": len(state["challengesList"]),
            "tokens_count": len(state["tokensList"]),
            "path": str(self.path),
        }

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _sweep(self, state: dict) -> bool:
        now_ms = self._now_ms()
        expired_challenges = [
            t for t, d in state["challengesList"].items() if d.get("expires", 0) < now_ms
        ]
        expired_tokens = [k for k, exp in state["tokensList"].items() if exp < now_ms]
        for token in expired_challenges:
            del state["challengesList"][token]
        for key in expired_tokens:
            del state["tokensList"][key]
        return bool(expired_challenges or expired_tokens)

    def _load(self) -> dict:
        state = {"challengesList": {}, "tokensList": {}}
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return state
        except OSError as e:
            logger.error("storage_read_failed", backend="file", path=str(self.path), error=str(e))
            raise StorageError(f"Failed to read storage file: {e}") from e

        if not content:
            return state
        try:
            decoded = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("storage_file_corrupt", path=str(self.path))
            return state
        if isinstance(decoded, dict):
            state["challengesList"].update(decoded.get("challengesList") or {})
            state["tokensList"].update(decoded.get("tokensList") or {})
        return state

    def _save(self, state: dict) -> None:
        tmp_path = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".cap-", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            logger.error("storage_write_failed", backend="file", path=str(self.path), error=str(e))
            raise StorageError(f"Failed to write storage file: {e}") from e
