"""Storage contract shared by every persistence backend.

Records are keyed by string. Challenge records carry a JSON-serializable dict
(``{"challenge": [[salt, target], ...], "expires": ms}``); token records carry
only their expiry timestamp in seconds.

Return values signal protocol outcomes (``False`` from ``set_token`` means the
challenge was already consumed). Backend failures raise ``StorageError``.
"""

from abc import ABC, abstractmethod


class StorageAdapter(ABC):
    @abstractmethod
    def set_challenge(self, token: str, expires_at: int, data: dict) -> bool:
        """Store a pending challenge under ``token``."""

    @abstractmethod
    def get_challenge(self, token: str) -> dict | None:
        """Return challenge data, or None if absent or expired."""

    @abstractmethod
    def set_token(self, key: str, expires_at: int, challenge_token: str) -> bool:
        """
        Atomically replace the challenge ``challenge_token`` with a token record.

        Must return False, and store nothing, when the challenge no longer exists.
        """

    @abstractmethod
    def get_token(self, key: str, delete: bool = False, cleanup: bool = False) -> int | None:
        """
        Return the token's expiry (seconds) or None if unknown.

        With ``delete`` the record is consumed; two concurrent consuming reads
        must not both see it. With ``cleanup`` expired records are swept first.
        """

    @abstractmethod
    def cleanup(self) -> bool:
        """Best-effort sweep of expired records."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is reachable and writable."""
