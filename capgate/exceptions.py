"""Typed errors raised by the challenge/token protocol engine."""


class CapError(Exception):
    """Base class for protocol errors.

    Each subclass carries a stable numeric ``code`` and a default message so the
    transport layer can map it to a status without string matching.
    """

    code: int = 0
    default_message: str = "Unknown error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidChallenge(CapError):
    code = 1
    default_message = "Invalid challenge body"


class ChallengeExpired(CapError):
    code = 2
    default_message = "Challenge expired"


class InvalidSolutions(CapError):
    code = 3
    default_message = "Invalid solutions"

    def __init__(self, message: str | None = None, challenge_index: int | None = None) -> None:
        super().__init__(message)
        self.challenge_index = challenge_index


class StorageError(CapError):
    code = 4
    default_message = "Storage operation failed"


class RateLimited(CapError):
    code = 5
    default_message = "Rate limit exceeded"


class GenerationError(CapError):
    code = 6
    default_message = "Generate random string failed"


class StorageNotDefined(CapError):
    code = 7
    default_message = "Storage not defined"
