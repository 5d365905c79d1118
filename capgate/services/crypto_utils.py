import hashlib
import math
import secrets

from capgate.exceptions import GenerationError


def generate_random_hex(length: int) -> str:
    """Return ``length`` hex chars from the OS CSPRNG."""
    if length <= 0:
        return ""

    try:
        raw = secrets.token_hex(math.ceil(length / 2))
    except (OSError, NotImplementedError) as e:
        raise GenerationError(f"Failed to generate random hex: {e}") from e

    return raw[:length]


def sha256_hex(value: str) -> str:
    """Hex SHA-256 of a UTF-8 string."""
    return hashlib.sha256(value.encode()).hexdigest()
