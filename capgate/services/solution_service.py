"""
Solution normalization and verification.

Clients in the wild submit solutions in three shapes:

- ``[salt, target, value]`` (current widget)
- ``[salt, value]`` (older widget; target comes from the stored challenge)
- ``[value, value, ...]`` (oldest widget; position i answers challenge i)

Each entry is normalized once into a tagged variant, then every challenge in
the stored set is checked against ``sha256(salt + str(value))``.
"""

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from capgate.exceptions import InvalidSolutions
from capgate.logging_config import get_logger
from capgate.services.crypto_utils import sha256_hex

logger = get_logger(__name__)

LEGACY_INDEX_KEY = "_legacy_index_{}"

_NUMERIC_STRING = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?\s*$")

Number = int | float


@dataclass(frozen=True)
class LegacyPositional:
    index: int
    value: Number | str

    @property
    def lookup_key(self) -> str:
        return LEGACY_INDEX_KEY.format(self.index)


@dataclass(frozen=True)
class SaltOnly:
    salt: str
    value: Number | str

    @property
    def lookup_key(self) -> str:
        return self.salt


@dataclass(frozen=True)
class SaltAndTarget:
    salt: str
    target: str
    value: Number | str

    @property
    def lookup_key(self) -> str:
        return self.salt


Solution = LegacyPositional | SaltOnly | SaltAndTarget


def _is_number(value) -> bool:
    # bool is an int subclass but never a valid nonce
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_numeric(value) -> bool:
    if _is_number(value):
        return True
    return isinstance(value, str) and bool(_NUMERIC_STRING.match(value))


def _is_solution_value(value) -> bool:
    return _is_number(value) or isinstance(value, str)


def stringify_solution(value: Number | str) -> str:
    """
    Render a nonce the way a JavaScript client does before hashing.

    ``7`` and ``7.0`` both become ``"7"``; strings pass through untouched.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, int):
        return str(value)

    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))

    text = repr(value)
    if "e" not in text:
        return text

    mantissa, exponent = text.split("e")
    exp = int(exponent)
    # JS switches to exponent notation only outside [1e-7, 1e21)
    if -7 < exp < 21:
        return format(Decimal(text), "f")
    return f"{mantissa}e{'+' if exp > 0 else '-'}{abs(exp)}"


def normalize_solutions(solutions: Sequence) -> list[Solution]:
    """Turn raw wire entries into variants. Unrecognized entries are dropped."""
    normalized: list[Solution] = []

    for index, entry in enumerate(solutions):
        if isinstance(entry, (list, tuple)):
            if len(entry) == 2 and isinstance(entry[0], str) and _is_solution_value(entry[1]):
                normalized.append(SaltOnly(salt=entry[0], value=entry[1]))
                continue
            if (
                len(entry) == 3
                and isinstance(entry[0], str)
                and isinstance(entry[1], str)
                and _is_solution_value(entry[2])
            ):
                normalized.append(SaltAndTarget(salt=entry[0], target=entry[1], value=entry[2]))
                continue
        elif _is_numeric(entry):
            normalized.append(LegacyPositional(index=index, value=entry))
            continue

        logger.debug("solution_entry_ignored", index=index, entry_type=type(entry).__name__)

    return normalized


def check_solution(salt: str, target: str, value: Number | str) -> bool:
    return sha256_hex(salt + stringify_solution(value)).startswith(target)


class SolutionValidator:
    def validate(self, solutions: Sequence, challenge_set: Sequence, context_token: str) -> None:
        """
        Verify ``solutions`` against every challenge in ``challenge_set``.

        Raises InvalidSolutions naming the first challenge index that fails.
        Salts and targets go to the debug log only.
        """
        if not challenge_set:
            raise InvalidSolutions("Challenge set is empty")

        lookup = {solution.lookup_key: solution for solution in normalize_solutions(solutions)}

        for index, (salt, target) in enumerate(challenge_set):
            solution = lookup.get(salt) or lookup.get(LEGACY_INDEX_KEY.format(index))

            if solution is None:
                self._reject(context_token, index, salt, target, reason="missing")

            if isinstance(solution, SaltAndTarget) and solution.target != target:
                self._reject(context_token, index, salt, target, reason="target_mismatch")

            if not check_solution(salt, target, solution.value):
                self._reject(
                    context_token,
                    index,
                    salt,
                    target,
                    reason="hash_mismatch",
                    solution_format=type(solution).__name__,
                    value=stringify_solution(solution.value),
                )

    @staticmethod
    def _reject(context_token: str, index: int, salt: str, target: str, *, reason: str, **extra):
        logger.debug(
            "solution_rejected",
            challenge_token=context_token,
            challenge_index=index,
            salt=salt,
            target=target,
            reason=reason,
            **extra,
        )
        raise InvalidSolutions(f"Invalid solution for challenge {index}", challenge_index=index)
