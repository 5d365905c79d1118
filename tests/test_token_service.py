"""Tests for redeeming challenges and validating verification tokens."""

import re
import time
from unittest.mock import MagicMock

import pytest

from capgate.exceptions import ChallengeExpired, InvalidChallenge, InvalidSolutions, RateLimited
from capgate.services.crypto_utils import sha256_hex
from capgate.services.pow_service import ChallengeEngine
from capgate.services.rate_limiter import RateLimiter
from capgate.services.token_service import TokenManager, token_storage_key
from tests.test_utils import find_wrong_nonce, solve_challenge_set

TOKEN_PATTERN = re.compile(r"^[0-9a-f]{16}:[0-9a-f]{30}$")


@pytest.fixture
def engine(memory_storage, test_settings):
    return ChallengeEngine(memory_storage, test_settings)


@pytest.fixture
def manager(memory_storage, test_settings):
    return TokenManager(memory_storage, test_settings)


@pytest.fixture
def issued(engine):
    """A fresh challenge plus a correct modern-format answer."""
    challenge = engine.create()
    return challenge, solve_challenge_set(challenge["challenge"])


class TestTokenStorageKey:
    def test_secret_is_hashed(self):
        key = token_storage_key("abcd", "secret")

        assert key == f"abcd:{sha256_hex('secret')}"
        assert "secret" not in key


class TestRedeem:
    """Tests for TokenManager.redeem."""

    def test_success(self, manager, issued, test_settings):
        challenge, solutions = issued
        before = int(time.time())

        result = manager.redeem(challenge["token"], solutions)

        assert result["success"] is True
        assert TOKEN_PATTERN.match(result["token"])
        assert result["expires"] % 1000 == 0
        assert result["expires"] >= (before + test_settings.token_expires) * 1000

    def test_challenge_consumed(self, manager, issued, memory_storage):
        challenge, solutions = issued

        manager.redeem(challenge["token"], solutions)

        assert memory_storage.get_challenge(challenge["token"]) is None

    def test_second_redeem_fails(self, manager, issued):
        challenge, solutions = issued
        manager.redeem(challenge["token"], solutions)

        with pytest.raises(ChallengeExpired):
            manager.redeem(challenge["token"], solutions)

    def test_only_secret_hash_stored(self, manager, issued, memory_storage):
        challenge, solutions = issued

        token_id, secret = manager.redeem(challenge["token"], solutions)["token"].split(":")

        assert memory_storage.get_token(token_storage_key(token_id, secret)) is not None
        assert memory_storage.get_token(f"{token_id}:{secret}") is None

    def test_unknown_challenge(self, manager):
        with pytest.raises(ChallengeExpired, match="not found"):
            manager.redeem("f" * 50, [[1]])

    def test_expired_challenge(self, memory_storage, test_settings):
        """A record whose embedded expiry has passed is rejected even if storage returns it."""
        now = time.time()
        memory_storage.set_challenge(
            "tok", int(now) + 60, {"challenge": [["aa", "b"]], "expires": (int(now) - 1) * 1000}
        )
        manager = TokenManager(memory_storage, test_settings)

        with pytest.raises(ChallengeExpired, match="expired"):
            manager.redeem("tok", [["aa", "b", 0]])

    @pytest.mark.parametrize(
        ("token", "solutions"),
        [
            ("", [[1]]),
            (None, [[1]]),
            ("tok", []),
            ("tok", None),
            ("tok", "1,2,3"),
        ],
    )
    def test_missing_fields(self, manager, token, solutions):
        with pytest.raises(InvalidChallenge):
            manager.redeem(token, solutions)

    def test_wrong_solution_keeps_challenge(self, manager, issued, memory_storage):
        """A failed attempt does not consume the challenge."""
        challenge, solutions = issued
        salt, target, _ = solutions[0]
        bad = [list(s) for s in solutions]
        bad[0] = [salt, target, find_wrong_nonce(salt, target)]

        with pytest.raises(InvalidSolutions):
            manager.redeem(challenge["token"], bad)

        assert memory_storage.get_challenge(challenge["token"]) is not None
        assert manager.redeem(challenge["token"], solutions)["success"] is True

    def test_legacy_format_accepted(self, manager, issued):
        challenge, solutions = issued

        result = manager.redeem(challenge["token"], [nonce for _, _, nonce in solutions])

        assert result["success"] is True

    def test_lost_race_reports_expired(self, test_settings):
        """When the atomic swap finds the challenge gone, redemption fails."""
        challenge_set = [["0123456789abcdef", "a"]]
        storage = MagicMock()
        storage.get_challenge.return_value = {
            "challenge": challenge_set,
            "expires": (int(time.time()) + 60) * 1000,
        }
        storage.set_token.return_value = False
        manager = TokenManager(storage, test_settings)

        with pytest.raises(ChallengeExpired):
            manager.redeem("tok", solve_challenge_set(challenge_set))

        storage.set_token.assert_called_once()

    def test_rate_limited(self, memory_storage, test_settings):
        manager = TokenManager(memory_storage, test_settings, rate_limiter=RateLimiter(1, 1))
        with pytest.raises(ChallengeExpired):
            manager.redeem("tok", [1], identifier="1.2.3.4")

        with pytest.raises(RateLimited):
            manager.redeem("tok", [1], identifier="1.2.3.4")


class TestValidate:
    """Tests for TokenManager.validate."""

    def test_valid_token_consumed_by_default(self, manager, issued):
        challenge, solutions = issued
        token = manager.redeem(challenge["token"], solutions)["token"]

        assert manager.validate(token) == {"success": True}
        assert manager.validate(token) == {"success": False, "message": "Token not found"}

    def test_keep_token(self, manager, issued):
        challenge, solutions = issued
        token = manager.redeem(challenge["token"], solutions)["token"]

        assert manager.validate(token, keep_token=True) == {"success": True}
        assert manager.validate(token, keep_token=True) == {"success": True}
        assert manager.validate(token) == {"success": True}
        assert manager.validate(token)["success"] is False

    def test_verify_once_disabled_keeps_by_default(self, memory_storage, test_settings, issued):
        test_settings.token_verify_once = False
        manager = TokenManager(memory_storage, test_settings)
        challenge, solutions = issued
        token = manager.redeem(challenge["token"], solutions)["token"]

        assert manager.validate(token)["success"] is True
        assert manager.validate(token)["success"] is True
        assert manager.validate(token, keep_token=False)["success"] is True
        assert manager.validate(token)["success"] is False

    @pytest.mark.parametrize(
        "token",
        ["", "nocolon", "a:b:c", ":secret", "id:", None, 42],
    )
    def test_invalid_format(self, manager, token):
        assert manager.validate(token) == {"success": False, "message": "Invalid token format"}

    def test_unknown_token(self, manager):
        result = manager.validate("0" * 16 + ":" + "0" * 30)

        assert result == {"success": False, "message": "Token not found"}

    def test_expired_token(self, test_settings):
        storage = MagicMock()
        storage.get_token.return_value = int(time.time()) - 5
        manager = TokenManager(storage, test_settings)

        result = manager.validate("abcd:efgh")

        assert result == {"success": False, "message": "Token expired"}

    def test_lookup_uses_hashed_key_and_sweeps(self, test_settings):
        storage = MagicMock()
        storage.get_token.return_value = None
        manager = TokenManager(storage, test_settings)

        manager.validate("abcd:efgh", keep_token=True)

        storage.get_token.assert_called_once_with(
            token_storage_key("abcd", "efgh"), delete=False, cleanup=True
        )

    def test_rate_limited(self, memory_storage, test_settings):
        manager = TokenManager(memory_storage, test_settings, rate_limiter=RateLimiter(1, 1))
        manager.validate("a:b", identifier="1.2.3.4")

        with pytest.raises(RateLimited):
            manager.validate("a:b", identifier="1.2.3.4")
