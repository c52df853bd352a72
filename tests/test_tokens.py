"""
tests/test_tokens.py -- Unit tests for auth/tokens.py: bcrypt hashing, JWT signing, reset tokens.

Coverage:
  - hash() never returns the plaintext and verify() round-trips
  - verify() treats malformed hashes as a mismatch
  - sign()/verify() carry the subject and a float iat
  - expired, tampered, and foreign-key tokens raise AuthenticationError with distinct codes
  - reset tokens: raw value differs from the stored hash, hash is deterministic
"""

import time

import pytest
from jose import jwt

from auth.tokens import PasswordHasher, TokenSigner, generate_reset_token, hash_reset_token
from core.errors import AuthenticationError

SECRET = "k" * 64


@pytest.fixture(scope="module")
def hasher() -> PasswordHasher:
    """Cheap bcrypt cost so the module stays fast."""
    return PasswordHasher(rounds=4)


class TestPasswordHasher:
    def test_hash_is_not_plaintext_and_verifies(self, hasher) -> None:
        """The hash hides the password and still verifies it."""
        hashed = hasher.hash("Passw0rd!")
        assert hashed != "Passw0rd!"
        assert hasher.verify("Passw0rd!", hashed) is True
        assert hasher.verify("wrong", hashed) is False

    def test_same_password_gets_distinct_salts(self, hasher) -> None:
        """Each hash gets its own salt."""
        assert hasher.hash("Passw0rd!") != hasher.hash("Passw0rd!")

    def test_malformed_hash_is_mismatch(self, hasher) -> None:
        """A stored value that is not bcrypt never matches."""
        assert hasher.verify("Passw0rd!", "not-a-bcrypt-hash") is False

    def test_equalize_does_not_raise(self, hasher) -> None:
        """The dummy comparison for unknown emails runs quietly."""
        hasher.equalize("anything")


class TestTokenSigner:
    def test_sign_and_verify(self) -> None:
        """A fresh token yields its subject and issue time."""
        signer = TokenSigner(SECRET, 60)
        before = time.time()
        claims = signer.verify(signer.sign(42))
        assert claims.subject == "42"
        assert before <= claims.issued_at <= time.time()

    def test_expired_token(self) -> None:
        """A negative lifetime gives expired_token."""
        signer = TokenSigner(SECRET, -10)
        with pytest.raises(AuthenticationError) as exc_info:
            signer.verify(signer.sign(1))
        assert exc_info.value.code == "expired_token"

    def test_token_signed_with_other_key(self) -> None:
        """A foreign signature is invalid_token."""
        token = TokenSigner("x" * 64, 60).sign(1)
        with pytest.raises(AuthenticationError) as exc_info:
            TokenSigner(SECRET, 60).verify(token)
        assert exc_info.value.code == "invalid_token"

    def test_garbage_token(self) -> None:
        """Unparseable input is invalid_token."""
        with pytest.raises(AuthenticationError) as exc_info:
            TokenSigner(SECRET, 60).verify("not.a.jwt")
        assert exc_info.value.code == "invalid_token"

    def test_missing_iat_rejected(self) -> None:
        """Tokens without iat cannot be checked against password changes."""
        token = jwt.encode({"sub": "1", "exp": time.time() + 60}, SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError):
            TokenSigner(SECRET, 60).verify(token)


class TestResetTokens:
    def test_only_hash_is_stored(self) -> None:
        """The stored value is the sha256 of the raw token."""
        raw, stored = generate_reset_token()
        assert raw != stored
        assert hash_reset_token(raw) == stored
        assert len(stored) == 64

    def test_tokens_are_unique(self) -> None:
        """Two reset tokens never collide."""
        assert generate_reset_token()[0] != generate_reset_token()[0]
