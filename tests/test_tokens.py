"""Credential encoder: signing, verification order, and token kinds."""
import base64
import json

import pytest

from conftest import ACCESS_SECRET, REFRESH_SECRET, FakeClock
from sessionkeeper.service.errors import (
    TokenExpiredError,
    TokenInvalidError,
    TokenKindMismatchError,
)
from sessionkeeper.service.tokens import (
    ACCESS,
    REFRESH,
    CredentialEncoder,
    extract_bearer,
    hash_token,
    new_token_id,
)


def _encoder(clock, **kwargs):
    params = {
        "access_ttl_seconds": 900,
        "refresh_ttl_seconds": 604800,
        "issuer": "sessionkeeper-test",
        "clock": clock,
    }
    params.update(kwargs)
    return CredentialEncoder(ACCESS_SECRET, REFRESH_SECRET, **params)


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _payload(token: str) -> dict:
    segment = token.split(".")[1]
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return json.loads(base64.urlsafe_b64decode(segment + padding))


class TestIssueAndVerify:
    def test_access_round_trip_returns_issued_claims(self):
        clock = FakeClock()
        encoder = _encoder(clock)
        token = encoder.issue_access("user-1", "admin", "abc123")

        claims = encoder.verify(token, ACCESS)

        assert claims.user_id == "user-1"
        assert claims.role == "admin"
        assert claims.token_id == "abc123"
        assert claims.kind == ACCESS
        assert claims.issued_at == int(clock.now)
        assert claims.expires_at == int(clock.now) + 900

    def test_refresh_generates_fresh_hex_token_id(self):
        encoder = _encoder(FakeClock())
        token_a, id_a = encoder.issue_refresh("user-1", "user")
        token_b, id_b = encoder.issue_refresh("user-1", "user")

        assert id_a != id_b
        assert len(id_a) == 32
        int(id_a, 16)
        claims = encoder.verify(token_a, REFRESH)
        assert claims.token_id == id_a
        assert claims.expires_at - claims.issued_at == 604800

    def test_payload_carries_jwt_claims(self):
        encoder = _encoder(FakeClock())
        token = encoder.issue_access("user-1", "user", "tid")
        payload = _payload(token)
        assert payload["sub"] == "user-1"
        assert payload["jti"] == "tid"
        assert payload["token_type"] == "access"
        assert payload["iss"] == "sessionkeeper-test"
        assert set(payload) == {"iss", "sub", "role", "jti", "token_type", "iat", "exp"}

    def test_token_valid_until_exact_expiry(self):
        clock = FakeClock()
        encoder = _encoder(clock)
        token = encoder.issue_access("user-1", "user", "tid")
        clock.advance(900)
        assert encoder.verify(token, ACCESS).token_id == "tid"

    def test_expired_after_expiry(self):
        clock = FakeClock()
        encoder = _encoder(clock)
        token = encoder.issue_access("user-1", "user", "tid")
        clock.advance(901)
        with pytest.raises(TokenExpiredError):
            encoder.verify(token, ACCESS)


class TestRejections:
    def test_wrong_secret_is_invalid(self):
        clock = FakeClock()
        token = _encoder(clock).issue_access("user-1", "user", "tid")
        other = CredentialEncoder(
            "different-access-secret", REFRESH_SECRET, issuer="sessionkeeper-test", clock=clock
        )
        with pytest.raises(TokenInvalidError):
            other.verify(token, ACCESS)

    def test_refresh_presented_as_access_is_kind_mismatch(self):
        encoder = _encoder(FakeClock())
        token, _ = encoder.issue_refresh("user-1", "user")
        with pytest.raises(TokenKindMismatchError):
            encoder.verify(token, ACCESS)

    def test_access_presented_as_refresh_is_kind_mismatch(self):
        encoder = _encoder(FakeClock())
        token = encoder.issue_access("user-1", "user", "tid")
        with pytest.raises(TokenKindMismatchError) as excinfo:
            encoder.verify(token, REFRESH)
        assert isinstance(excinfo.value, TokenInvalidError)

    def test_signature_checked_before_expiry(self):
        clock = FakeClock()
        token = _encoder(clock).issue_access("user-1", "user", "tid")
        clock.advance(10_000)
        other = CredentialEncoder(
            "different-access-secret", REFRESH_SECRET, issuer="sessionkeeper-test", clock=clock
        )
        with pytest.raises(TokenInvalidError):
            other.verify(token, ACCESS)

    def test_kind_checked_before_expiry(self):
        clock = FakeClock()
        encoder = _encoder(clock)
        token, _ = encoder.issue_refresh("user-1", "user")
        clock.advance(10_000_000)
        with pytest.raises(TokenKindMismatchError):
            encoder.verify(token, ACCESS)

    def test_tampered_payload_is_invalid(self):
        encoder = _encoder(FakeClock())
        header, _, signature = encoder.issue_access("user-1", "user", "tid").split(".")
        forged_payload = _b64(
            {
                "iss": "sessionkeeper-test",
                "sub": "user-1",
                "role": "admin",
                "jti": "tid",
                "token_type": "access",
                "iat": 0,
                "exp": 9_999_999_999,
            }
        )
        with pytest.raises(TokenInvalidError):
            encoder.verify(f"{header}.{forged_payload}.{signature}", ACCESS)

    def test_none_algorithm_rejected(self):
        encoder = _encoder(FakeClock())
        _, payload, signature = encoder.issue_access("user-1", "user", "tid").split(".")
        header = _b64({"alg": "none", "typ": "JWT"})
        with pytest.raises(TokenInvalidError):
            encoder.verify(f"{header}.{payload}.{signature}", ACCESS)

    def test_foreign_issuer_rejected(self):
        clock = FakeClock()
        token = _encoder(clock, issuer="someone-else").issue_access("user-1", "user", "tid")
        with pytest.raises(TokenInvalidError):
            _encoder(clock).verify(token, ACCESS)

    @pytest.mark.parametrize("token", ["", "abc", "a.b", "a.b.c.d", "!!!.@@@.###"])
    def test_malformed_tokens_rejected(self, token):
        with pytest.raises(TokenInvalidError):
            _encoder(FakeClock()).verify(token, ACCESS)


class TestConstruction:
    def test_identical_secrets_refused(self):
        with pytest.raises(ValueError):
            CredentialEncoder("same", "same")

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            CredentialEncoder("", "other")


def test_helpers():
    assert extract_bearer("Bearer abc") == "abc"
    assert extract_bearer("bearer  abc ") == "abc"
    assert extract_bearer("Basic abc") is None
    assert extract_bearer(None) is None
    assert extract_bearer("Bearer ") is None
    assert len(new_token_id()) == 32
    assert hash_token("x") == hash_token("x") != hash_token("y")
