from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import (
    TokenExpiredError,
    TokenInvalidError,
    TokenKindMismatchError,
)

logger = get_logger(__name__)

ACCESS = "access"
REFRESH = "refresh"
TOKEN_KINDS = (ACCESS, REFRESH)


@dataclass(frozen=True)
class TokenClaims:
    token_id: str
    user_id: str
    role: str
    kind: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_id: str
    expires_in: int
    refresh_expires_in: int
    token_type: str = "bearer"


def new_token_id() -> str:
    """128 random bits, hex encoded."""
    return secrets.token_hex(16)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


class CredentialEncoder:
    """Signs and verifies HS256 bearer tokens.

    Access and refresh tokens are signed with different secrets, so a token
    of one kind never verifies as the other. Verification depends only on the
    secrets, the clock and the token itself; revocation is checked elsewhere.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        *,
        access_ttl_seconds: int = 900,
        refresh_ttl_seconds: int = 604800,
        issuer: str = "sessionkeeper",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not access_secret or not refresh_secret:
            raise ValueError("signing secrets must be non-empty")
        if access_secret == refresh_secret:
            raise ValueError("access and refresh secrets must differ")
        self._secrets = {ACCESS: access_secret, REFRESH: refresh_secret}
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}
        self.issuer = issuer
        self._clock = clock

    def ttl_for(self, kind: str) -> int:
        return self._ttls[kind]

    def issue_access(self, user_id: str, role: str, token_id: str) -> str:
        return self._issue(user_id, role, token_id, ACCESS)

    def issue_refresh(self, user_id: str, role: str) -> tuple[str, str]:
        token_id = new_token_id()
        return self._issue(user_id, role, token_id, REFRESH), token_id

    def verify(self, token: str, expected_kind: str) -> TokenClaims:
        if expected_kind not in TOKEN_KINDS:
            raise ValueError(f"unknown token kind: {expected_kind}")
        if not token or not isinstance(token, str):
            raise TokenInvalidError("token is empty")
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except ValueError:
            raise TokenInvalidError("token is not a three-part JWT") from None

        try:
            header = json.loads(self._decode_segment(header_b64))
            payload = json.loads(self._decode_segment(payload_b64))
        except (ValueError, TypeError) as exc:
            logger.warning("jwt_decode_failed", error=str(exc))
            raise TokenInvalidError("token is malformed") from exc
        if not isinstance(header, dict) or not isinstance(payload, dict):
            raise TokenInvalidError("token is malformed")
        if header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm", alg=header.get("alg"))
            raise TokenInvalidError("unsupported signing algorithm")

        claimed_kind = payload.get("token_type")
        if claimed_kind not in TOKEN_KINDS:
            raise TokenInvalidError("unknown token type")
        expected_sig = self._sign(f"{header_b64}.{payload_b64}", claimed_kind)
        if not hmac.compare_digest(expected_sig.encode(), sig_b64.encode()):
            raise TokenInvalidError("signature mismatch")

        if payload.get("iss") != self.issuer:
            raise TokenInvalidError("unexpected issuer")
        if claimed_kind != expected_kind:
            raise TokenKindMismatchError(
                f"expected {expected_kind} token, got {claimed_kind}"
            )

        claims = self._claims_from_payload(payload, claimed_kind)
        if self._clock() > claims.expires_at:
            raise TokenExpiredError("token expired")
        return claims

    def _issue(self, user_id: str, role: str, token_id: str, kind: str) -> str:
        issued_at = int(self._clock())
        payload = {
            "iss": self.issuer,
            "sub": user_id,
            "role": role,
            "jti": token_id,
            "token_type": kind,
            "iat": issued_at,
            "exp": issued_at + self._ttls[kind],
        }
        return self._encode_jwt(payload, kind)

    @staticmethod
    def _claims_from_payload(payload: dict[str, Any], kind: str) -> TokenClaims:
        sub = payload.get("sub")
        jti = payload.get("jti")
        role = payload.get("role")
        if not sub or not jti or not isinstance(role, str):
            raise TokenInvalidError("token is missing required claims")
        try:
            issued_at = int(payload.get("iat") or 0)
            expires_at = int(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise TokenInvalidError("token has invalid timestamps") from None
        return TokenClaims(
            token_id=str(jti),
            user_id=str(sub),
            role=role,
            kind=kind,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    @staticmethod
    def _encode_segment(data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    @staticmethod
    def _decode_segment(segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str, kind: str) -> str:
        signature = hmac.new(
            self._secrets[kind].encode(), signing_input.encode(), hashlib.sha256
        ).digest()
        return self._encode_segment(signature)

    def _encode_jwt(self, payload: dict[str, Any], kind: str) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input, kind)}"


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an ``Authorization: Bearer`` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None
