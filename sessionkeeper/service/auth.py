from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import (
    ForbiddenError,
    NotFoundError,
    TokenMissingError,
    TokenRevokedError,
)
from sessionkeeper.service.rate_limit import RateDecision, RateGovernor
from sessionkeeper.service.revocation import RevocationLedger
from sessionkeeper.service.sessions import SessionRegistry
from sessionkeeper.service.tokens import (
    ACCESS,
    REFRESH,
    CredentialEncoder,
    TokenClaims,
    TokenPair,
)
from sessionkeeper.storage.keys import rate_limit_key
from sessionkeeper.storage.models import Session

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    token_id: str


class AuthService:
    """Token issuance, rotation and revocation over the shared store.

    Each step below is a separate atomic store call. Failures between steps
    leave the system in a state where the superseded token id is already
    blacklisted, so partial rotations never resurrect old credentials.
    """

    def __init__(
        self,
        encoder: CredentialEncoder,
        registry: SessionRegistry,
        ledger: RevocationLedger,
        governor: RateGovernor,
    ) -> None:
        self.encoder = encoder
        self.registry = registry
        self.ledger = ledger
        self.governor = governor

    def _mint(self, user_id: str, role: str) -> TokenPair:
        refresh_token, token_id = self.encoder.issue_refresh(user_id, role)
        access_token = self.encoder.issue_access(user_id, role, token_id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            token_id=token_id,
            expires_in=self.encoder.ttl_for(ACCESS),
            refresh_expires_in=self.encoder.ttl_for(REFRESH),
        )

    async def issue_session_tokens(
        self,
        user_id: str,
        role: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TokenPair:
        pair = self._mint(user_id, role)
        session = self.registry.new_session(
            pair.token_id, user_id, device_info=device_info, ip_address=ip_address
        )
        await self.registry.register(user_id, session)
        await self.registry.record_refresh_token(
            user_id, pair.token_id, pair.refresh_token, session
        )
        logger.info("session_tokens_issued", user_id=user_id, token_id=pair.token_id)
        return pair

    async def rotate(
        self,
        old_token_id: str,
        user_id: str,
        role: str,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TokenPair:
        pair = self._mint(user_id, role)
        session = self.registry.new_session(
            pair.token_id, user_id, device_info=device_info, ip_address=ip_address
        )
        # Old id is dead before the new session becomes visible
        await self.ledger.blacklist(old_token_id, self.ledger.ttl_for(REFRESH))
        await self.registry.replace(user_id, old_token_id, session)
        await self.registry.record_refresh_token(
            user_id, pair.token_id, pair.refresh_token, session
        )
        await self.registry.drop_refresh_token(user_id, old_token_id)
        logger.info(
            "session_rotated",
            user_id=user_id,
            old_token_id=old_token_id,
            new_token_id=pair.token_id,
        )
        return pair

    async def verify_refresh(self, refresh_token: Optional[str]) -> TokenClaims:
        if not refresh_token:
            raise TokenMissingError("refresh token required")
        claims = self.encoder.verify(refresh_token, REFRESH)
        if await self.ledger.is_blacklisted(claims.token_id):
            logger.info(
                "refresh_token_revoked", user_id=claims.user_id, token_id=claims.token_id
            )
            raise TokenRevokedError("refresh token revoked")
        return claims

    async def refresh(
        self,
        refresh_token: Optional[str],
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TokenPair:
        claims = await self.verify_refresh(refresh_token)
        return await self.rotate(
            claims.token_id,
            claims.user_id,
            claims.role,
            device_info=device_info,
            ip_address=ip_address,
        )

    async def authorize(self, access_token: Optional[str]) -> Principal:
        if not access_token:
            raise TokenMissingError("access token required")
        claims = self.encoder.verify(access_token, ACCESS)
        if await self.ledger.is_blacklisted(claims.token_id):
            raise TokenRevokedError("access token revoked")
        return Principal(user_id=claims.user_id, role=claims.role, token_id=claims.token_id)

    @staticmethod
    def ensure_role(principal: Principal, roles: Iterable[str]) -> None:
        allowed = set(roles)
        if principal.role not in allowed:
            logger.info(
                "role_check_failed",
                user_id=principal.user_id,
                role=principal.role,
                required=sorted(allowed),
            )
            raise ForbiddenError("insufficient permissions")

    async def list_sessions(self, user_id: str) -> List[Session]:
        return await self.registry.list(user_id)

    async def revoke(self, user_id: str, token_id: str) -> None:
        await self.registry.revoke(user_id, token_id)

    async def revoke_all(self, user_id: str) -> int:
        return await self.registry.revoke_all(user_id)

    async def logout(self, principal: Principal) -> None:
        """End the caller's own session.

        A session that already expired from the registry still has its token id
        blacklisted for the remaining access lifetime.
        """
        try:
            await self.registry.revoke(principal.user_id, principal.token_id)
        except NotFoundError:
            await self.ledger.blacklist(principal.token_id, self.ledger.ttl_for(ACCESS))
        logger.info("logout", user_id=principal.user_id, token_id=principal.token_id)

    async def gate(
        self, route_key: str, client_key: str, window_ms: int, max_requests: int
    ) -> RateDecision:
        return await self.governor.gate(
            window_ms, max_requests, rate_limit_key(route_key, client_key)
        )

    async def enforce_rate_limit(
        self, route_key: str, client_key: str, window_ms: int, max_requests: int
    ) -> RateDecision:
        return await self.governor.enforce(
            window_ms, max_requests, rate_limit_key(route_key, client_key)
        )
