from __future__ import annotations

import time
from typing import Callable, Optional
from urllib.parse import urlparse, urlunparse

from sessionkeeper.config import Settings, get_settings
from sessionkeeper.logging import get_logger
from sessionkeeper.service.auth import AuthService
from sessionkeeper.service.rate_limit import RateGovernor
from sessionkeeper.service.revocation import RevocationLedger
from sessionkeeper.service.sessions import SessionRegistry
from sessionkeeper.service.tokens import CredentialEncoder
from sessionkeeper.storage.common import KeyValueStore
from sessionkeeper.storage.memory import MemoryStore
from sessionkeeper.storage.redis_cache import RedisStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a store URL for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds the service instances for one application.

    Built once at startup and attached to ``app.state``; nothing here is a
    module-level singleton, so tests construct as many as they need.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[KeyValueStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        if store is not None:
            self.store = store
            store_type = type(store).__name__
        elif self.settings.use_memory_store:
            self.store = MemoryStore()
            store_type = "memory"
        else:
            self.store = RedisStore(
                self.settings.redis_url,
                socket_timeout=self.settings.redis_socket_timeout_seconds,
            )
            store_type = "redis"
        logger.info(
            "runtime_store_initialized",
            store_type=store_type,
            redis_url=_mask_url_password(self.settings.redis_url)
            if store_type == "redis"
            else None,
        )

        self.encoder = CredentialEncoder(
            self.settings.jwt_access_secret,
            self.settings.jwt_refresh_secret,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
            issuer=self.settings.jwt_issuer,
            clock=clock,
        )
        self.ledger = RevocationLedger(
            self.store,
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )
        self.sessions = SessionRegistry(
            self.store,
            self.ledger,
            max_sessions=self.settings.max_sessions_per_user,
            clock=clock,
        )
        self.governor = RateGovernor(
            self.store, fail_open=self.settings.rate_limit_fail_open
        )
        self.auth = AuthService(self.encoder, self.sessions, self.ledger, self.governor)

    async def verify_connection(self) -> None:
        """Fail fast when the store is unreachable."""
        try:
            await self.store.ping()
        except Exception as exc:
            logger.error(
                "runtime_store_unreachable",
                redis_url=_mask_url_password(self.settings.redis_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_verified")

    async def close(self) -> None:
        await self.store.close()
