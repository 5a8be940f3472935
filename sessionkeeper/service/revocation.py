from __future__ import annotations

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import InfrastructureError
from sessionkeeper.service.tokens import ACCESS, REFRESH
from sessionkeeper.storage.common import KeyValueStore
from sessionkeeper.storage.keys import blacklist_key

logger = get_logger(__name__)


class RevocationLedger:
    """Blacklist of token ids, each entry expiring with the token it blocks."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
    ) -> None:
        self.store = store
        self._ttls = {ACCESS: access_ttl_seconds, REFRESH: refresh_ttl_seconds}
        self._max_ttl = max(access_ttl_seconds, refresh_ttl_seconds)

    def ttl_for(self, kind: str) -> int:
        try:
            return self._ttls[kind]
        except KeyError:
            raise ValueError(f"unknown token kind: {kind}") from None

    async def blacklist(self, token_id: str, ttl_seconds: int) -> None:
        # Entries never outlive the longest credential lifetime
        ttl = min(max(1, int(ttl_seconds)), self._max_ttl)
        await self.store.set(blacklist_key(token_id), "1", ex=ttl)
        logger.info("token_blacklisted", token_id=token_id, ttl_seconds=ttl)

    async def is_blacklisted(self, token_id: str) -> bool:
        try:
            return bool(await self.store.exists(blacklist_key(token_id)))
        except InfrastructureError as exc:
            logger.warning(
                "blacklist_check_failed", token_id=token_id, error=str(exc)
            )
            return True
