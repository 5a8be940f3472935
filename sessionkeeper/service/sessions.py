from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from sessionkeeper.logging import get_logger
from sessionkeeper.service.errors import CapacityExceededError, NotFoundError
from sessionkeeper.service.revocation import RevocationLedger
from sessionkeeper.service.tokens import REFRESH, hash_token
from sessionkeeper.storage.common import KeyValueStore
from sessionkeeper.storage.keys import refresh_token_key, user_sessions_key
from sessionkeeper.storage.models import RefreshTokenRecord, Session

logger = get_logger(__name__)


class SessionRegistry:
    """Per-user hash of active sessions keyed by token id.

    The hash and every refresh-token record expire after the refresh lifetime,
    so abandoned sessions disappear without a sweeper.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ledger: RevocationLedger,
        *,
        max_sessions: int = 50,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.max_sessions = max_sessions
        self.refresh_ttl_seconds = ledger.ttl_for(REFRESH)
        self._clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def new_session(
        self,
        token_id: str,
        user_id: str,
        *,
        device_info: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Session:
        return Session.new(
            token_id,
            user_id,
            device_info=device_info or "unknown",
            ip_address=ip_address or "unknown",
            ttl_seconds=self.refresh_ttl_seconds,
            now=self.now(),
        )

    async def register(self, user_id: str, session: Session) -> None:
        key = user_sessions_key(user_id)
        _, expired = self._partition(user_id, await self.store.hgetall(key))
        stored, count = await self.store.hset_capped(
            key,
            session.token_id,
            session.to_record(),
            max_fields=self.max_sessions,
            ttl_seconds=self.refresh_ttl_seconds,
            evict=expired,
        )
        if expired:
            logger.info("expired_sessions_evicted", user_id=user_id, count=len(expired))
        if not stored:
            logger.warning(
                "session_capacity_exceeded",
                user_id=user_id,
                active_sessions=count,
                max_sessions=self.max_sessions,
            )
            raise CapacityExceededError(
                "maximum number of active sessions reached",
                detail={"max_sessions": self.max_sessions},
            )
        logger.info(
            "session_registered",
            user_id=user_id,
            token_id=session.token_id,
            active_sessions=count,
        )

    async def replace(self, user_id: str, old_token_id: str, session: Session) -> None:
        key = user_sessions_key(user_id)
        await self.store.hset(key, session.token_id, session.to_record())
        if old_token_id != session.token_id:
            await self.store.hdel(key, old_token_id)
        await self.store.expire(key, self.refresh_ttl_seconds)

    async def record_refresh_token(
        self, user_id: str, token_id: str, refresh_token: str, session: Session
    ) -> None:
        record = RefreshTokenRecord(
            token_hash=hash_token(refresh_token),
            device_info=session.device_info,
            ip_address=session.ip_address,
            created_at=session.last_used,
            expiry_time=session.expiry_time,
        )
        await self.store.set(
            refresh_token_key(user_id, token_id),
            record.to_record(),
            ex=self.refresh_ttl_seconds,
        )

    async def drop_refresh_token(self, user_id: str, token_id: str) -> None:
        await self.store.delete(refresh_token_key(user_id, token_id))

    async def get_refresh_token(
        self, user_id: str, token_id: str
    ) -> Optional[RefreshTokenRecord]:
        raw = await self.store.get(refresh_token_key(user_id, token_id))
        if raw is None:
            return None
        return RefreshTokenRecord.from_record(raw)

    async def list(self, user_id: str) -> List[Session]:
        """Live sessions only; entries past their expiry are skipped."""
        entries = await self.store.hgetall(user_sessions_key(user_id))
        live, _ = self._partition(user_id, entries)
        return [session for session in live if session is not None]

    async def count_for(self, user_id: str) -> int:
        entries = await self.store.hgetall(user_sessions_key(user_id))
        live, _ = self._partition(user_id, entries)
        return len(live)

    async def revoke(self, user_id: str, token_id: str) -> None:
        key = user_sessions_key(user_id)
        raw = await self.store.hget(key, token_id)
        if raw is None:
            raise NotFoundError("session not found", detail={"token_id": token_id})
        await self.ledger.blacklist(token_id, self._remaining_ttl(user_id, token_id, raw))
        removed = await self.store.hdel(key, token_id)
        await self.store.delete(refresh_token_key(user_id, token_id))
        if not removed:
            # A concurrent revoke won the delete
            raise NotFoundError("session not found", detail={"token_id": token_id})
        logger.info("session_revoked", user_id=user_id, token_id=token_id)

    async def revoke_all(self, user_id: str) -> int:
        key = user_sessions_key(user_id)
        entries = await self.store.hgetall(key)
        _, expired = self._partition(user_id, entries)
        # Expired entries hold no usable credential; they are dropped unlisted
        live_ids = [token_id for token_id in entries if token_id not in expired]
        for token_id in live_ids:
            await self.ledger.blacklist(
                token_id, self._remaining_ttl(user_id, token_id, entries[token_id])
            )
        await self.store.delete(
            key, *(refresh_token_key(user_id, token_id) for token_id in entries)
        )
        logger.info("sessions_revoked_all", user_id=user_id, count=len(live_ids))
        return len(live_ids)

    def _partition(
        self, user_id: str, entries: Dict[str, str]
    ) -> Tuple[List[Optional[Session]], List[str]]:
        """Split entries into live sessions and the ids of expired ones.

        Corrupt entries stay on the live side as ``None``: their lifetime is
        unknown, so they keep their slot until revoked or the hash expires.
        """
        now = self.now()
        live: List[Optional[Session]] = []
        expired: List[str] = []
        for token_id, raw in entries.items():
            session = self._parse(user_id, token_id, raw)
            if session is not None and session.expiry_time < now:
                expired.append(token_id)
            else:
                live.append(session)
        return live, expired

    def _parse(self, user_id: str, token_id: str, raw: str) -> Optional[Session]:
        try:
            return Session.from_record(raw)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning(
                "session_record_corrupt",
                user_id=user_id,
                token_id=token_id,
                error=str(exc),
            )
            return None

    def _remaining_ttl(self, user_id: str, token_id: str, raw: str) -> int:
        session = self._parse(user_id, token_id, raw)
        if session is None:
            return self.refresh_ttl_seconds
        remaining = session.remaining_seconds(self.now())
        return min(max(1, remaining), self.refresh_ttl_seconds)
