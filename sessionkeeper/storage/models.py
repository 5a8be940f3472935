from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(raw: Any) -> datetime:
    """Parse an ISO timestamp, treating naive values as UTC."""
    if isinstance(raw, datetime):
        value = raw
    else:
        value = datetime.fromisoformat(str(raw))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Session:
    token_id: str
    user_id: str
    device_info: str
    ip_address: str
    last_used: datetime
    expiry_time: datetime

    @classmethod
    def new(
        cls,
        token_id: str,
        user_id: str,
        *,
        device_info: str = "unknown",
        ip_address: str = "unknown",
        ttl_seconds: int,
        now: Optional[datetime] = None,
    ) -> "Session":
        now = now or _utcnow()
        return cls(
            token_id=token_id,
            user_id=user_id,
            device_info=device_info,
            ip_address=ip_address,
            last_used=now,
            expiry_time=now + timedelta(seconds=ttl_seconds),
        )

    def remaining_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or _utcnow()
        return int((self.expiry_time - now).total_seconds())

    def to_record(self) -> str:
        return json.dumps(
            {
                "token_id": self.token_id,
                "user_id": self.user_id,
                "device_info": self.device_info,
                "ip_address": self.ip_address,
                "last_used": self.last_used.isoformat(),
                "expiry_time": self.expiry_time.isoformat(),
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_record(cls, raw: str) -> "Session":
        data = json.loads(raw)
        return cls(
            token_id=data["token_id"],
            user_id=data["user_id"],
            device_info=data.get("device_info") or "unknown",
            ip_address=data.get("ip_address") or "unknown",
            last_used=_parse_ts(data["last_used"]),
            expiry_time=_parse_ts(data["expiry_time"]),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "token_id": self.token_id,
            "device_info": self.device_info,
            "ip_address": self.ip_address,
            "last_used": self.last_used,
            "expiry_time": self.expiry_time,
        }


@dataclass
class RefreshTokenRecord:
    """Metadata kept beside a session; only a digest of the token is stored."""

    token_hash: str
    device_info: str
    ip_address: str
    created_at: datetime = field(default_factory=_utcnow)
    expiry_time: Optional[datetime] = None

    def to_record(self) -> str:
        return json.dumps(
            {
                "token_hash": self.token_hash,
                "device_info": self.device_info,
                "ip_address": self.ip_address,
                "created_at": self.created_at.isoformat(),
                "expiry_time": self.expiry_time.isoformat() if self.expiry_time else None,
            },
            separators=(",", ":"),
        )

    @classmethod
    def from_record(cls, raw: str) -> "RefreshTokenRecord":
        data = json.loads(raw)
        expiry_raw = data.get("expiry_time")
        return cls(
            token_hash=data["token_hash"],
            device_info=data.get("device_info") or "unknown",
            ip_address=data.get("ip_address") or "unknown",
            created_at=_parse_ts(data["created_at"]),
            expiry_time=_parse_ts(expiry_raw) if expiry_raw else None,
        )
