"""Key layout shared by every store backend.

These names are part of the persisted format; other services reading the
same Redis database depend on them.
"""

from __future__ import annotations

DEFAULT_RATE_LIMIT_PREFIX = "rate-limit"


def refresh_token_key(user_id: str, token_id: str) -> str:
    return f"refresh_token:{user_id}:{token_id}"


def user_sessions_key(user_id: str) -> str:
    return f"user_sessions:{user_id}"


def blacklist_key(token_id: str) -> str:
    return f"blacklisted_token:{token_id}"


def rate_limit_key(prefix: str, client_key: str) -> str:
    return f"{DEFAULT_RATE_LIMIT_PREFIX}:{prefix}:{client_key}"
