from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from sessionkeeper.api.schemas import (
    Envelope,
    PrincipalResponse,
    RevokedResponse,
    SessionInfo,
    SessionListResponse,
    TokenPairResponse,
    TokenRefreshRequest,
)
from sessionkeeper.config import Settings
from sessionkeeper.logging import get_logger
from sessionkeeper.service.auth import Principal
from sessionkeeper.service.runtime import Runtime
from sessionkeeper.service.tokens import TokenPair, extract_bearer

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])


class RateLimitInfo:
    """Rate limit state for adding response headers."""

    __slots__ = ("limit", "remaining")

    def __init__(self, limit: int, remaining: int):
        self.limit = limit
        self.remaining = remaining

    def apply_headers(self, response: Response) -> None:
        response.headers["X-RateLimit-Limit"] = str(self.limit)
        response.headers["X-RateLimit-Remaining"] = str(max(0, self.remaining))


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _device_info(request: Request) -> str:
    return request.headers.get("user-agent") or "unknown"


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
) -> Principal:
    token = extract_bearer(authorization) or request.cookies.get(
        runtime.settings.access_cookie_name
    )
    return await runtime.auth.authorize(token)


def require_role(*roles: str) -> Callable:
    async def _dependency(
        principal: Principal = Depends(get_principal),
        runtime: Runtime = Depends(get_runtime),
    ) -> Principal:
        runtime.auth.ensure_role(principal, roles)
        return principal

    return _dependency


GLOBAL_TIER = "global"
ROUTE_TIER = "route"


def _tier_limits(settings: Settings, tier: str) -> tuple[int, int]:
    if tier == GLOBAL_TIER:
        return settings.global_rate_limit_window_ms, settings.global_rate_limit_max_requests
    return settings.rate_limit_window_ms, settings.rate_limit_max_requests


def rate_limited(
    route_key: str,
    *,
    tier: str = ROUTE_TIER,
    window_ms: Optional[int] = None,
    max_requests: Optional[int] = None,
) -> Callable:
    """Dependency that counts the request against ``route_key`` for the client.

    Limits not given explicitly come from the settings of ``tier``: the
    global tier guards every request, the route tier the credential routes.
    """

    async def _dependency(
        request: Request,
        response: Response,
        runtime: Runtime = Depends(get_runtime),
    ) -> Optional[RateLimitInfo]:
        default_window, default_max = _tier_limits(runtime.settings, tier)
        decision = await runtime.auth.enforce_rate_limit(
            route_key,
            get_client_ip(request),
            window_ms if window_ms is not None else default_window,
            max_requests if max_requests is not None else default_max,
        )
        if decision.limit <= 0:
            return None
        info = RateLimitInfo(decision.limit, decision.remaining)
        info.apply_headers(response)
        return info

    return _dependency


global_rate_limit = rate_limited("global-rate-limit", tier=GLOBAL_TIER)


def _apply_token_cookies(response: Response, runtime: Runtime, pair: TokenPair) -> None:
    settings = runtime.settings
    response.set_cookie(
        settings.access_cookie_name,
        pair.access_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=pair.expires_in,
        path="/",
    )
    response.set_cookie(
        settings.refresh_cookie_name,
        pair.refresh_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite=settings.cookie_samesite,
        max_age=pair.refresh_expires_in,
        path="/",
    )


def _clear_token_cookies(response: Response, runtime: Runtime) -> None:
    settings = runtime.settings
    for name in (settings.access_cookie_name, settings.refresh_cookie_name):
        response.delete_cookie(
            name, path="/", secure=settings.cookie_secure, samesite=settings.cookie_samesite
        )


@router.post("/refresh", response_model=Envelope, dependencies=[Depends(rate_limited("refresh"))])
async def refresh_tokens(
    request: Request,
    response: Response,
    body: Optional[TokenRefreshRequest] = None,
    runtime: Runtime = Depends(get_runtime),
):
    refresh_token = (body.refresh_token if body else None) or request.cookies.get(
        runtime.settings.refresh_cookie_name
    )
    pair = await runtime.auth.refresh(
        refresh_token,
        device_info=_device_info(request),
        ip_address=get_client_ip(request),
    )
    _apply_token_cookies(response, runtime, pair)
    return Envelope(
        status="ok",
        data=TokenPairResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
            refresh_expires_in=pair.refresh_expires_in,
        ),
    )


@router.post("/logout", response_model=Envelope)
async def logout(
    response: Response,
    principal: Principal = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    await runtime.auth.logout(principal)
    _clear_token_cookies(response, runtime)
    return Envelope(status="ok", data={"message": "logged out"})


@router.post("/logout-all", response_model=Envelope)
async def logout_all(
    response: Response,
    principal: Principal = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    revoked = await runtime.auth.revoke_all(principal.user_id)
    _clear_token_cookies(response, runtime)
    return Envelope(status="ok", data=RevokedResponse(revoked=revoked))


@router.get("/sessions", response_model=Envelope)
async def list_sessions(
    principal: Principal = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    sessions = await runtime.auth.list_sessions(principal.user_id)
    items = [
        SessionInfo(**session.as_dict(), current=session.token_id == principal.token_id)
        for session in sorted(sessions, key=lambda s: s.last_used, reverse=True)
    ]
    return Envelope(status="ok", data=SessionListResponse(sessions=items))


@router.delete("/sessions/{token_id}", response_model=Envelope)
async def revoke_session(
    token_id: str,
    principal: Principal = Depends(get_principal),
    runtime: Runtime = Depends(get_runtime),
):
    # Scoped to the caller's own hash; other users' ids are simply not found
    await runtime.auth.revoke(principal.user_id, token_id)
    return Envelope(status="ok", data=RevokedResponse(revoked=1))


@router.get("/me", response_model=Envelope)
async def me(principal: Principal = Depends(get_principal)):
    return Envelope(
        status="ok",
        data=PrincipalResponse(
            user_id=principal.user_id, role=principal.role, token_id=principal.token_id
        ),
    )


@router.delete("/users/{user_id}/sessions", response_model=Envelope)
async def admin_revoke_user_sessions(
    user_id: str,
    principal: Principal = Depends(require_role("admin")),
    runtime: Runtime = Depends(get_runtime),
):
    revoked = await runtime.auth.revoke_all(user_id)
    logger.info("admin_sessions_revoked", admin_id=principal.user_id, user_id=user_id, count=revoked)
    return Envelope(status="ok", data=RevokedResponse(revoked=revoked))
