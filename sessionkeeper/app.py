from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request

from sessionkeeper.api.error_handling import register_exception_handlers
from sessionkeeper.api.routes import global_rate_limit, router
from sessionkeeper.api.schemas import Envelope
from sessionkeeper.config import Settings
from sessionkeeper.logging import get_logger, set_correlation_id
from sessionkeeper.service.runtime import Runtime

logger = get_logger(__name__)

__version__ = "0.1.0"


def create_app(
    settings: Optional[Settings] = None, *, runtime: Optional[Runtime] = None
) -> FastAPI:
    """Build the HTTP application.

    The runtime is constructed during startup unless one is supplied; startup
    aborts when the store cannot be reached.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        current = runtime or Runtime(settings)
        await current.verify_connection()
        app.state.runtime = current
        logger.info("startup_complete", version=__version__)
        try:
            yield
        finally:
            try:
                await current.close()
                logger.info("runtime_cleanup_complete")
            except Exception as exc:
                logger.error("shutdown_failed", error=str(exc))

    app = FastAPI(
        title="SessionKeeper",
        version=__version__,
        lifespan=lifespan,
        dependencies=[Depends(global_rate_limit)],
    )
    register_exception_handlers(app)
    app.include_router(router)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        if request.url.path.startswith("/v1/"):
            # Token-bearing responses must never land in a shared cache
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):
        """Tag every log line of the request with X-Request-ID or a fresh UUID."""
        correlation_id = set_correlation_id(request.headers.get("X-Request-ID"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = correlation_id
        return response

    @app.get("/healthz", response_model=Envelope, tags=["health"])
    async def healthz(request: Request):
        await request.app.state.runtime.store.ping()
        return Envelope(status="ok", data={"status": "healthy"})

    return app


app = create_app()
