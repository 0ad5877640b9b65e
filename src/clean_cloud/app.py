"""FastAPI application factory for the Clean control plane."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clean_cloud.common.config import get_settings
from clean_cloud.common.exceptions import CleanError, RateLimitExceeded
from clean_cloud.common.logging import setup_logging
from clean_cloud.common.schemas import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


async def clean_error_handler(request: Request, exc: CleanError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "code": exc.code, "detail": exc.message},
        )
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(exc.retry_after)}
    body = ErrorResponse(error=exc.public_message, code=exc.code)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump(), headers=headers)


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from clean_cloud.deps import get_db, get_tunnel_provider
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        provider = get_tunnel_provider()
        if hasattr(provider, "aclose"):
            await provider.aclose()
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CleanError, clean_error_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        from clean_cloud.deps import get_db

        if await get_db().ping():
            return HealthResponse(version=settings.api_version)
        return HealthResponse(status="degraded", database="unavailable", version=settings.api_version)

    # Mount routers
    from clean_cloud.licensing.router import router as licensing_router
    from clean_cloud.tunnels.router import router as tunnel_router
    from clean_cloud.orgs.router import router as org_router

    prefix = settings.api_prefix
    app.include_router(licensing_router, prefix=prefix, tags=["licensing"])
    app.include_router(tunnel_router, prefix=prefix, tags=["tunnels"])
    app.include_router(org_router, prefix=prefix, tags=["orgs"])

    return app
