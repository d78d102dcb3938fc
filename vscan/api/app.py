"""FastAPI application factory with lifespan management."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vscan.api.routers import control_plane, hosts, publish, scans, vulnerabilities
from vscan.core.config import get_settings
from vscan.core.database import close_engine, get_engine, get_session_factory
from vscan.core.errors import VScanError
from vscan.core.logging import configure_logging, get_logger
from vscan.core.services import build_services

logger = get_logger(__name__)

VERSION = "0.1.0"

_STATUS_BY_KIND = {
    "not_connected": status.HTTP_409_CONFLICT,
    "job_not_found": status.HTTP_404_NOT_FOUND,
    "unauthorized_operation": status.HTTP_403_FORBIDDEN,
    "unsupported_platform": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_path": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_status": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "authentication": status.HTTP_401_UNAUTHORIZED,
    "password_prompt": status.HTTP_401_UNAUTHORIZED,
    "credential": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "cancelled": status.HTTP_409_CONFLICT,
    "command_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "verification_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
    "persistence_failure": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(exc: VScanError) -> int:
    return _STATUS_BY_KIND.get(exc.kind, status.HTTP_502_BAD_GATEWAY)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    configure_logging()
    settings = get_settings()
    logger.info("Starting vscan", debug=settings.app_debug)

    # Warm up DB connection pool
    get_engine()

    services = build_services(settings, get_session_factory())
    await services.start()
    app.state.services = services
    logger.info("Services ready", scanners=services.registry.names())

    yield

    # Cleanup
    await services.close()
    app.state.services = None
    await close_engine()
    logger.info("vscan stopped")


async def _vscan_error_handler(request: Request, exc: VScanError) -> JSONResponse:
    logger.warning("Request failed", path=request.url.path, kind=exc.kind, error=exc.message)
    return JSONResponse(status_code=status_for(exc), content={"success": False, "error": exc.to_dict()})


def create_app() -> FastAPI:
    app = FastAPI(
        title="vscan",
        description="Backup-mount vulnerability scanning orchestrator",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(VScanError, _vscan_error_handler)

    api_prefix = "/api/v1"
    app.include_router(control_plane.router, prefix=api_prefix)
    app.include_router(hosts.router, prefix=api_prefix)
    app.include_router(publish.router, prefix=api_prefix)
    app.include_router(scans.router, prefix=api_prefix)
    app.include_router(vulnerabilities.router, prefix=api_prefix)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": VERSION}

    return app


app = create_app()
