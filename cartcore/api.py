"""
FastAPI integration.

Maps CartError subclasses to JSON error responses, exposes liveness and
readiness probes, and ties CartBackends to the application lifespan. Cart
routes themselves belong to the host application.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from cartcore.config import Settings, load_settings
from cartcore.errors import CartError, CartBusyError, StorageUnavailableError
from cartcore.logging import get_logger
from cartcore.providers import CartBackends

logger = get_logger(__name__)

# Seconds a client should wait before retrying a retryable error
RETRY_AFTER = {
    CartBusyError: 1,
    StorageUnavailableError: 5,
}
DEFAULT_RETRY_AFTER = 2


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(error: CartError) -> JSONResponse:
    """Build the JSON error body for a CartError."""
    headers = {}
    if error.retryable:
        headers["Retry-After"] = str(RETRY_AFTER.get(type(error), DEFAULT_RETRY_AFTER))
    return JSONResponse(
        status_code=error.status_code,
        headers=headers,
        content={
            "success": False,
            "message": error.message,
            "code": error.code,
            "data": error.details or None,
            "timestamp": _timestamp(),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the CartError handler on an application."""

    @app.exception_handler(CartError)
    async def cart_error_handler(request: Request, exc: CartError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
        return error_response(exc)


def create_health_router() -> APIRouter:
    """Liveness and readiness probes reading backends from app.state."""
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("/live")
    async def live():
        return {"status": "ok", "timestamp": _timestamp()}

    @router.get("/ready")
    async def ready(request: Request):
        backends: CartBackends | None = getattr(request.app.state, "backends", None)
        if backends is None:
            return JSONResponse(status_code=503, content={"status": "starting", "timestamp": _timestamp()})

        checks = await backends.health()
        healthy = checks["storage"] and checks["messaging"]
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "ok" if healthy else "degraded",
                "checks": checks,
                "timestamp": _timestamp(),
            },
        )

    return router


def create_lifespan(settings: Settings | None = None):
    """
    Lifespan handler that starts backends on startup and closes them on shutdown.

    The started CartBackends is stored on ``app.state.backends``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        resolved = settings or load_settings()
        backends = await CartBackends.create(resolved)
        await backends.init()
        app.state.backends = backends
        logger.info(f"{resolved.service_name} started")
        try:
            yield
        finally:
            # Shutdown
            app.state.backends = None
            await backends.close()

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    """Minimal application wiring: lifespan, error handlers and health probes."""
    app = FastAPI(title="Cart Core", version="1.0.0", lifespan=create_lifespan(settings))
    register_exception_handlers(app)
    app.include_router(create_health_router())
    return app
