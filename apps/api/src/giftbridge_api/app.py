from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from giftbridge_api.core.settings import settings
from giftbridge_api.db.session import async_session
from .api.errors import error_detail, status_code_for
from .api.routes import api_router
from .core.logging import configure_logging
from .observability.tracing import configure_tracing
from .services.errors import GiftBridgeError
from .workers import ExpirySweepWorker


APP_VERSION = "0.1.0"


def _session_factory():
    return async_session()


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweep_worker = ExpirySweepWorker(
        session_factory=_session_factory,
        interval_seconds=settings.expiry_sweep_interval_seconds,
    )
    app.state.expiry_sweep_worker = sweep_worker

    sweep_enabled = settings.expiry_sweep_worker_enabled
    if sweep_enabled:
        sweep_worker.start()
        logger.info(
            "Expiry sweep worker enabled",
            interval_seconds=sweep_worker.interval_seconds,
        )
    else:
        logger.info(
            "Expiry sweep worker disabled",
            reason="expiry_sweep_worker_enabled is false",
        )

    try:
        yield
    finally:
        if sweep_enabled and sweep_worker.is_running:
            await sweep_worker.stop()


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())[1:]) or "body",
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    summary = ", ".join(f"{item['field']}: {item['message']}" for item in errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": {"error": f"Invalid input: {summary}", "errors": errors}},
    )


async def _service_error_handler(request: Request, exc: GiftBridgeError) -> JSONResponse:
    code = status_code_for(exc)
    if code >= 500:
        logger.error("Unhandled service failure", operation=exc.operation, error=exc.message)
        return JSONResponse(status_code=code, content={"detail": {"error": "Internal server error"}})
    return JSONResponse(status_code=code, content={"detail": error_detail(exc)})


def create_app() -> FastAPI:
    """Application factory for the GiftBridge FastAPI service."""
    configure_logging(
        service_name="giftbridge-api",
        environment=settings.environment,
        version=APP_VERSION,
        level=settings.log_level,
    )

    app = FastAPI(
        title="GiftBridge API",
        version=APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    configure_tracing(
        app,
        service_name="giftbridge-api",
        service_version=APP_VERSION,
        environment=settings.environment,
    )

    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(GiftBridgeError, _service_error_handler)
    app.include_router(api_router)

    @app.get("/healthz", tags=["Health"])
    async def health_check() -> dict[str, str]:
        return {
            "status": "ok",
            "environment": settings.environment,
            "version": APP_VERSION,
        }

    return app
