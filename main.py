"""Main application entry point for the Guest Quota Gateway."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import ApplicationConfig, load_config
from middleware import ClientContextMiddleware, CorrelationMiddleware
from routers import auth_router, cache_router, health_router, media_router, metrics_router
from services import ServiceContainer, build_services
from utils import GatewayError, QuotaExceeded, configure_logging, get_logger, set_correlation_id

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build services on startup and release them on shutdown.

    Services injected through ``create_app`` are owned by the caller and are
    neither started nor stopped here.
    """
    if getattr(app.state, "services", None) is not None:
        yield
        return

    config = load_config()
    configure_logging(config.log_level, json_output=config.log_json)
    set_correlation_id()

    services = build_services(config)
    try:
        logger.info("Starting services...")
        await services.start()
        app.state.services = services
        logger.info("All services are running.")

        yield

    finally:
        logger.info("Shutting down services...")
        await services.stop()
        logger.info("All services stopped successfully.")


async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    """Render gateway errors as JSON bodies with their HTTP status."""
    body = exc.to_response(getattr(request.state, "correlation_id", None)).model_dump(mode="json")
    if isinstance(exc, QuotaExceeded):
        body.update(exc.details)
    if exc.http_status >= 500:
        logger.warning("Request failed", code=exc.code, path=request.url.path, details=exc.details)
    return JSONResponse(status_code=exc.http_status, content=body)


def create_app(
    services: Optional[ServiceContainer] = None,
    config: Optional[ApplicationConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Guest Quota Gateway",
        description="Cached, quota-gated gateway to the YouTube Data API for anonymous guests",
        version="1.0.0",
        lifespan=lifespan,
    )
    if services is not None:
        app.state.services = services

    settings = config or (services.config if services is not None else None)
    app.add_middleware(ClientContextMiddleware)
    app.add_middleware(CorrelationMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins if settings is not None else ["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        expose_headers=["X-Cache", "X-Cache-Key", "X-Quota-Used", "X-Quota-Limit", "X-Quota-Remaining"],
    )
    app.add_exception_handler(GatewayError, gateway_error_handler)

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(auth_router)
    app.include_router(media_router)
    app.include_router(cache_router)
    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    config = load_config()
    uvicorn.run(app, host=config.server_host, port=config.server_port)
