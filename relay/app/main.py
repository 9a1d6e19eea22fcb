from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from relay import __version__
from relay.app.api import mcp_router, rate_limit_admin_router, webhooks_router
from relay.app.core.config import Settings, settings as default_settings
from relay.app.core.logging import get_logger, setup_logging
from relay.app.exceptions import RelayException
from relay.app.middleware.rate_limit import (
    CounterStore,
    RateLimitConfig,
    RateLimitEngine,
    add_rate_limit_middleware,
)
from relay.app.middleware.rate_limit.responses import RATE_LIMIT_HEADERS, RETRY_AFTER_HEADER
from relay.app.middleware.request_id import RequestIdMiddleware, get_request_id
from relay.app.services.system_tools import register_system_tools
from relay.app.services.tool_registry import ToolRegistry
from relay.app.services.webhook_dispatcher import WebhookDispatcher


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[CounterStore] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.
    
    Args:
        settings: Settings to build the app from (defaults to environment)
        store: Counter store override, mainly for tests

    Returns:
        Configured FastAPI application instance

    Raises:
        ConfigurationError: If the rate limit configuration is unusable.
    """
    settings = settings or default_settings
    setup_logging(settings)
    logger = get_logger(__name__)

    engine = RateLimitEngine(RateLimitConfig.from_settings(settings), store=store)
    tool_registry = ToolRegistry()
    register_system_tools(tool_registry)
    webhook_dispatcher = WebhookDispatcher()
    
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan context manager.
        
        Verifies the counter store on startup and releases it on shutdown.
        """
        await engine.initialize()
        logger.info(
            "Application startup complete",
            extra={
                "rate_limiting": engine.config.enabled,
                "storage_type": engine.store.storage_type,
                "tools": len(tool_registry.list_tools()),
                "debug_mode": settings.debug,
            },
        )
        yield
        await engine.close()
        logger.info("Application shutdown complete")
    
    app = FastAPI(
        title="Lexicon Relay",
        description="Webhook ingestion and fan-out with per-category and per-tool rate limiting",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.rate_limiter = engine
    app.state.tool_registry = tool_registry
    app.state.webhook_dispatcher = webhook_dispatcher
    
    # Add middleware (order matters: last added = first executed)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", RETRY_AFTER_HEADER, *RATE_LIMIT_HEADERS],
    )
    add_rate_limit_middleware(app, engine)
    
    # Request ID middleware (outermost - rejected requests carry an ID too)
    app.add_middleware(RequestIdMiddleware)
    
    app.include_router(webhooks_router)
    app.include_router(mcp_router)
    app.include_router(rate_limit_admin_router)
    
    @app.get("/health")
    async def health() -> dict[str, Any]:
        """Health check endpoint with counter store status."""
        reachable = await engine.store.ping()
        return {
            "status": "ok" if reachable else "degraded",
            "components": {
                "rate_limiter": {
                    "status": "ok" if reachable else "error",
                    "storage": engine.store.storage_type,
                    "enabled": engine.config.enabled,
                }
            },
        }
    
    @app.exception_handler(RelayException)
    async def relay_exception_handler(request: Request, exc: RelayException) -> JSONResponse:
        """Handle RelayException subclasses with their own status code."""
        logger.warning(
            f"{type(exc).__name__}: {exc.message}",
            extra={"request_id": get_request_id(request), "path": request.url.path},
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": type(exc).__name__, "message": exc.message},
        )
    
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions.
        
        Never returns a traceback to the client; the full exception is
        logged server-side.
        """
        request_id = get_request_id(request)
        logger.exception(
            f"Unhandled exception [request_id={request_id}]",
            extra={
                "request_id": request_id,
                "exception_type": type(exc).__name__,
            },
        )
        content = {
            "success": False,
            "error": "internal_error",
            "message": str(exc) if settings.debug else "Internal server error",
            "request_id": request_id,
        }
        return JSONResponse(status_code=500, content=content)
    
    return app


# Create the application instance
app = create_app()
