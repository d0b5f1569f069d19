"""FastAPI application for the local bridge.

The desktop shell talks to the persistence core through this app. It
registers exception handlers, request-id middleware and routes.

Lifecycle:
- A shared httpx.AsyncClient is created at startup (provider key validation)
- The container is built unless one was injected, then started: the default
  user's key is derived and the model state loaded
- Shutdown closes the remote store and the HTTP client
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from glass import __version__
from glass.api.routes import create_api_router
from glass.config import get_settings
from glass.container import Container, build_container
from glass.errors import ErrorCode, GlassError
from glass.logging import configure_logging, get_logger
from glass.middleware.request_id import RequestIDMiddleware
from glass.responses import (
    error_response,
    glass_error_handler,
    http_exception_handler,
    unhandled_exception_handler,
)

logger = get_logger(__name__)


def create_app(container: Container | None = None, log_requests: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Prebuilt container (tests inject one backed by in-memory stores).
        log_requests: Whether to log an access entry per request.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.httpx_client = httpx.AsyncClient(
            timeout=httpx.Timeout(get_settings().key_validation_timeout_s, connect=5.0),
        )
        if container is None:
            app.state.container = build_container(http_client=app.state.httpx_client)
        else:
            app.state.container = container
        await app.state.container.start()
        logger.info("bridge_started", version=__version__)

        yield

        await app.state.container.aclose()
        await app.state.httpx_client.aclose()
        logger.info("bridge_stopped")

    app = FastAPI(
        title="Glass API",
        description="Local bridge to the Glass persistence core",
        version=__version__,
        lifespan=lifespan,
    )
    if container is not None:
        # Available before lifespan runs (clients that skip startup events)
        app.state.container = container

    app.add_exception_handler(GlassError, glass_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle request validation errors (including malformed JSON)."""
        return JSONResponse(
            status_code=400,
            content=error_response(ErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    app.include_router(create_api_router())

    # Added last so it runs first
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    return app


def main() -> None:
    """Run the bridge with uvicorn on localhost."""
    import uvicorn

    settings = get_settings()
    configure_logging(json_format=settings.log_json)
    uvicorn.run(create_app(), host=settings.bridge_host, port=settings.bridge_port)
