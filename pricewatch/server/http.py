"""HTTP surface for the price watcher (FastAPI).

The app's lifespan opens a :class:`~pricewatch.server.app.PriceWatchApp`,
starts the polling fetcher in the background and releases every resource on
shutdown. When the threshold fires the fetcher stops but the server keeps
serving, so ``/status`` reports the outcome.

Endpoints
---------
- ``GET /health``: liveness.
- ``GET /ready``: store connected and fetcher running (503 otherwise).
- ``GET /status``: fetcher status; bearer token required when configured.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Optional

import psutil
from fastapi import Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..config.models import AppConfig, EnvSettings
from ..observability import setup_logging
from ..services.polling import FetcherState, FetcherStatus
from .app import PriceWatchApp

logger = logging.getLogger(__name__)

AppFactory = Callable[[AppConfig], PriceWatchApp]


class HealthResponse(BaseModel):
    """Simple health/readiness response model."""

    status: str


class ErrorResponse(BaseModel):
    """Structured JSON error response for HTTP endpoints.

    Fields
    ------
    detail: str
        Human-readable explanation of the error.
    error_type: str
        Machine-readable error classification.
    """

    detail: str = Field(..., description="Human-readable error detail")
    error_type: str = Field(..., description="Machine-readable error type")


def _make_auth_dependency(expected: Optional[str]):
    """Return a dependency function that enforces optional bearer token."""

    def _auth_dependency(authorization: str | None = Header(default=None)) -> None:
        if expected is None:
            return
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
        token = authorization.split(" ", 1)[1]
        if token != expected:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)

    return _auth_dependency


def _watch_app(request: Request) -> PriceWatchApp:
    watch = getattr(request.app.state, "watch", None)
    if watch is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=ErrorResponse(
                detail="Watcher not started", error_type="not_ready"
            ).model_dump(),
        )
    return watch


def _log_startup_memory() -> None:
    try:
        mem_info = psutil.Process().memory_info()
    except psutil.Error:  # pragma: no cover
        return
    logger.info(
        "http.startup.memory",
        extra={
            "rss_mb": round(mem_info.rss / 1024 / 1024, 1),
            "vms_mb": round(mem_info.vms / 1024 / 1024, 1),
        },
    )


def _register_health(app: FastAPI) -> None:
    """Register health and readiness endpoints."""

    @app.get("/health", response_model=HealthResponse, summary="Liveness probe")
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get(
        "/ready",
        response_model=HealthResponse,
        responses={503: {"model": ErrorResponse}},
        summary="Readiness probe",
    )
    async def ready(request: Request) -> HealthResponse:
        watch = _watch_app(request)
        fetcher = watch.fetcher
        if not watch.connection.is_connected or (
            fetcher is None or fetcher.state is not FetcherState.RUNNING
        ):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ErrorResponse(
                    detail="Store disconnected or fetcher not running",
                    error_type="not_ready",
                ).model_dump(),
            )
        return HealthResponse(status="ready")


def _register_status(app: FastAPI, auth_dep: Callable[..., None]) -> None:
    """Register the fetcher status endpoint."""

    @app.get(
        "/status",
        response_model=FetcherStatus,
        responses={
            401: {"model": ErrorResponse},
            403: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
        summary="Polling fetcher status",
        dependencies=[Depends(auth_dep)],
    )
    async def fetcher_status(request: Request) -> FetcherStatus:
        watch = _watch_app(request)
        if watch.fetcher is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ErrorResponse(
                    detail="Fetcher not started", error_type="not_ready"
                ).model_dump(),
            )
        return watch.fetcher.status()


def create_app(
    config: Optional[AppConfig] = None,
    *,
    app_factory: Optional[AppFactory] = None,
    http_token: Optional[str] = None,
) -> FastAPI:
    """Create the FastAPI app.

    Parameters
    ----------
    config: Optional[AppConfig]
        Watcher configuration; read from the environment when omitted.
    app_factory: Optional[AppFactory]
        Builds the :class:`PriceWatchApp` (tests inject fakes through it).
    http_token: Optional[str]
        Bearer token for ``/status``; defaults to ``PRICEWATCH_HTTP_TOKEN``.
    """
    settings = EnvSettings()
    # Respect prior logging configuration from CLI; otherwise use env setting
    if not logging.getLogger().hasHandlers():
        setup_logging(settings.log_level)
    cfg = config or AppConfig.from_env(settings)
    token = (http_token if http_token is not None else settings.http_token) or None
    factory: AppFactory = app_factory or PriceWatchApp

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("http.startup")
        _log_startup_memory()
        # A store that cannot be reached aborts startup
        async with factory(cfg) as watch:
            await watch.start_watch()
            app.state.watch = watch
            try:
                yield
            finally:
                logger.info("http.shutdown")
                app.state.watch = None

    app = FastAPI(title="pricewatch", version=__version__, lifespan=lifespan)
    app.state.watch = None

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(_request: Any, exc: Any):  # noqa: D401
        # Pass through existing HTTP errors but ensure structured payload
        detail = getattr(exc, "detail", "")
        if isinstance(detail, dict) and {"detail", "error_type"} <= detail.keys():
            payload = {"detail": detail}
        else:
            payload = {
                "detail": ErrorResponse(
                    detail=str(detail) or "HTTP error", error_type="http_error"
                ).model_dump()
            }
        return JSONResponse(status_code=exc.status_code, content=payload)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(_request: Any, exc: Exception):  # noqa: D401
        # Avoid leaking internals; log server-side, return generic error
        logger.error("http.unhandled_exception", exc_info=exc)
        err = ErrorResponse(
            detail="Internal error. See server logs.",
            error_type="internal_server_error",
        )
        return JSONResponse(status_code=500, content={"detail": err.model_dump()})

    # Mark handlers as intentionally used (registered via decorators)
    _ = (http_exception_handler, unhandled_exception_handler)

    _register_health(app)
    _register_status(app, _make_auth_dependency(token))
    return app
