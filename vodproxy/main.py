"""vodproxy FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()            → app.state.config
  2. load_registry()          → app.state.registry
  3. create_http_client()     → app.state.http_client (shared, pooled,
                                redirect hops validated)
  4. ForwardingPipeline       → app.state.pipeline
     AggregationComposer      → app.state.composer
  5. app.state.ready = True

Shutdown (reverse): ready = False → close the shared HTTP client.
"""

from __future__ import annotations

import os
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from vodproxy.aggregation.composer import AggregationComposer, router as aggregation_router
from vodproxy.aggregation.registry import RegistryError, SiteRegistry, load_registry
from vodproxy.config import Config, load_config
from vodproxy.health import router as health_router
from vodproxy.proxy.engine import router as engine_router
from vodproxy.proxy.fetcher import RetryingFetcher, create_http_client
from vodproxy.proxy.pipeline import ForwardingPipeline
from vodproxy.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

root_router = APIRouter(tags=["root"])


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """FastAPI dependency: raises HTTP 503 if app.state.ready is not True."""
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "vodproxy is starting up...",
            },
        )


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "vodproxy",
        "proxy": "/proxy/{url-encoded target}",
        "search": "/api/search?wd=",
        "detail": "/api/detail?id=",
        "health": "/health",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence."""
    logger.info("vodproxy starting up...")

    # load_config() raises SystemExit on an invalid file, before ready=True.
    config: Config = load_config()
    app.state.config = config

    try:
        registry: SiteRegistry = load_registry(config.registry.path)
    except RegistryError as exc:
        print(f"REGISTRY ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    app.state.registry = registry

    # Single shared client. NEVER instantiated per-request.
    http_client: httpx.AsyncClient = create_http_client(config.upstream, config.safety)
    app.state.http_client = http_client

    pipeline = ForwardingPipeline(
        fetcher=RetryingFetcher(http_client, config.upstream),
        safety=config.safety,
        headers=config.headers,
    )
    app.state.pipeline = pipeline
    app.state.composer = AggregationComposer(registry, pipeline)

    app.state.ready = True
    logger.info(
        "vodproxy ready",
        max_retries=config.upstream.max_retries,
        timeout_s=config.upstream.timeout,
        blocked_hosts=sorted(config.safety.blocked_hosts),
        blocked_prefixes=list(config.safety.blocked_prefixes),
        sites=len(registry.sites),
    )

    yield

    logger.info("vodproxy shutting down...")
    app.state.ready = False

    try:
        await http_client.aclose()
        logger.info("HTTP proxy client closed")
    except Exception as exc:
        logger.warning("HTTP proxy client close error (non-fatal)", error=str(exc))

    logger.info("vodproxy shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the vodproxy FastAPI application.

    Call this function directly in tests to get an isolated app instance.
    The module-level `app` is created at import time for uvicorn:
        uvicorn vodproxy.main:app --host 0.0.0.0 --port 8080
    """
    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="vodproxy",
        description="Safety-checked HTTP forwarding proxy with video-site API aggregation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # Requests arriving before the lifespan finishes startup get 503.
    application.state.ready = False

    application.include_router(root_router)
    application.include_router(health_router)
    ready = [Depends(require_ready)]
    application.include_router(aggregation_router, dependencies=ready)
    application.include_router(engine_router, dependencies=ready)

    @application.exception_handler(HTTPException)
    async def http_exception_handler(
        request: Request, exc: HTTPException
    ) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500, content={"error": "Internal server error"}
        )

    return application


app = create_app()
