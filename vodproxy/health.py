"""Health endpoint for vodproxy.

  GET /health — 503 before ``app.state.ready`` is set (during lifespan startup),
                200 with a status body once startup completes.

Polled by container health probes and reverse proxies.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from vodproxy.aggregation.registry import SiteRegistry
from vodproxy.config import Config

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Response body (200):
        {
          "status": "ok",
          "proxy": "running",
          "max_retries": 2,
          "timeout_s": 5.0,
          "sites": 2,
          "default_site": "example"
        }

    Response body (503):
        {"status": "starting", "message": "vodproxy is starting up..."}
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "vodproxy is starting up...",
            },
        )

    config: Config = request.app.state.config
    registry: SiteRegistry = request.app.state.registry

    return {
        "status": "ok",
        "proxy": "running",
        "max_retries": config.upstream.max_retries,
        "timeout_s": config.upstream.timeout,
        "sites": len(registry.sites),
        "default_site": registry.default,
    }
