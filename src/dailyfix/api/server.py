# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
DailyFix Bridge -- API Server

Run with: uvicorn dailyfix.api.server:app --port 8010
"""

import os
import time
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from dailyfix._version import __version__
from dailyfix.api._shared import _get_bridge_log, close_orchestrator
from dailyfix.api.routes.bridges import router as bridges_router

logger = logging.getLogger("dailyfix.api.server")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8010

app = FastAPI(
    title="DailyFix Bridge API",
    description="REST + WebSocket API for linking messaging platforms over Matrix bridges",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HTTP REQUEST LOGGING MIDDLEWARE
# =============================================================================

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status, and latency."""
    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        log = _get_bridge_log()
        if log:
            path = request.url.path
            if path not in ("/api/health",):
                log.http_request(
                    method=request.method,
                    path=path,
                    status=response.status_code,
                    latency_ms=latency_ms,
                )
        return response

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# LIFECYCLE -- startup and shutdown logging
# =============================================================================

@app.on_event("startup")
async def _on_startup():
    log = _get_bridge_log()
    if log:
        log.server_start(
            host=os.environ.get("DAILYFIX_API_HOST", DEFAULT_HOST),
            port=int(os.environ.get("DAILYFIX_API_PORT", DEFAULT_PORT)),
            version=__version__,
        )

@app.on_event("shutdown")
async def _on_shutdown():
    await close_orchestrator()
    log = _get_bridge_log()
    if log:
        log.server_stop()


@app.get("/api/health")
async def health():
    return {"status": "ok", "version": __version__}


app.include_router(bridges_router)


def main():
    import uvicorn
    uvicorn.run(
        app,
        host=os.environ.get("DAILYFIX_API_HOST", DEFAULT_HOST),
        port=int(os.environ.get("DAILYFIX_API_PORT", DEFAULT_PORT)),
    )


if __name__ == "__main__":
    main()
