"""
API Middleware Module

- CORS for the local UI (origins from CORS_ORIGINS)
- Request timing logs
"""

import os
import time
import logging

from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Polled frequently by the UI and health checks
_QUIET_PATHS = ("/", "/healthz", "/readyz")


def setup_middlewares(app) -> None:
    """
    Configure CORS for the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    cors_origins = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info("Middlewares configured: CORS (origins=%s)", cors_origins)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time

        if request.url.path not in _QUIET_PATHS:
            logger.debug(
                "%s %s - %d (%.3fs)",
                request.method,
                request.url.path,
                response.status_code,
                process_time,
            )

        return response


def setup_request_logging(app) -> None:
    """Add request logging middleware (method, path, status, response time)."""
    app.add_middleware(RequestLoggingMiddleware)
    logger.info("Request logging middleware configured")
