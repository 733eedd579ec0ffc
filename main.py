"""
Main Entry Point - FastAPI Application.

This file contains:
- Environment and logging setup
- FastAPI app factory with the recorder lifespan
- Route mounting from api/routes/
- Middleware setup from api/middleware.py
- Health check endpoints

Usage:
    uvicorn main:app --reload
    python main.py
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

# Load environment variables with explicit path (works when run from any directory)
_env_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), ".env")
load_dotenv(_env_path)

# ============================================================================
# NON-BLOCKING LOGGING SETUP (MUST BE BEFORE OTHER IMPORTS)
# ============================================================================
from utils.logger import configure_non_blocking_logging, stop_logging

# MAIN_PY_LOG_LEVEL takes precedence, falls back to LOG_LEVEL
_main_log_level = os.getenv("MAIN_PY_LOG_LEVEL") or os.getenv("LOG_LEVEL")
_log_listener = configure_non_blocking_logging(level=_main_log_level)

from api.routes import recordings_router, auto_recorder_router
from api.middleware import setup_middlewares, setup_request_logging
from recording.auto_recorder import AutoRecorder
from recording.errors import AudioServiceError
from recording.recorder import AudioRecorder

logger = logging.getLogger(__name__)

SERVICE_NAME = "interview-audio-pipeline"
SERVICE_VERSION = "1.0.0"


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(recorder: Optional[AudioRecorder] = None, *, verify_dependencies: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    The recorder is created at startup unless one is passed in; initialization
    failures are logged and leave the service up but not ready.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Audio pipeline API starting up...")
        audio_recorder = recorder or AudioRecorder()
        app.state.recorder = audio_recorder
        app.state.auto_recorder = AutoRecorder(audio_recorder)

        if not audio_recorder.is_ready():
            try:
                await audio_recorder.initialize(verify=verify_dependencies)
            except AudioServiceError as exc:
                logger.error("Failed to initialize audio recorder: %s", exc)

        try:
            yield
        finally:
            logger.info("Audio pipeline API shutting down...")
            await app.state.auto_recorder.stop()
            await audio_recorder.cleanup()

    app = FastAPI(
        title="Interview Audio Pipeline API",
        description="Audio capture with segmented local transcription",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )

    setup_middlewares(app)
    setup_request_logging(app)

    # =========================================================================
    # ROUTES
    # =========================================================================

    # Recordings (router has /recordings prefix)
    app.include_router(recordings_router, tags=["Recordings"])

    # Auto recorder (router has /auto-recorder prefix)
    app.include_router(auto_recorder_router, tags=["Auto Recorder"])

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - health check."""
        return {"status": "ok", "version": SERVICE_VERSION, "service": SERVICE_NAME}

    @app.get("/healthz", include_in_schema=False)
    async def healthz():
        """Liveness probe."""
        return {"status": "healthy"}

    @app.get("/readyz", include_in_schema=False)
    async def readyz(request: Request):
        """Readiness probe: ready once ffmpeg/whisper have been verified."""
        audio_recorder = getattr(request.app.state, "recorder", None)
        if audio_recorder is None or not audio_recorder.is_ready():
            return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "not ready"})
        return {"status": "ready"}

    # =========================================================================
    # ERROR HANDLERS
    # =========================================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        """Global exception handler for unhandled errors."""
        logger.exception("Unhandled exception: %s", exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()


# =============================================================================
# MAIN
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    # Suppress health check access logs
    class _HealthCheckFilter(logging.Filter):
        _SUPPRESSED = {"/healthz", "/readyz", "/"}

        def filter(self, record: logging.LogRecord) -> bool:
            msg = record.getMessage()
            return not any(f'"{path} ' in msg or f" {path} " in msg for path in self._SUPPRESSED)

    logging.getLogger("uvicorn.access").addFilter(_HealthCheckFilter())

    port = int(os.getenv("PORT", "8000"))

    try:
        uvicorn.run(
            "main:app",
            host=os.getenv("HOST", "127.0.0.1"),
            port=port,
            workers=1,
            log_level=os.getenv("UVICORN_LOG_LEVEL", "info").lower(),
        )
    finally:
        stop_logging()
