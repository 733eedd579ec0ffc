"""
FastAPI dependencies resolving the application-owned recorders.

Both objects are created in main.py's lifespan and stored on app.state.
"""

from fastapi import HTTPException, Request, status

from recording.auto_recorder import AutoRecorder
from recording.recorder import AudioRecorder


def get_recorder(request: Request) -> AudioRecorder:
    recorder = getattr(request.app.state, "recorder", None)
    if recorder is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Audio service not available")
    return recorder


def get_auto_recorder(request: Request) -> AutoRecorder:
    auto_recorder = getattr(request.app.state, "auto_recorder", None)
    if auto_recorder is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Auto recorder not available")
    return auto_recorder
