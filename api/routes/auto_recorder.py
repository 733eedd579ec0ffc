"""
Auto Recorder Routes Module.

- GET /auto-recorder: Status and text since the last reset
- POST /auto-recorder/start: Start continuous recording
- POST /auto-recorder/stop: Stop and return the full transcript
- POST /auto-recorder/flush: Transcribe pending audio now ("send now")
- POST /auto-recorder/reset: Mark captured text as consumed
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_auto_recorder
from api.models import AutoRecorderStartRequest, AutoRecorderStatusResponse, TranscriptResponse
from recording.auto_recorder import AutoRecorder
from recording.errors import CaptureSpawnError, RecorderNotReadyError, UnsupportedSourceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auto-recorder", tags=["auto-recorder"])


@router.get("", response_model=AutoRecorderStatusResponse)
async def get_auto_recorder_status(auto_recorder: AutoRecorder = Depends(get_auto_recorder)) -> AutoRecorderStatusResponse:
    return AutoRecorderStatusResponse(**auto_recorder.status())


@router.post("/start", response_model=AutoRecorderStatusResponse)
async def start_auto_recorder(
    request: Optional[AutoRecorderStartRequest] = None,
    auto_recorder: AutoRecorder = Depends(get_auto_recorder),
) -> AutoRecorderStatusResponse:
    request = request or AutoRecorderStartRequest()
    try:
        await auto_recorder.start(request.session_id, request.source)
    except UnsupportedSourceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except RecorderNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message) from exc
    except CaptureSpawnError as exc:
        logger.error("Failed to start auto recorder: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc
    return AutoRecorderStatusResponse(**auto_recorder.status())


@router.post("/stop", response_model=TranscriptResponse)
async def stop_auto_recorder(auto_recorder: AutoRecorder = Depends(get_auto_recorder)) -> TranscriptResponse:
    session_id = auto_recorder.session_id or ""
    transcript = await auto_recorder.stop()
    return TranscriptResponse(session_id=session_id, transcript=transcript)


@router.post("/flush", response_model=AutoRecorderStatusResponse)
async def flush_auto_recorder(auto_recorder: AutoRecorder = Depends(get_auto_recorder)) -> AutoRecorderStatusResponse:
    await auto_recorder.flush()
    return AutoRecorderStatusResponse(**auto_recorder.status())


@router.post("/reset", response_model=AutoRecorderStatusResponse)
async def reset_auto_recorder(auto_recorder: AutoRecorder = Depends(get_auto_recorder)) -> AutoRecorderStatusResponse:
    auto_recorder.reset()
    return AutoRecorderStatusResponse(**auto_recorder.status())


__all__ = ["router"]
