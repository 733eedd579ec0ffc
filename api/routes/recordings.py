"""
Recording Routes Module.

Per-session recording control:
- POST /recordings/{session_id}/start: Start capturing a source
- POST /recordings/{session_id}/stop: Stop and return the full transcript
- GET /recordings/{session_id}/status: Recording status
- GET /recordings/{session_id}/transcriptions/recent: Drain recent transcriptions
- GET /recordings/{session_id}/transcript: Transcript so far
- GET /recordings/status: Service-wide status
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_recorder
from api.models import (
    RecentTranscriptionsResponse,
    RecordingStatusResponse,
    ServiceStatusResponse,
    StartRecordingRequest,
    TranscriptionEventResponse,
    TranscriptResponse,
)
from recording.errors import CaptureSpawnError, RecorderNotReadyError, UnsupportedSourceError
from recording.recorder import AudioRecorder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recordings", tags=["recordings"])


# =============================================================================
# GET /recordings/status - Service-wide status
# =============================================================================

@router.get("/status", response_model=ServiceStatusResponse)
async def get_service_status(recorder: AudioRecorder = Depends(get_recorder)) -> ServiceStatusResponse:
    return ServiceStatusResponse(**recorder.get_status())


# =============================================================================
# POST /recordings/{session_id}/start - Start recording
# =============================================================================

@router.post("/{session_id}/start", response_model=RecordingStatusResponse)
async def start_recording(
    session_id: str,
    request: StartRecordingRequest,
    recorder: AudioRecorder = Depends(get_recorder),
) -> RecordingStatusResponse:
    """
    Start recording `request.source` for the session.

    An existing recording for the same session is stopped first.

    Raises:
        HTTPException 400: unsupported source
        HTTPException 503: audio service not initialized
        HTTPException 502: the capture process could not be spawned
    """
    try:
        await recorder.start_recording(request.source, session_id)
    except UnsupportedSourceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message) from exc
    except RecorderNotReadyError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=exc.message) from exc
    except CaptureSpawnError as exc:
        logger.error("Failed to start recording for session %s: %s", session_id, exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.message) from exc

    return RecordingStatusResponse.from_status(session_id, recorder.get_recording_status(session_id))


# =============================================================================
# POST /recordings/{session_id}/stop - Stop recording
# =============================================================================

@router.post("/{session_id}/stop", response_model=TranscriptResponse)
async def stop_recording(session_id: str, recorder: AudioRecorder = Depends(get_recorder)) -> TranscriptResponse:
    transcript = await recorder.stop_recording(session_id)
    return TranscriptResponse(session_id=session_id, transcript=transcript)


# =============================================================================
# Queries
# =============================================================================

@router.get("/{session_id}/status", response_model=RecordingStatusResponse)
async def get_recording_status(session_id: str, recorder: AudioRecorder = Depends(get_recorder)) -> RecordingStatusResponse:
    return RecordingStatusResponse.from_status(session_id, recorder.get_recording_status(session_id))


@router.get("/{session_id}/transcriptions/recent", response_model=RecentTranscriptionsResponse)
async def get_recent_transcriptions(
    session_id: str,
    recorder: AudioRecorder = Depends(get_recorder),
) -> RecentTranscriptionsResponse:
    """Return and clear the buffered transcriptions; a second call returns none."""
    events = recorder.get_recent_transcriptions(session_id)
    return RecentTranscriptionsResponse(
        session_id=session_id,
        transcriptions=[TranscriptionEventResponse.from_event(event) for event in events],
    )


@router.get("/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(session_id: str, recorder: AudioRecorder = Depends(get_recorder)) -> TranscriptResponse:
    return TranscriptResponse(session_id=session_id, transcript=recorder.get_transcript(session_id))


__all__ = ["router"]
