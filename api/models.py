"""
Shared Pydantic models for the recording control API.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from recording.session import AudioSource, RecordingStatus, TranscriptionEvent


# =============================================================================
# REQUESTS
# =============================================================================

class StartRecordingRequest(BaseModel):
    # Coerced by the recorder; unknown values raise UnsupportedSourceError
    source: str = Field(AudioSource.SYSTEM.value, description="internal, microphone, both or system (enum names also accepted)")


class AutoRecorderStartRequest(StartRecordingRequest):
    session_id: str = Field("auto-recorder", min_length=1, max_length=128)


# =============================================================================
# RESPONSES
# =============================================================================

class RecordingStatusResponse(BaseModel):
    session_id: str
    is_recording: bool
    source: Optional[AudioSource] = None
    start_time: Optional[datetime] = None

    @classmethod
    def from_status(cls, session_id: str, status: RecordingStatus) -> "RecordingStatusResponse":
        return cls(
            session_id=session_id,
            is_recording=status.is_recording,
            source=status.source,
            start_time=status.start_time,
        )


class TranscriptionEventResponse(BaseModel):
    text: str
    timestamp: datetime
    segment_id: str

    @classmethod
    def from_event(cls, event: TranscriptionEvent) -> "TranscriptionEventResponse":
        return cls(text=event.text, timestamp=event.timestamp, segment_id=event.segment_id)


class RecentTranscriptionsResponse(BaseModel):
    session_id: str
    transcriptions: list[TranscriptionEventResponse] = Field(default_factory=list)


class TranscriptResponse(BaseModel):
    session_id: str
    transcript: Optional[str] = None


class RecordingSummary(BaseModel):
    session_id: str
    source: AudioSource
    is_active: bool
    start_time: datetime
    segment_count: int
    has_recent_transcriptions: bool
    last_failure: Optional[str] = None
    needs_manual_restart: bool = False
    restart_count: int = 0


class ServiceStatusResponse(BaseModel):
    initialized: bool
    active_recordings: int
    temp_dir: str
    recordings: list[RecordingSummary] = Field(default_factory=list)


class AutoRecorderStatusResponse(BaseModel):
    is_active: bool
    session_id: Optional[str] = None
    source: Optional[AudioSource] = None
    current_transcription: str = ""


__all__ = [
    "StartRecordingRequest",
    "AutoRecorderStartRequest",
    "RecordingStatusResponse",
    "TranscriptionEventResponse",
    "RecentTranscriptionsResponse",
    "TranscriptResponse",
    "RecordingSummary",
    "ServiceStatusResponse",
    "AutoRecorderStatusResponse",
]
