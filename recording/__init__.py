"""
Audio recording module.

Contains:
- recorder: AudioRecorder, the per-session capture/segment/transcribe facade
- auto_recorder: AutoRecorder continuous-recording mode
- capture: ffmpeg capture process supervision
- scheduler: per-session segment ticks
- recovery: failure classification and bounded restart policy
- transcription: whisper-cli invocation and text cleanup
- session: session state, segments and the recent-transcription queue
"""

from recording.auto_recorder import AutoRecorder
from recording.config import AudioConfig
from recording.errors import (
    AudioInitializationError,
    AudioServiceError,
    CaptureSpawnError,
    ExtractionError,
    RecorderNotReadyError,
    TranscriptionError,
    UnsupportedSourceError,
)
from recording.recorder import AudioRecorder
from recording.session import (
    AudioSource,
    RecordingStatus,
    Segment,
    SessionRegistry,
    TranscriptionEvent,
)
from recording.transcription import WhisperTranscriber, clean_transcription_text

__all__ = [
    # Recorder
    "AudioRecorder",
    "AutoRecorder",
    "AudioConfig",
    # Session state
    "AudioSource",
    "RecordingStatus",
    "Segment",
    "SessionRegistry",
    "TranscriptionEvent",
    # Transcription
    "WhisperTranscriber",
    "clean_transcription_text",
    # Errors
    "AudioServiceError",
    "AudioInitializationError",
    "RecorderNotReadyError",
    "UnsupportedSourceError",
    "CaptureSpawnError",
    "ExtractionError",
    "TranscriptionError",
]
