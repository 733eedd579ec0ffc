"""
Error types raised by the audio capture and transcription pipeline.

Recoverable device/process failures are handled inside the pipeline by
recording.recovery; only the errors below ever reach callers.
"""

from typing import Optional


class AudioServiceError(Exception):
    """Base error carrying a stable code and the underlying cause."""

    code = "AUDIO_SERVICE_ERROR"

    def __init__(self, message: str, cause: Optional[BaseException] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return self.message


class AudioInitializationError(AudioServiceError):
    code = "AUDIO_INIT_ERROR"


class RecorderNotReadyError(AudioServiceError):
    code = "AUDIO_NOT_READY"


class UnsupportedSourceError(AudioServiceError):
    code = "UNSUPPORTED_SOURCE"


class CaptureSpawnError(AudioServiceError):
    code = "AUDIO_DEVICE_ERROR"


class ExtractionError(AudioServiceError):
    """Probe or trim failure; ``stage`` is ``"probe"`` or ``"trim"``."""

    code = "EXTRACTION_ERROR"

    def __init__(self, message: str, stage: str, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.stage = stage


class TranscriptionError(AudioServiceError):
    code = "TRANSCRIPTION_ERROR"
