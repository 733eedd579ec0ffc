"""
Audio Pipeline Configuration
============================

Tunable parameters for capture, segment extraction, transcription and
recovery. Every value can be overridden from the environment (see
AudioConfig.load); invalid values fall back to the defaults below.

USAGE:
    from recording.config import AudioConfig
    config = AudioConfig.load()
"""

import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from recording.session import AudioSource

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Invalid value for %s=%s; using default %.2f", name, value, default)
        return default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid value for %s=%s; using default %d", name, value, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int_set(name: str, default: frozenset[int]) -> frozenset[int]:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return frozenset(int(part) for part in value.split(",") if part.strip())
    except ValueError:
        logger.warning("Invalid value for %s=%s; using default %s", name, value, sorted(default))
        return default


def _default_devices() -> dict[AudioSource, str]:
    return {
        # Virtual loopback device (e.g. BlackHole) carrying the other party's audio
        AudioSource.INTERVIEWER: ":0",
        AudioSource.SYSTEM: ":0",
        # Built-in microphone
        AudioSource.INTERVIEWEE: ":6",
        AudioSource.BOTH: ":6",
    }


# Sources whose device is a virtual/system loopback rather than a microphone
VIRTUAL_DEVICE_SOURCES = frozenset({AudioSource.INTERVIEWER, AudioSource.SYSTEM, AudioSource.BOTH})

DEFAULT_MODEL_PATH = Path.home() / "tools" / "ggml-base.en.bin"
DEFAULT_TEMP_DIR = Path(tempfile.gettempdir()) / "interview-assistant-audio"


@dataclass
class AudioConfig:
    """Capture, segmentation, transcription and recovery settings."""

    # -------------------------------------------------------------------------
    # External binaries
    # -------------------------------------------------------------------------
    # Bare names are resolved via PATH at initialize() time; absolute paths
    # are used as-is when they exist.
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    whisper_path: str = "whisper-cli"
    whisper_model_path: Path = DEFAULT_MODEL_PATH
    whisper_language: str = "auto"

    # -------------------------------------------------------------------------
    # Capture format
    # -------------------------------------------------------------------------
    # ffmpeg input format ("avfoundation" on macOS, "pulse"/"alsa" on Linux).
    capture_format: str = "avfoundation"
    sample_rate: int = 16000
    channels: int = 1
    codec: str = "pcm_s16le"
    devices: dict[AudioSource, str] = field(default_factory=_default_devices)

    # -------------------------------------------------------------------------
    # Segmentation
    # -------------------------------------------------------------------------
    # segment_duration_ms is both the window length and the tick interval.
    segment_duration_ms: int = 5000
    # Window extracted from the capture file when a recording stops.
    final_segment_duration_ms: int = 10000
    # Files below this size are treated as silence and never transcribed.
    min_segment_size_bytes: int = 1000
    max_recent_transcriptions: int = 10

    # -------------------------------------------------------------------------
    # Transcription
    # -------------------------------------------------------------------------
    transcription_timeout_seconds: float = 30.0

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------
    temp_dir: Path = DEFAULT_TEMP_DIR
    segment_cleanup_delay_seconds: float = 60.0
    # Debug flag: never delete capture or segment files.
    keep_audio_files: bool = False

    # -------------------------------------------------------------------------
    # Process lifecycle and recovery
    # -------------------------------------------------------------------------
    # SIGTERM grace period before the capture process is force-killed.
    stop_grace_seconds: float = 1.0
    # Device busy: wait, stop capture, wait again, restart.
    device_busy_delay_seconds: float = 2.0
    device_busy_restart_delay_seconds: float = 1.0
    # Unexpected exit with a recoverable code: wait, restart.
    restart_delay_seconds: float = 3.0
    # Transient OS-level process error: wait, restart.
    process_error_delay_seconds: float = 2.0
    # Exit codes treated as recoverable. Review against the capture tool's
    # documented exit semantics before widening.
    recoverable_exit_codes: frozenset[int] = frozenset({1, 255})
    recoverable_error_codes: frozenset[str] = frozenset({"ENOENT", "EACCES", "EAGAIN", "EBUSY", "EINTR"})
    # Automatic restarts allowed per recording. Once used up, the next failure
    # leaves the session stopped until start_recording is called again.
    max_automatic_restarts: int = 1

    @property
    def segment_duration_seconds(self) -> float:
        return self.segment_duration_ms / 1000

    def device_for(self, source: AudioSource) -> Optional[str]:
        return self.devices.get(source)

    @classmethod
    def load(cls) -> "AudioConfig":
        """Build a config from environment variables layered over the defaults."""
        defaults = cls()
        devices = _default_devices()
        for source in AudioSource:
            override = os.getenv(f"AUDIO_DEVICE_{source.name}")
            if override:
                devices[source] = override

        return cls(
            ffmpeg_path=os.getenv("FFMPEG_PATH", defaults.ffmpeg_path),
            ffprobe_path=os.getenv("FFPROBE_PATH", defaults.ffprobe_path),
            whisper_path=os.getenv("WHISPER_CLI_PATH", defaults.whisper_path),
            whisper_model_path=Path(os.getenv("WHISPER_MODEL_PATH", str(defaults.whisper_model_path))).expanduser(),
            whisper_language=os.getenv("WHISPER_LANGUAGE", defaults.whisper_language),
            capture_format=os.getenv("AUDIO_CAPTURE_FORMAT", defaults.capture_format),
            devices=devices,
            segment_duration_ms=_env_int("AUDIO_SEGMENT_DURATION_MS", defaults.segment_duration_ms),
            final_segment_duration_ms=_env_int(
                "AUDIO_FINAL_SEGMENT_DURATION_MS", defaults.final_segment_duration_ms
            ),
            min_segment_size_bytes=_env_int("AUDIO_MIN_SEGMENT_SIZE_BYTES", defaults.min_segment_size_bytes),
            transcription_timeout_seconds=_env_float(
                "AUDIO_TRANSCRIPTION_TIMEOUT_SECONDS", defaults.transcription_timeout_seconds
            ),
            temp_dir=Path(os.getenv("AUDIO_TEMP_DIR", str(defaults.temp_dir))).expanduser(),
            segment_cleanup_delay_seconds=_env_float(
                "AUDIO_SEGMENT_CLEANUP_DELAY_SECONDS", defaults.segment_cleanup_delay_seconds
            ),
            keep_audio_files=_env_bool("AUDIO_KEEP_FILES", defaults.keep_audio_files),
            recoverable_exit_codes=_env_int_set("AUDIO_RECOVERABLE_EXIT_CODES", defaults.recoverable_exit_codes),
            max_automatic_restarts=_env_int("AUDIO_MAX_AUTOMATIC_RESTARTS", defaults.max_automatic_restarts),
        )
