"""
Audio Recording and Segmented Transcription Manager

Handles:
1. One ffmpeg capture process per session, with explicit termination
2. Periodic extraction of the trailing window of the growing capture file
3. Transcription of each window through whisper-cli
4. A drain-on-read queue of recent transcriptions per session
5. Bounded automatic recovery from device and process failures
6. Final-window transcription when a recording stops
"""

import asyncio
import contextlib
import logging
import os
import shutil
import time
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, Union

from recording.capture import CaptureProcess
from recording.config import AudioConfig
from recording.errors import (
    AudioInitializationError,
    ExtractionError,
    RecorderNotReadyError,
    TranscriptionError,
    UnsupportedSourceError,
)
from recording.recovery import ErrorRecovery
from recording.scheduler import SegmentScheduler
from recording.session import (
    AudioSource,
    RecentTranscriptions,
    RecordingSession,
    RecordingStatus,
    Segment,
    SessionRegistry,
    TranscriptionEvent,
)
from recording.transcription import WhisperTranscriber
from utils import audio_trim

logger = logging.getLogger(__name__)

Extractor = Callable[..., Awaitable[Any]]

_BINARY_DIRS = (Path("/opt/homebrew/bin"), Path("/usr/local/bin"), Path("/usr/bin"))


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def resolve_executable(configured: str, fallbacks: Sequence[Union[str, Path]] = ()) -> str:
    """First existing candidate among the configured value and fallbacks.

    Bare command names are looked up on PATH. If nothing is found the
    configured value is returned unchanged and spawning will report it.
    """
    for candidate in (configured, *fallbacks):
        if not candidate:
            continue
        candidate = str(candidate)
        if os.sep in candidate:
            if Path(candidate).exists():
                return candidate
            continue
        found = shutil.which(candidate)
        if found:
            return found
    return configured


def resolve_model_path(configured: Path, fallbacks: Sequence[Path] = ()) -> Path:
    for candidate in (configured, *fallbacks):
        if candidate and Path(candidate).exists():
            return Path(candidate)
    return Path(configured)


class AudioRecorder:
    """Owns every session's recording, segmentation and transcription."""

    def __init__(
        self,
        config: Optional[AudioConfig] = None,
        *,
        registry: Optional[SessionRegistry] = None,
        transcriber: Optional[WhisperTranscriber] = None,
        extractor: Optional[Extractor] = None,
        capture_factory: Optional[Callable[[], CaptureProcess]] = None,
    ) -> None:
        self.config = config or AudioConfig.load()
        self.registry = registry or SessionRegistry()
        self.temp_dir = Path(self.config.temp_dir)
        self.temp_dir.mkdir(parents=True, exist_ok=True)

        self._transcriber = transcriber
        self._extractor = extractor or self._extract_with_ffmpeg
        self._capture_factory = capture_factory or self._build_capture
        self._recovery = ErrorRecovery(self, self.config)

        self._initialized = False
        self._lifecycle_locks: dict[str, asyncio.Lock] = {}
        self._lifecycle_waiters: dict[str, int] = {}
        self._background_tasks: set[asyncio.Task] = set()
        self._cleanup_handles: dict[Path, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self, *, verify: bool = True) -> None:
        """
        Resolve binary/model paths and verify the toolchain.

        Raises AudioInitializationError if ffmpeg or whisper-cli cannot be
        run or the model file is missing. Device enumeration is best-effort.
        """
        self._resolve_paths()
        if verify:
            await self._check_dependencies()
            try:
                await self.list_devices()
            except OSError as exc:
                logger.warning("Could not list audio devices: %s", exc)

        if self._transcriber is None:
            self._transcriber = WhisperTranscriber(
                self.config.whisper_path,
                self.config.whisper_model_path,
                language=self.config.whisper_language,
                timeout=self.config.transcription_timeout_seconds,
                min_size_bytes=self.config.min_segment_size_bytes,
            )

        self._initialized = True
        logger.info("Audio recorder initialized")
        logger.info("Using ffmpeg at: %s", self.config.ffmpeg_path)
        logger.info("Using ffprobe at: %s", self.config.ffprobe_path)
        logger.info("Using whisper at: %s", self.config.whisper_path)
        logger.info("Using whisper model: %s", self.config.whisper_model_path)

    def is_ready(self) -> bool:
        return self._initialized

    def _resolve_paths(self) -> None:
        cfg = self.config
        resources = Path.cwd()
        cfg.ffmpeg_path = resolve_executable(
            cfg.ffmpeg_path, [d / "ffmpeg" for d in _BINARY_DIRS] + [resources / "bin" / "ffmpeg"]
        )
        cfg.ffprobe_path = resolve_executable(
            cfg.ffprobe_path, [d / "ffprobe" for d in _BINARY_DIRS] + [resources / "bin" / "ffprobe"]
        )
        cfg.whisper_path = resolve_executable(
            cfg.whisper_path, [resources / "bin" / "whisper-cli", "whisper-cli", "whisper"]
        )
        cfg.whisper_model_path = resolve_model_path(
            cfg.whisper_model_path, [resources / "assets" / "models" / "ggml-base.en.bin"]
        )

    async def _check_dependencies(self) -> None:
        ok, detail = await audio_trim.check_executable(self.config.ffmpeg_path, "-version")
        if not ok:
            raise AudioInitializationError(
                f"FFmpeg is not installed or not accessible at {self.config.ffmpeg_path}: {detail}"
            )
        ok, detail = await audio_trim.check_executable(self.config.whisper_path, "--help")
        if not ok:
            raise AudioInitializationError(f"whisper-cli binary not found or not executable: {detail}")
        if not Path(self.config.whisper_model_path).is_file():
            raise AudioInitializationError(
                f"Whisper model not found at {self.config.whisper_model_path}. "
                "Configure WHISPER_MODEL_PATH or place the model under assets/models"
            )

    async def list_devices(self) -> str:
        output = await audio_trim.list_capture_devices(
            ffmpeg_path=self.config.ffmpeg_path,
            capture_format=self.config.capture_format,
        )
        if "BlackHole" in output:
            logger.info("BlackHole audio driver detected")
        else:
            logger.warning("BlackHole audio driver not detected. Internal audio capture may not work.")
        logger.debug("Available audio devices:\n%s", output)
        return output

    # ------------------------------------------------------------------
    # Recording lifecycle
    # ------------------------------------------------------------------

    async def start_recording(self, source: Union[AudioSource, str], session_id: str) -> None:
        """
        Start capturing `source` for `session_id`.

        An existing recording for the session is fully stopped first.
        Raises RecorderNotReadyError, UnsupportedSourceError or CaptureSpawnError.
        """
        if not self._initialized:
            raise RecorderNotReadyError("Audio service not initialized")
        source = self._coerce_source(source)
        if not self.config.device_for(source):
            raise UnsupportedSourceError(f"No capture device configured for source: {source.value}")

        async with self._lifecycle_lock(session_id):
            if session_id in self.registry:
                logger.info("Stopping existing recording for session %s", session_id)
                await self._stop_locked(session_id)

            session = RecordingSession(
                session_id=session_id,
                source=source,
                output_path=self._capture_path(session_id),
                start_time=_now(),
                recent=RecentTranscriptions(self.config.max_recent_transcriptions),
            )
            await self._spawn_capture(session)
            self.registry.set(session)
            self._start_scheduler(session)
            logger.info("Audio recording started for session %s from %s", session_id, source.value)

    async def stop_recording(self, session_id: str) -> Optional[str]:
        """
        Stop the session's recording and return everything transcribed,
        including the final window. Returns None when nothing was active or
        no usable audio was captured. Never raises.
        """
        async with self._lifecycle_lock(session_id):
            return await self._stop_locked(session_id)

    async def _stop_locked(self, session_id: str) -> Optional[str]:
        session = self.registry.get(session_id)
        if session is None:
            logger.warning("No active recording found for session %s", session_id)
            return None

        try:
            if session.scheduler is not None:
                session.scheduler.stop()
            await self._terminate_capture(session)
            logger.info("Recording stopped for session %s", session_id)

            # Waits for any in-flight tick; its result is still appended
            async with session.lock:
                final_text = await self._transcribe_final(session)
                if final_text:
                    session.add_segment(
                        Segment(
                            id=f"final-{session_id}-{_epoch_ms()}",
                            file_path=session.output_path,
                            start_time=_now(),
                            duration_ms=self.config.final_segment_duration_ms,
                            transcription=final_text,
                        )
                    )
                    logger.info("Added final transcription for session %s: %s", session_id, final_text[:80])

            transcript = session.transcript().strip()
            if not transcript:
                logger.warning("No transcription captured for session %s", session_id)
                return None
            logger.info("Complete transcription for session %s: %d chars", session_id, len(transcript))
            return transcript
        except Exception as exc:  # noqa: BLE001
            logger.error("Error stopping recording for session %s: %s", session_id, exc, exc_info=True)
            return None
        finally:
            self.registry.delete(session_id)
            self._schedule_cleanup(session.output_path)

    async def _spawn_capture(self, session: RecordingSession) -> None:
        capture = self._capture_factory()
        capture.on_diagnostic = partial(self._on_capture_diagnostic, session, capture)
        capture.on_exit = partial(self._on_capture_exit, session, capture)
        capture.on_error = partial(self._on_capture_error, session, capture)
        await capture.start(session.source, session.output_path)
        session.capture = capture
        session.is_active = True
        session.start_time = _now()

    async def _terminate_capture(self, session: RecordingSession) -> None:
        capture = session.capture
        session.is_active = False
        if capture is None:
            return
        await capture.terminate(self.config.stop_grace_seconds)
        session.capture = None

    def _start_scheduler(self, session: RecordingSession) -> None:
        scheduler = SegmentScheduler(
            name=session.session_id,
            interval=self.config.segment_duration_seconds,
            tick=partial(self._run_tick, session),
            is_active=lambda: session.is_active and self.registry.is_current(session),
        )
        session.scheduler = scheduler
        scheduler.start()

    # ------------------------------------------------------------------
    # Recovery hooks (see recording.recovery)
    # ------------------------------------------------------------------

    def is_current(self, session: RecordingSession) -> bool:
        return self.registry.is_current(session)

    async def stop_capture(self, session: RecordingSession) -> None:
        async with self._lifecycle_lock(session.session_id):
            if session.scheduler is not None:
                session.scheduler.stop()
            await self._terminate_capture(session)

    async def restart_capture(self, session: RecordingSession) -> None:
        """Replace the session's capture with a fresh process and output file."""
        async with self._lifecycle_lock(session.session_id):
            if not self.registry.is_current(session):
                logger.info("Session %s no longer registered; skipping restart", session.session_id)
                return
            if session.scheduler is not None:
                session.scheduler.stop()
            await self._terminate_capture(session)

            # Audio captured before the failure is not carried into the new file
            self._discard_file(session.output_path)
            session.output_path = self._capture_path(session.session_id)
            session.needs_manual_restart = False
            await self._spawn_capture(session)
            session.restart_count += 1
            self._start_scheduler(session)
            logger.info(
                "Restarted capture for session %s (restart #%d)", session.session_id, session.restart_count
            )

    def _on_capture_diagnostic(self, session: RecordingSession, capture: CaptureProcess, line: str) -> None:
        if session.capture is not capture or not self.registry.is_current(session):
            return
        self._spawn_background(
            self._recovery.handle_diagnostic(session, line), f"recover-diagnostic-{session.session_id}"
        )

    def _on_capture_exit(self, session: RecordingSession, capture: CaptureProcess, returncode: int) -> None:
        if session.capture is not capture:
            return
        was_active = session.is_active
        session.is_active = False
        # Negative codes mean the process was killed by a signal
        if was_active and returncode > 0 and self.registry.is_current(session):
            logger.warning(
                "Recording process exited unexpectedly with code %s for session %s", returncode, session.session_id
            )
            self._spawn_background(
                self._recovery.handle_unexpected_exit(session, returncode), f"recover-exit-{session.session_id}"
            )
        else:
            logger.info("Recording process closed with code %s for session %s", returncode, session.session_id)

    def _on_capture_error(self, session: RecordingSession, capture: CaptureProcess, exc: BaseException) -> None:
        if session.capture is not capture or not self.registry.is_current(session):
            return
        logger.error("Recording process error for session %s: %s", session.session_id, exc)
        session.is_active = False
        self._spawn_background(
            self._recovery.handle_process_error(session, exc), f"recover-error-{session.session_id}"
        )

    # ------------------------------------------------------------------
    # Segment processing
    # ------------------------------------------------------------------

    async def _run_tick(self, session: RecordingSession) -> None:
        started = _now()
        segment_id = f"{session.session_id}-{_epoch_ms()}"
        segment_path = self.temp_dir / f"segment-{segment_id}.wav"

        async with session.lock:
            try:
                await self._extractor(session.output_path, segment_path, self.config.segment_duration_ms)
            except ExtractionError as exc:
                logger.warning("Failed to extract audio segment for session %s: %s", session.session_id, exc)
                self._schedule_cleanup(segment_path)
                return

            segment = Segment(
                id=segment_id,
                file_path=segment_path,
                start_time=started,
                duration_ms=self.config.segment_duration_ms,
            )
            text = await self._transcribe_file(segment_path)

            if not self.registry.is_current(session):
                logger.debug("Session %s removed before segment %s completed; discarding", session.session_id, segment_id)
                self._schedule_cleanup(segment_path)
                return

            segment.transcription = text or None
            session.add_segment(segment)
            if text:
                logger.info("Transcription ready for session %s: %s", session.session_id, text[:50])
            else:
                logger.debug("No transcription result for segment %s", segment_id)
            self._schedule_cleanup(segment_path)

    async def _transcribe_file(self, path: Path) -> str:
        """Transcribe `path` if it passes the minimum-size gate; "" otherwise."""
        if not path.exists():
            logger.warning("Segment file not found: %s", path)
            return ""
        size = path.stat().st_size
        if size < self.config.min_segment_size_bytes:
            logger.debug("Segment too short (%d bytes), skipping transcription: %s", size, path.name)
            return ""
        try:
            return await self._transcriber.transcribe(path)
        except TranscriptionError as exc:
            logger.error("Transcription failed for %s: %s", path.name, exc)
            return ""

    async def _transcribe_final(self, session: RecordingSession) -> str:
        source_path = session.output_path
        if not source_path.exists():
            logger.warning("Capture file missing for session %s: %s", session.session_id, source_path)
            return ""
        size = source_path.stat().st_size
        if size < self.config.min_segment_size_bytes:
            logger.warning("No usable audio captured for session %s (%d bytes)", session.session_id, size)
            return ""

        final_path = self.temp_dir / f"final-{session.session_id}-{_epoch_ms()}.wav"
        try:
            await self._extractor(
                source_path, final_path, self.config.final_segment_duration_ms, clamp_to_total=True
            )
        except ExtractionError as exc:
            logger.error("Error extracting final audio segment for session %s: %s", session.session_id, exc)
            self._discard_file(final_path)
            return ""
        try:
            return await self._transcribe_file(final_path)
        finally:
            self._discard_file(final_path)

    async def flush_pending(self, session_id: str) -> str:
        """Transcribe everything captured so far for an active session right now."""
        session = self.registry.get(session_id)
        if session is None or not session.is_active:
            logger.info("No active recording for session %s; nothing to flush", session_id)
            return ""
        source_path = session.output_path
        if not source_path.exists():
            logger.info("Recording file doesn't exist yet for session %s", session_id)
            return ""

        started = _now()
        segment_id = f"flush-{session_id}-{_epoch_ms()}"
        segment_path = self.temp_dir / f"segment-{segment_id}.wav"
        async with session.lock:
            try:
                await asyncio.to_thread(shutil.copyfile, source_path, segment_path)
            except OSError as exc:
                logger.warning("Error copying recording file for session %s: %s", session_id, exc)
                elapsed_ms = max(1000, int((started - session.start_time).total_seconds() * 1000))
                try:
                    await self._extractor(source_path, segment_path, elapsed_ms, clamp_to_total=True)
                except ExtractionError as extract_exc:
                    logger.error("Fallback extraction failed for session %s: %s", session_id, extract_exc)
                    self._discard_file(segment_path)
                    return ""

            text = await self._transcribe_file(segment_path)
            if text and self.registry.is_current(session):
                session.add_segment(
                    Segment(
                        id=segment_id,
                        file_path=segment_path,
                        start_time=started,
                        duration_ms=int((started - session.start_time).total_seconds() * 1000),
                        transcription=text,
                    )
                )
            self._discard_file(segment_path)
        return text

    async def _extract_with_ffmpeg(
        self, input_path: Path, output_path: Path, window_ms: int, *, clamp_to_total: bool = False
    ) -> float:
        return await audio_trim.extract_trailing_window(
            input_path,
            output_path,
            window_ms,
            ffprobe_path=self.config.ffprobe_path,
            ffmpeg_path=self.config.ffmpeg_path,
            clamp_to_total=clamp_to_total,
        )

    def _build_capture(self) -> CaptureProcess:
        return CaptureProcess(
            ffmpeg_path=self.config.ffmpeg_path,
            devices=self.config.devices,
            capture_format=self.config.capture_format,
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
            codec=self.config.codec,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recording_status(self, session_id: str) -> RecordingStatus:
        return self.registry.status(session_id)

    def get_recent_transcriptions(self, session_id: str) -> list[TranscriptionEvent]:
        """Return and clear the session's buffered transcriptions."""
        return self.registry.drain_recent_transcriptions(session_id)

    def get_transcript(self, session_id: str, start_index: int = 0) -> str:
        session = self.registry.get(session_id)
        if session is None:
            return ""
        return session.transcript(start_index)

    def segment_count(self, session_id: str) -> int:
        session = self.registry.get(session_id)
        return len(session.segments) if session else 0

    def get_status(self) -> dict:
        return {
            "initialized": self._initialized,
            "active_recordings": sum(1 for session in self.registry if session.is_active),
            "temp_dir": str(self.temp_dir),
            "recordings": [session.summary() for session in self.registry],
        }

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup(self) -> None:
        """Stop every recording, cancel pending work and empty the temp dir."""
        background = list(self._background_tasks)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)

        for session_id in self.registry.session_ids():
            await self.stop_recording(session_id)

        for handle in self._cleanup_handles.values():
            handle.cancel()
        self._cleanup_handles.clear()

        if not self.config.keep_audio_files and self.temp_dir.exists():
            for path in self.temp_dir.iterdir():
                if path.is_file():
                    self._remove_file(path)
        logger.info("Audio recorder cleaned up")

    def _capture_path(self, session_id: str) -> Path:
        return self.temp_dir / f"{session_id}-{_epoch_ms()}.wav"

    def _schedule_cleanup(self, path: Path) -> None:
        if self.config.keep_audio_files:
            logger.debug("Preserving audio file for inspection: %s", path)
            return
        loop = asyncio.get_running_loop()
        previous = self._cleanup_handles.pop(path, None)
        if previous is not None:
            previous.cancel()
        self._cleanup_handles[path] = loop.call_later(
            self.config.segment_cleanup_delay_seconds, self._remove_file, path
        )

    def _discard_file(self, path: Path) -> None:
        if self.config.keep_audio_files:
            return
        handle = self._cleanup_handles.pop(path, None)
        if handle is not None:
            handle.cancel()
        self._remove_file(path)

    def _remove_file(self, path: Path) -> None:
        self._cleanup_handles.pop(path, None)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to clean up audio file %s: %s", path, exc)

    def _spawn_background(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)
        else:
            logger.debug("Background task %s finished: %s", task.get_name(), task.result())

    async def wait_for_background(self) -> None:
        """Wait until no recovery task is running. cleanup() cancels them instead."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)

    @contextlib.asynccontextmanager
    async def _lifecycle_lock(self, session_id: str) -> AsyncIterator[None]:
        """Serialize start/stop/restart for one session.

        The lock is dropped once nobody holds or waits for it, so ended
        sessions leave nothing behind.
        """
        lock = self._lifecycle_locks.setdefault(session_id, asyncio.Lock())
        self._lifecycle_waiters[session_id] = self._lifecycle_waiters.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lifecycle_waiters[session_id] - 1
            if remaining:
                self._lifecycle_waiters[session_id] = remaining
            else:
                del self._lifecycle_waiters[session_id]
                del self._lifecycle_locks[session_id]

    @staticmethod
    def _coerce_source(source: Union[AudioSource, str]) -> AudioSource:
        if isinstance(source, AudioSource):
            return source
        try:
            return AudioSource(source)
        except ValueError:
            pass
        try:
            return AudioSource[str(source).upper()]
        except KeyError as exc:
            raise UnsupportedSourceError(f"Unsupported audio source: {source}") from exc
