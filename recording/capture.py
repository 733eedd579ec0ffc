"""
Audio capture process wrapper.

Each recording owns one ffmpeg process writing mono 16 kHz PCM to a WAV
file. The wrapper exposes three asynchronous signals to its owner:

- on_diagnostic(line): stderr lines matching a known error marker
- on_exit(returncode): the process exited without being asked to stop
- on_error(exc): an OS-level error while supervising the running process

Termination is explicit: terminate() sends SIGTERM, waits for the grace
period, escalates to SIGKILL and always waits for the exit status.
"""

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Mapping, Optional, Union

from recording.errors import CaptureSpawnError, UnsupportedSourceError
from recording.session import AudioSource

logger = logging.getLogger(__name__)

DiagnosticCallback = Callable[[str], Union[Awaitable[None], None]]
ExitCallback = Callable[[int], Union[Awaitable[None], None]]
ErrorCallback = Callable[[BaseException], Union[Awaitable[None], None]]

# stderr substrings that are surfaced to the owner; everything else is progress/info
DEVICE_BUSY_MARKER = "Device or resource busy"
NO_SUCH_DEVICE_MARKER = "No such device"
INVALID_DATA_MARKER = "Invalid data found"
KNOWN_ERROR_MARKERS = (DEVICE_BUSY_MARKER, NO_SUCH_DEVICE_MARKER, INVALID_DATA_MARKER)

_READ_CHUNK_BYTES = 4096


class CaptureState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPING = "stopping"


def build_capture_args(
    source: AudioSource,
    output_path: Path,
    *,
    devices: Mapping[AudioSource, str],
    capture_format: str = "avfoundation",
    sample_rate: int = 16000,
    channels: int = 1,
    codec: str = "pcm_s16le",
) -> list[str]:
    """ffmpeg arguments (without the executable) for capturing `source`."""
    try:
        source = AudioSource(source)
    except ValueError as exc:
        raise UnsupportedSourceError(f"Unsupported audio source: {source}") from exc
    device = devices.get(source)
    if not device:
        raise UnsupportedSourceError(f"No capture device configured for source: {source.value}")
    return [
        "-y",
        "-f",
        capture_format,
        "-i",
        device,
        "-ac",
        str(channels),
        "-ar",
        str(sample_rate),
        "-acodec",
        codec,
        str(output_path),
    ]


def is_error_diagnostic(line: str) -> bool:
    return any(marker in line for marker in KNOWN_ERROR_MARKERS)


class CaptureProcess:
    """Supervises a single ffmpeg capture process."""

    def __init__(
        self,
        *,
        ffmpeg_path: str = "ffmpeg",
        devices: Mapping[AudioSource, str],
        capture_format: str = "avfoundation",
        sample_rate: int = 16000,
        channels: int = 1,
        codec: str = "pcm_s16le",
        on_diagnostic: Optional[DiagnosticCallback] = None,
        on_exit: Optional[ExitCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self.ffmpeg_path = ffmpeg_path
        self.devices = dict(devices)
        self.capture_format = capture_format
        self.sample_rate = sample_rate
        self.channels = channels
        self.codec = codec
        self.on_diagnostic = on_diagnostic
        self.on_exit = on_exit
        self.on_error = on_error

        self.state = CaptureState.IDLE
        self.output_path: Optional[Path] = None
        self.returncode: Optional[int] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._exit_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def stop_requested(self) -> bool:
        return self.state is CaptureState.STOPPING

    async def start(self, source: AudioSource, output_path: Path) -> asyncio.subprocess.Process:
        """Spawn ffmpeg for `source` writing to `output_path`."""
        if self.state is not CaptureState.IDLE:
            raise CaptureSpawnError(f"Capture process already {self.state.value}")

        args = build_capture_args(
            source,
            output_path,
            devices=self.devices,
            capture_format=self.capture_format,
            sample_rate=self.sample_rate,
            channels=self.channels,
            codec=self.codec,
        )
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("Capture command: %s %s", self.ffmpeg_path, " ".join(args))

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise CaptureSpawnError(f"Failed to start audio capture with {self.ffmpeg_path}: {exc}", cause=exc) from exc

        self.output_path = output_path
        self.state = CaptureState.ACTIVE
        self._stderr_task = asyncio.create_task(self._watch_stderr(), name=f"capture-stderr-{self._process.pid}")
        self._exit_task = asyncio.create_task(self._watch_exit(), name=f"capture-exit-{self._process.pid}")
        logger.info("Capture started (pid=%s, source=%s) -> %s", self._process.pid, AudioSource(source).value, output_path)
        return self._process

    async def terminate(self, grace_seconds: float = 1.0) -> Optional[int]:
        """Stop the process and wait for it; returns the exit status."""
        process = self._process
        if process is None:
            return None
        self.state = CaptureState.STOPPING

        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=grace_seconds)
            except asyncio.TimeoutError:
                logger.warning("Capture process %s ignored SIGTERM; killing", process.pid)
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        for task in (self._stderr_task, self._exit_task):
            if task is not None and not task.done():
                try:
                    await asyncio.wait_for(task, timeout=grace_seconds)
                except asyncio.TimeoutError:
                    task.cancel()

        self.returncode = process.returncode
        self.state = CaptureState.IDLE
        logger.info("Capture process %s stopped (code=%s)", process.pid, self.returncode)
        return self.returncode

    async def _watch_stderr(self) -> None:
        process = self._process
        if process is None or process.stderr is None:
            return
        pending = ""
        try:
            while True:
                chunk = await process.stderr.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                pending += chunk.decode("utf-8", errors="replace")
                # ffmpeg terminates progress lines with \r rather than \n
                *lines, pending = pending.replace("\r", "\n").split("\n")
                for line in lines:
                    await self._handle_stderr_line(line)
            if pending:
                await self._handle_stderr_line(pending)
        except OSError as exc:
            logger.error("Error reading capture stderr (pid=%s): %s", process.pid, exc)
            await _invoke(self.on_error, exc)

    async def _handle_stderr_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if is_error_diagnostic(line):
            logger.error("Capture error (pid=%s): %s", self.pid, line)
            await _invoke(self.on_diagnostic, line)
        else:
            logger.debug("Capture output: %s", line)

    async def _watch_exit(self) -> None:
        process = self._process
        if process is None:
            return
        try:
            returncode = await process.wait()
        except OSError as exc:
            logger.error("Error waiting on capture process %s: %s", process.pid, exc)
            await _invoke(self.on_error, exc)
            return
        self.returncode = returncode
        if self.stop_requested:
            return
        self.state = CaptureState.IDLE
        logger.info("Capture process %s exited on its own (code=%s)", process.pid, returncode)
        await _invoke(self.on_exit, returncode)


async def _invoke(callback, *args) -> None:
    if callback is None:
        return
    try:
        result = callback(*args)
        if asyncio.iscoroutine(result):
            await result
    except Exception as exc:  # noqa: BLE001
        logger.error("Capture callback failed: %s", exc, exc_info=True)
