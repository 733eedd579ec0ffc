"""
Speech-to-text via the whisper.cpp command line tool.

The engine is a black box: it is invoked once per audio file and either
prints the transcript on stdout or writes a sidecar .txt file next to the
input. Empty, missing or tiny inputs short-circuit to "" without spawning it.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

from recording.errors import TranscriptionError

logger = logging.getLogger(__name__)

MIN_AUDIO_SIZE_BYTES = 1000
DEFAULT_TIMEOUT_SECONDS = 30.0

_ANSI_PATTERNS = (
    re.compile(r"\x1b\[[0-9;]*m"),
    re.compile(r"\[\d+;\d+;\d+m"),
    re.compile(r"\[\d+m"),
)
_TIMESTAMP_PATTERNS = (
    # [00:00:00.000 --> 00:00:02.000]
    re.compile(r"\[\d{2}:\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}\.\d{3}\]"),
    # WebVTT cue timing without brackets
    re.compile(r"\d{2}:\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}\.\d{3}"),
    # [00:00.000 --> 00:02.000]
    re.compile(r"\[\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}\.\d{3}\]"),
    # [0.00s -> 2.00s]
    re.compile(r"\[\d+\.\d+s\s*->\s*\d+\.\d+s\]"),
)
_WEBVTT_HEADER = re.compile(r"^\s*WEBVTT\s*", re.IGNORECASE)
_SPEAKER_LABEL = re.compile(r"\[?Speaker\s+\d+\]?\s*:?\s*", re.IGNORECASE)
_CONFIDENCE = (
    re.compile(r"\(confidence:\s*\d+\.\d+\)", re.IGNORECASE),
    re.compile(r"\[\d+\.\d+%\]"),
)
_WHITESPACE = re.compile(r"\s+")
_QUOTE_CHARS = "\"'"


def clean_transcription_text(text: str) -> str:
    """Strip timestamps, color codes and annotations, collapse whitespace, unquote."""
    cleaned = text or ""
    for pattern in _ANSI_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    for pattern in _TIMESTAMP_PATTERNS:
        cleaned = pattern.sub("", cleaned)
    cleaned = _WEBVTT_HEADER.sub("", cleaned)
    cleaned = _SPEAKER_LABEL.sub("", cleaned)
    for pattern in _CONFIDENCE:
        cleaned = pattern.sub("", cleaned)
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned.strip(_QUOTE_CHARS).strip()


def sidecar_candidates(audio_path: Path) -> list[Path]:
    """Paths where the engine may have written its text output."""
    audio_path = Path(audio_path)
    return [audio_path.with_suffix(".txt"), audio_path.with_name(audio_path.name + ".txt")]


class WhisperTranscriber:
    """Runs whisper-cli against one audio file and returns cleaned text."""

    def __init__(
        self,
        executable: str,
        model_path: Path,
        *,
        language: str = "auto",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        min_size_bytes: int = MIN_AUDIO_SIZE_BYTES,
    ) -> None:
        self.executable = executable
        self.model_path = Path(model_path)
        self.language = language
        self.timeout = timeout
        self.min_size_bytes = min_size_bytes

    def build_args(self, audio_path: Path) -> list[str]:
        return [
            self.executable,
            "--model",
            str(self.model_path),
            "--output-txt",
            "--no-prints",
            "--language",
            self.language,
            "--print-colors",
            "false",
            str(audio_path),  # input file must come last
        ]

    def is_transcribable(self, audio_path: Path) -> bool:
        audio_path = Path(audio_path)
        if not audio_path.exists():
            logger.warning("Audio file not found: %s", audio_path)
            return False
        size = audio_path.stat().st_size
        if size < self.min_size_bytes:
            logger.debug("Audio file too small (%d bytes), skipping transcription: %s", size, audio_path.name)
            return False
        return True

    async def transcribe(self, audio_path: Path) -> str:
        """
        Transcribe `audio_path`.

        Returns "" for missing, undersized or silent input.
        Raises TranscriptionError if the engine cannot be spawned, exits
        non-zero, or exceeds the timeout (the process is killed first).
        """
        audio_path = Path(audio_path)
        if not self.is_transcribable(audio_path):
            return ""

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_args(audio_path),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscriptionError(f"Failed to start whisper-cli: {exc}", cause=exc) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            await _kill(process)
            raise TranscriptionError(
                f"whisper-cli timed out after {self.timeout:.0f}s for {audio_path.name}", cause=exc
            ) from exc

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.error("whisper-cli exited with code %s: %s", process.returncode, detail[:500])
            raise TranscriptionError(f"whisper-cli exited with code {process.returncode}")

        raw = stdout.decode("utf-8", errors="replace").strip()
        sidecar = self._read_sidecar(audio_path)
        if not raw:
            raw = sidecar or ""

        if not raw:
            logger.debug("No transcription result for %s", audio_path.name)
            return ""

        text = clean_transcription_text(raw)
        if text:
            logger.info("Transcribed %s: %s", audio_path.name, text[:80] + "..." if len(text) > 80 else text)
        return text

    def _read_sidecar(self, audio_path: Path) -> Optional[str]:
        # Sidecar files are always removed once seen, even when stdout had the text
        content = None
        for candidate in sidecar_candidates(audio_path):
            if not candidate.exists():
                continue
            try:
                if content is None:
                    content = candidate.read_text(encoding="utf-8").strip()
                    logger.debug("Read transcription from sidecar %s", candidate.name)
                candidate.unlink()
            except OSError as exc:
                logger.warning("Failed to read transcription file %s: %s", candidate, exc)
        return content


async def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
