from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from recording.errors import ExtractionError

logger = logging.getLogger(__name__)


async def _run_subprocess(*cmd: str) -> tuple[bytes, bytes, int]:
	process = await asyncio.create_subprocess_exec(
		*cmd,
		stdin=asyncio.subprocess.DEVNULL,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
	)
	stdout, stderr = await process.communicate()
	return stdout or b"", stderr or b"", process.returncode


async def check_executable(*cmd: str) -> tuple[bool, str]:
	"""Run a version/help command; True when the binary exists and exits 0."""
	try:
		stdout, stderr, returncode = await _run_subprocess(*cmd)
	except OSError as exc:
		return False, str(exc)
	return returncode == 0, _error_text(stdout, stderr, cmd[0], returncode)


def _error_text(stdout: bytes, stderr: bytes, tool: str, returncode: int) -> str:
	message = stderr.decode("utf-8", errors="replace").strip()
	if not message:
		message = stdout.decode("utf-8", errors="replace").strip() or f"{tool} exited with code {returncode}"
	return message


async def probe_duration(path: Path, *, ffprobe_path: str = "ffprobe") -> float | None:
	"""Return the duration of an audio file in seconds using ffprobe."""
	stdout, stderr, returncode = await _run_subprocess(
		ffprobe_path,
		"-v",
		"error",
		"-show_entries",
		"format=duration",
		"-of",
		"default=noprint_wrappers=1:nokey=1",
		str(path),
	)
	if returncode != 0:
		raise RuntimeError(_error_text(stdout, stderr, "ffprobe", returncode))
	text = stdout.decode("utf-8", errors="replace").strip()
	if not text:
		return None
	try:
		return float(text)
	except ValueError:
		return None


async def trim_audio(
	*,
	input_path: Path,
	output_path: Path,
	start_seconds: float,
	duration_seconds: float,
	ffmpeg_path: str = "ffmpeg",
) -> None:
	"""
	Copy `duration_seconds` of audio starting at `start_seconds` into `output_path`.

	The codec is copied rather than re-encoded, and any existing file at
	`output_path` is overwritten.
	"""
	output_path = Path(output_path)
	output_path.parent.mkdir(parents=True, exist_ok=True)

	stdout, stderr, returncode = await _run_subprocess(
		ffmpeg_path,
		"-hide_banner",
		"-loglevel",
		"error",
		"-y",
		"-i",
		str(input_path),
		"-ss",
		f"{max(start_seconds, 0.0):.3f}",
		"-t",
		f"{max(duration_seconds, 0.0):.3f}",
		"-acodec",
		"copy",
		str(output_path),
	)
	if returncode != 0:
		raise RuntimeError(_error_text(stdout, stderr, "ffmpeg", returncode))


async def extract_trailing_window(
	input_path: Path,
	output_path: Path,
	window_ms: int,
	*,
	ffprobe_path: str = "ffprobe",
	ffmpeg_path: str = "ffmpeg",
	clamp_to_total: bool = False,
) -> float:
	"""
	Extract the last `window_ms` of a (possibly still growing) recording.

	The duration is probed on every call because the capture process keeps
	appending to `input_path`. With `clamp_to_total`, a recording shorter than
	the window is extracted whole and the output must be non-empty.

	Returns the probed total duration in seconds.
	Raises ExtractionError with stage "probe" or "trim".
	"""
	input_path = Path(input_path)
	output_path = Path(output_path)
	window_seconds = window_ms / 1000

	try:
		total_duration = await probe_duration(input_path, ffprobe_path=ffprobe_path)
	except (OSError, RuntimeError) as exc:
		raise ExtractionError(f"Duration probe failed for {input_path.name}: {exc}", stage="probe", cause=exc) from exc
	if total_duration is None or total_duration <= 0:
		raise ExtractionError(
			f"Invalid audio duration for {input_path.name}: {total_duration}",
			stage="probe",
		)

	start_offset = max(0.0, total_duration - window_seconds)
	duration = min(window_seconds, total_duration) if clamp_to_total else window_seconds

	try:
		await trim_audio(
			input_path=input_path,
			output_path=output_path,
			start_seconds=start_offset,
			duration_seconds=duration,
			ffmpeg_path=ffmpeg_path,
		)
	except (OSError, RuntimeError) as exc:
		raise ExtractionError(f"Audio trim failed for {input_path.name}: {exc}", stage="trim", cause=exc) from exc

	if clamp_to_total:
		if not output_path.exists():
			raise ExtractionError(f"Extracted file was not created: {output_path.name}", stage="trim")
		if output_path.stat().st_size == 0:
			raise ExtractionError(f"Extracted file is empty: {output_path.name}", stage="trim")

	logger.debug(
		"Extracted %.2fs from %.2fs of %s (offset %.2fs)",
		duration,
		total_duration,
		input_path.name,
		start_offset,
	)
	return total_duration


async def list_capture_devices(*, ffmpeg_path: str = "ffmpeg", capture_format: str = "avfoundation") -> str:
	"""Return ffmpeg's device listing for `capture_format` (printed on stderr)."""
	stdout, stderr, _ = await _run_subprocess(
		ffmpeg_path,
		"-hide_banner",
		"-f",
		capture_format,
		"-list_devices",
		"true",
		"-i",
		"",
	)
	# ffmpeg exits non-zero after listing because no real input was opened
	return (stderr or stdout).decode("utf-8", errors="replace")
