import os
import stat
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from recording.recorder import AudioRecorder  # noqa: E402
from tests.fakes import FakeCaptureFactory, FakeExtractor, FakeTranscriber, fast_config  # noqa: E402


@pytest.fixture
def write_script(tmp_path):
    """Write an executable /bin/sh script standing in for an external binary."""

    def _write(name: str, body: str) -> Path:
        path = tmp_path / "bin" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _write


@pytest.fixture
def captures():
    return FakeCaptureFactory()


@pytest.fixture
def extractor():
    return FakeExtractor()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def make_recorder(tmp_path, captures, extractor, transcriber):
    """Build an AudioRecorder wired to the in-process fakes."""

    def _make(**config_overrides) -> AudioRecorder:
        return AudioRecorder(
            fast_config(tmp_path, **config_overrides),
            transcriber=transcriber,
            extractor=extractor,
            capture_factory=captures,
        )

    return _make


@pytest.fixture(autouse=True)
def _clear_audio_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("AUDIO_") or name.startswith("WHISPER_") or name in {"FFMPEG_PATH", "FFPROBE_PATH"}:
            monkeypatch.delenv(name, raising=False)
