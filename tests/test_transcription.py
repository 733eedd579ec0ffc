"""
Unit Tests for whisper-cli invocation and text cleanup

The engine is replaced with small shell scripts; each receives the audio
file as its last argument.
"""

import asyncio

import pytest

from recording.errors import TranscriptionError
from recording.transcription import WhisperTranscriber, clean_transcription_text, sidecar_candidates

# Sets $last to the final argument (the audio file)
LAST_ARG = 'for last; do :; done'


@pytest.fixture
def audio_file(tmp_path):
    path = tmp_path / "segment-s1-1.wav"
    path.write_bytes(b"\x00" * 2000)
    return path


def _transcriber(script, tmp_path, **kwargs) -> WhisperTranscriber:
    return WhisperTranscriber(str(script), tmp_path / "ggml-base.en.bin", **kwargs)


class TestCleanTranscriptionText:
    def test_timestamp_quotes_and_whitespace_removed(self):
        assert clean_transcription_text("[00:00:00.000 --> 00:00:02.500]  'Hello world'  ") == "Hello world"

    def test_multiple_cues_collapse_to_one_line(self):
        raw = "[00:00:00.000 --> 00:00:02.000]  Tell me about\n[00:00:02.000 --> 00:00:04.000]  yourself.\n"
        assert clean_transcription_text(raw) == "Tell me about yourself."

    def test_color_codes_and_annotations(self):
        raw = "\x1b[38;5;160mSpeaker 1: hello\x1b[0m (confidence: 0.93) [87.5%]"
        assert clean_transcription_text(raw) == "hello"

    def test_webvtt_header(self):
        assert clean_transcription_text("WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nhi there") == "hi there"

    def test_empty(self):
        assert clean_transcription_text("") == ""
        assert clean_transcription_text("   \n ") == ""


class TestWhisperTranscriber:
    def test_build_args_places_input_last(self, tmp_path, audio_file):
        args = WhisperTranscriber("whisper-cli", tmp_path / "m.bin", language="en").build_args(audio_file)

        assert args[0] == "whisper-cli"
        assert args[args.index("--model") + 1] == str(tmp_path / "m.bin")
        assert "--output-txt" in args
        assert "--no-prints" in args
        assert args[args.index("--language") + 1] == "en"
        assert args[-1] == str(audio_file)

    def test_stdout_is_cleaned(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", "echo \"[00:00:00.000 --> 00:00:02.500]  'Hello world'  \"")
        assert asyncio.run(_transcriber(script, tmp_path).transcribe(audio_file)) == "Hello world"

    def test_falls_back_to_sidecar_and_removes_it(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", f'{LAST_ARG}\necho "from the sidecar" > "$last.txt"')

        text = asyncio.run(_transcriber(script, tmp_path).transcribe(audio_file))

        assert text == "from the sidecar"
        assert not any(path.exists() for path in sidecar_candidates(audio_file))

    def test_sidecar_without_wav_suffix(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", f'{LAST_ARG}\necho "stripped name" > "${{last%.wav}}.txt"')

        assert asyncio.run(_transcriber(script, tmp_path).transcribe(audio_file)) == "stripped name"
        assert not audio_file.with_suffix(".txt").exists()

    def test_small_file_never_runs_engine(self, tmp_path):
        tiny = tmp_path / "tiny.wav"
        tiny.write_bytes(b"\x00" * 999)
        transcriber = _transcriber(tmp_path / "does-not-exist", tmp_path)

        assert asyncio.run(transcriber.transcribe(tiny)) == ""

    def test_missing_file_returns_empty(self, tmp_path):
        transcriber = _transcriber(tmp_path / "does-not-exist", tmp_path)
        assert asyncio.run(transcriber.transcribe(tmp_path / "missing.wav")) == ""

    def test_missing_engine_raises(self, tmp_path, audio_file):
        with pytest.raises(TranscriptionError, match="Failed to start"):
            asyncio.run(_transcriber(tmp_path / "does-not-exist", tmp_path).transcribe(audio_file))

    def test_nonzero_exit_raises(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", 'echo "model not found" >&2; exit 3')
        with pytest.raises(TranscriptionError, match="code 3"):
            asyncio.run(_transcriber(script, tmp_path).transcribe(audio_file))

    def test_timeout_kills_engine(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", "exec sleep 10")
        transcriber = _transcriber(script, tmp_path, timeout=0.2)

        with pytest.raises(TranscriptionError, match="timed out"):
            asyncio.run(asyncio.wait_for(transcriber.transcribe(audio_file), timeout=5))

    def test_silence_returns_empty(self, write_script, tmp_path, audio_file):
        script = write_script("whisper-cli", "exit 0")
        assert asyncio.run(_transcriber(script, tmp_path).transcribe(audio_file)) == ""
