"""
Unit Tests for failure classification and recovery policy

A fake owner records the lifecycle calls; delays are recorded rather than
slept so policy timing can be asserted directly.
"""

import asyncio
import errno
from datetime import datetime, timezone
from pathlib import Path

import pytest

from recording.config import AudioConfig
from recording.errors import CaptureSpawnError
from recording.recovery import (
    ErrorRecovery,
    FailureKind,
    RecoveryOutcome,
    classify_diagnostic,
    is_recoverable_error,
)
from recording.session import AudioSource, RecordingSession


class FakeOwner:
    def __init__(self, current: bool = True, restart_error: Exception | None = None) -> None:
        self.current = current
        self.restart_error = restart_error
        self.calls: list[str] = []

    def is_current(self, session) -> bool:
        return self.current

    async def stop_capture(self, session) -> None:
        self.calls.append("stop")

    async def restart_capture(self, session) -> None:
        self.calls.append("restart")
        if self.restart_error is not None:
            raise self.restart_error
        session.is_active = True

    async def list_devices(self) -> str:
        self.calls.append("list_devices")
        return "[0] BlackHole 2ch"


class SleepRecorder:
    """Records each delay in the owner's call log instead of sleeping."""

    def __init__(self, owner: FakeOwner) -> None:
        self.owner = owner

    async def __call__(self, seconds: float) -> None:
        self.owner.calls.append(f"sleep {seconds:g}")


def _session(source: AudioSource = AudioSource.INTERVIEWEE) -> RecordingSession:
    session = RecordingSession(
        session_id="s1",
        source=source,
        output_path=Path("/tmp/s1.wav"),
        start_time=datetime.now(timezone.utc),
    )
    session.is_active = True
    return session


def _recovery(owner: FakeOwner, **config) -> ErrorRecovery:
    return ErrorRecovery(owner, AudioConfig(**config), sleep=SleepRecorder(owner))


class TestClassification:
    def test_diagnostic_kinds(self):
        assert classify_diagnostic("x: Device or resource busy") is FailureKind.DEVICE_BUSY
        assert classify_diagnostic(":7: No such device") is FailureKind.DEVICE_NOT_FOUND
        assert classify_diagnostic("Invalid data found when processing input") is FailureKind.INVALID_DATA
        assert classify_diagnostic("frame=1 fps=0.0") is None

    def test_recoverable_errors(self):
        codes = AudioConfig().recoverable_error_codes
        assert is_recoverable_error(OSError(errno.EAGAIN, "try again"), codes)
        assert is_recoverable_error(RuntimeError("spawn EBUSY"), codes)
        assert not is_recoverable_error(OSError(errno.ENOMEM, "out of memory"), codes)


class TestDeviceBusy:
    def test_waits_stops_waits_restarts(self):
        owner = FakeOwner()
        session = _session()

        outcome = asyncio.run(_recovery(owner).handle_diagnostic(session, "Device or resource busy"))

        assert outcome is RecoveryOutcome.RESTARTED
        assert owner.calls == ["sleep 2", "stop", "sleep 1", "restart"]
        assert session.last_failure == "device_busy"

    def test_no_restart_if_session_stopped_meanwhile(self):
        owner = FakeOwner(current=False)
        outcome = asyncio.run(_recovery(owner).handle_diagnostic(_session(), "Device or resource busy"))

        assert outcome is RecoveryOutcome.SKIPPED
        assert "restart" not in owner.calls


class TestDeviceNotFound:
    def test_lists_devices_without_restart(self):
        owner = FakeOwner()
        outcome = asyncio.run(_recovery(owner).handle_diagnostic(_session(AudioSource.SYSTEM), "No such device"))

        assert outcome is RecoveryOutcome.LOGGED
        assert owner.calls == ["list_devices"]


class TestInvalidData:
    def test_logged_only(self):
        owner = FakeOwner()
        session = _session()
        outcome = asyncio.run(_recovery(owner).handle_diagnostic(session, "Invalid data found"))

        assert outcome is RecoveryOutcome.LOGGED
        assert owner.calls == []
        assert session.last_failure == "invalid_data"


class TestUnexpectedExit:
    @pytest.mark.parametrize("code", [1, 255])
    def test_recoverable_code_restarts_after_delay(self, code):
        owner = FakeOwner()
        session = _session()

        outcome = asyncio.run(_recovery(owner).handle_unexpected_exit(session, code))

        assert outcome is RecoveryOutcome.RESTARTED
        assert owner.calls == ["sleep 3", "restart"]
        assert session.is_active is True

    def test_other_code_requires_manual_restart(self):
        owner = FakeOwner()
        session = _session()

        outcome = asyncio.run(_recovery(owner).handle_unexpected_exit(session, 137))

        assert outcome is RecoveryOutcome.MANUAL_RESTART_REQUIRED
        assert owner.calls == []
        assert session.is_active is False
        assert session.needs_manual_restart is True

    def test_code_set_is_configurable(self):
        owner = FakeOwner()
        outcome = asyncio.run(
            _recovery(owner, recoverable_exit_codes=frozenset({2})).handle_unexpected_exit(_session(), 1)
        )
        assert outcome is RecoveryOutcome.MANUAL_RESTART_REQUIRED

    def test_failed_restart_is_not_retried(self):
        owner = FakeOwner(restart_error=CaptureSpawnError("spawn failed"))
        session = _session()

        outcome = asyncio.run(_recovery(owner).handle_unexpected_exit(session, 1))

        assert outcome is RecoveryOutcome.RESTART_FAILED
        assert owner.calls.count("restart") == 1
        assert session.needs_manual_restart is True


class TestProcessError:
    def test_transient_error_restarts(self):
        owner = FakeOwner()
        outcome = asyncio.run(_recovery(owner).handle_process_error(_session(), OSError(errno.EINTR, "interrupted")))

        assert outcome is RecoveryOutcome.RESTARTED
        assert owner.calls == ["sleep 2", "restart"]

    def test_other_error_requires_manual_restart(self):
        owner = FakeOwner()
        session = _session()
        outcome = asyncio.run(_recovery(owner).handle_process_error(session, OSError(errno.ENOMEM, "no memory")))

        assert outcome is RecoveryOutcome.MANUAL_RESTART_REQUIRED
        assert session.needs_manual_restart is True
        assert owner.calls == []


class TestSingleRecoveryPerSession:
    def test_second_failure_during_recovery_is_ignored(self):
        owner = FakeOwner()
        session = _session()

        async def scenario():
            release = asyncio.Event()

            async def slow_sleep(seconds):
                owner.calls.append(f"sleep {seconds:g}")
                await release.wait()

            recovery = ErrorRecovery(owner, AudioConfig(), sleep=slow_sleep)
            first = asyncio.create_task(recovery.handle_unexpected_exit(session, 1))
            await asyncio.sleep(0)
            assert recovery.is_recovering("s1")
            second = await recovery.handle_diagnostic(session, "Device or resource busy")
            release.set()
            return await first, second, recovery

        first, second, recovery = asyncio.run(scenario())

        assert first is RecoveryOutcome.RESTARTED
        assert second is RecoveryOutcome.SKIPPED
        assert owner.calls.count("restart") == 1
        assert not recovery.is_recovering("s1")


class TestRestartLimit:
    @pytest.mark.parametrize(
        "handle",
        [
            lambda recovery, session: recovery.handle_unexpected_exit(session, 1),
            lambda recovery, session: recovery.handle_process_error(session, OSError(errno.EAGAIN, "try again")),
            lambda recovery, session: recovery.handle_diagnostic(session, "Device or resource busy"),
        ],
        ids=["exit", "process-error", "device-busy"],
    )
    def test_no_restart_once_limit_reached(self, handle):
        owner = FakeOwner()
        session = _session()
        session.restart_count = 1

        outcome = asyncio.run(handle(_recovery(owner), session))

        assert outcome is RecoveryOutcome.MANUAL_RESTART_REQUIRED
        assert session.needs_manual_restart is True
        assert owner.calls == []

    def test_limit_is_configurable(self):
        owner = FakeOwner()
        session = _session()
        session.restart_count = 1

        outcome = asyncio.run(_recovery(owner, max_automatic_restarts=2).handle_unexpected_exit(session, 1))

        assert outcome is RecoveryOutcome.RESTARTED
        assert owner.calls == ["sleep 3", "restart"]
