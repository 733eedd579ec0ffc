"""
Failure classification and bounded recovery for capture processes.

| Failure            | Policy                                                    |
|--------------------|-----------------------------------------------------------|
| device busy        | wait, stop capture, wait, restart same source             |
| device not found   | re-enumerate devices (logged); warn for loopback sources  |
| unexpected exit    | recoverable code: wait, restart; otherwise manual restart |
| process error      | recoverable OS error: wait, restart; otherwise manual     |

Each detected failure gets at most one automatic restart, and a recording gets
at most `max_automatic_restarts` of them in total; once spent, the next
failure requires a manual start_recording. Failures reported while a recovery
for the same session is already running are ignored.
"""

import asyncio
import errno
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol

from recording.capture import DEVICE_BUSY_MARKER, INVALID_DATA_MARKER, NO_SUCH_DEVICE_MARKER
from recording.config import VIRTUAL_DEVICE_SOURCES, AudioConfig
from recording.errors import AudioServiceError
from recording.session import RecordingSession

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    DEVICE_BUSY = "device_busy"
    DEVICE_NOT_FOUND = "device_not_found"
    INVALID_DATA = "invalid_data"
    UNEXPECTED_EXIT = "unexpected_exit"
    PROCESS_ERROR = "process_error"


class RecoveryOutcome(str, Enum):
    RESTARTED = "restarted"
    RESTART_FAILED = "restart_failed"
    MANUAL_RESTART_REQUIRED = "manual_restart_required"
    LOGGED = "logged"
    SKIPPED = "skipped"


class RecoveryOwner(Protocol):
    """What the recovery policies need from the recorder."""

    def is_current(self, session: RecordingSession) -> bool: ...

    async def stop_capture(self, session: RecordingSession) -> None: ...

    async def restart_capture(self, session: RecordingSession) -> None: ...

    async def list_devices(self) -> str: ...


def classify_diagnostic(line: str) -> Optional[FailureKind]:
    if DEVICE_BUSY_MARKER in line:
        return FailureKind.DEVICE_BUSY
    if NO_SUCH_DEVICE_MARKER in line:
        return FailureKind.DEVICE_NOT_FOUND
    if INVALID_DATA_MARKER in line:
        return FailureKind.INVALID_DATA
    return None


def error_code_name(exc: BaseException) -> Optional[str]:
    code = getattr(exc, "errno", None)
    if isinstance(code, int):
        return errno.errorcode.get(code)
    return None


def is_recoverable_error(exc: BaseException, recoverable_codes: frozenset[str]) -> bool:
    """True for transient OS errors (EAGAIN, EINTR, ...) by errno or message."""
    name = error_code_name(exc)
    if name is not None and name in recoverable_codes:
        return True
    message = str(exc)
    return any(code in message for code in recoverable_codes)


class ErrorRecovery:
    """Applies the recovery policy for each failure kind."""

    def __init__(self, owner: RecoveryOwner, config: AudioConfig, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
        self._owner = owner
        self._config = config
        self._sleep = sleep
        self._in_progress: set[str] = set()

    def is_recovering(self, session_id: str) -> bool:
        return session_id in self._in_progress

    def is_recoverable_exit(self, returncode: int) -> bool:
        return returncode in self._config.recoverable_exit_codes

    async def handle_diagnostic(self, session: RecordingSession, line: str) -> RecoveryOutcome:
        kind = classify_diagnostic(line)
        if kind is FailureKind.DEVICE_BUSY:
            return await self._guarded(session, kind, self._recover_device_busy(session))
        if kind is FailureKind.DEVICE_NOT_FOUND:
            return await self._guarded(session, kind, self._recover_device_not_found(session))
        if kind is FailureKind.INVALID_DATA:
            logger.error(
                "Invalid audio data for session %s - check audio device configuration",
                session.session_id,
            )
            session.last_failure = kind.value
            return RecoveryOutcome.LOGGED
        return RecoveryOutcome.SKIPPED

    async def handle_unexpected_exit(self, session: RecordingSession, returncode: int) -> RecoveryOutcome:
        return await self._guarded(
            session, FailureKind.UNEXPECTED_EXIT, self._recover_unexpected_exit(session, returncode)
        )

    async def handle_process_error(self, session: RecordingSession, exc: BaseException) -> RecoveryOutcome:
        return await self._guarded(session, FailureKind.PROCESS_ERROR, self._recover_process_error(session, exc))

    async def _guarded(self, session: RecordingSession, kind: FailureKind, recovery) -> RecoveryOutcome:
        session_id = session.session_id
        if session_id in self._in_progress:
            recovery.close()
            logger.info("Recovery already running for session %s; ignoring %s", session_id, kind.value)
            return RecoveryOutcome.SKIPPED
        self._in_progress.add(session_id)
        session.last_failure = kind.value
        try:
            return await recovery
        finally:
            self._in_progress.discard(session_id)

    def _restart_budget_spent(self, session: RecordingSession) -> bool:
        return session.restart_count >= self._config.max_automatic_restarts

    def _manual_restart_required(self, session: RecordingSession, reason: str) -> RecoveryOutcome:
        session.needs_manual_restart = True
        logger.warning(
            "Automatic restart limit (%d) reached for session %s after %s, manual restart required",
            self._config.max_automatic_restarts,
            session.session_id,
            reason,
        )
        return RecoveryOutcome.MANUAL_RESTART_REQUIRED

    async def _restart(self, session: RecordingSession, reason: str) -> RecoveryOutcome:
        if not self._owner.is_current(session):
            logger.info("Session %s was stopped during recovery; not restarting", session.session_id)
            return RecoveryOutcome.SKIPPED
        try:
            await self._owner.restart_capture(session)
        except AudioServiceError as exc:
            session.needs_manual_restart = True
            logger.error("Failed to recover from %s for session %s: %s", reason, session.session_id, exc)
            return RecoveryOutcome.RESTART_FAILED
        logger.info("Recovered from %s for session %s", reason, session.session_id)
        return RecoveryOutcome.RESTARTED

    async def _recover_device_busy(self, session: RecordingSession) -> RecoveryOutcome:
        if self._restart_budget_spent(session):
            return self._manual_restart_required(session, "device busy")
        logger.warning("Audio device busy for session %s, attempting recovery", session.session_id)
        await self._sleep(self._config.device_busy_delay_seconds)
        if not self._owner.is_current(session):
            return RecoveryOutcome.SKIPPED
        await self._owner.stop_capture(session)
        await self._sleep(self._config.device_busy_restart_delay_seconds)
        return await self._restart(session, "device busy")

    async def _recover_device_not_found(self, session: RecordingSession) -> RecoveryOutcome:
        logger.warning("Audio device not found for session %s, checking available devices", session.session_id)
        try:
            devices = await self._owner.list_devices()
            logger.info("Available audio devices:\n%s", devices)
        except (OSError, AudioServiceError) as exc:
            logger.warning("Could not list audio devices: %s", exc)
        if session.source in VIRTUAL_DEVICE_SOURCES:
            logger.warning(
                "Loopback device for source %s not available; install/configure BlackHole or "
                "set AUDIO_DEVICE_%s",
                session.source.value,
                session.source.name,
            )
        return RecoveryOutcome.LOGGED

    async def _recover_unexpected_exit(self, session: RecordingSession, returncode: int) -> RecoveryOutcome:
        session.is_active = False
        if not self.is_recoverable_exit(returncode):
            session.needs_manual_restart = True
            logger.warning(
                "Non-recoverable exit code %s for session %s, manual restart required",
                returncode,
                session.session_id,
            )
            return RecoveryOutcome.MANUAL_RESTART_REQUIRED
        if self._restart_budget_spent(session):
            return self._manual_restart_required(session, f"exit code {returncode}")
        logger.info("Attempting automatic restart for session %s (exit code %s)", session.session_id, returncode)
        await self._sleep(self._config.restart_delay_seconds)
        return await self._restart(session, f"exit code {returncode}")

    async def _recover_process_error(self, session: RecordingSession, exc: BaseException) -> RecoveryOutcome:
        session.is_active = False
        if not is_recoverable_error(exc, self._config.recoverable_error_codes):
            session.needs_manual_restart = True
            logger.error(
                "Non-recoverable capture error for session %s, manual intervention required: %s",
                session.session_id,
                exc,
            )
            return RecoveryOutcome.MANUAL_RESTART_REQUIRED
        if self._restart_budget_spent(session):
            return self._manual_restart_required(session, "process error")
        logger.info("Attempting recovery from capture error for session %s: %s", session.session_id, exc)
        await self._sleep(self._config.process_error_delay_seconds)
        return await self._restart(session, "process error")
