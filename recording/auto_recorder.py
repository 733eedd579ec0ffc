"""
Auto recorder mode.

One continuous recording owned by the application. The consumer reads the
text captured since its last reset() (the "send now" hotkey path) instead of
polling the drain-on-read queue.
"""

import logging
from typing import Optional, Union

from recording.recorder import AudioRecorder
from recording.session import AudioSource

logger = logging.getLogger(__name__)

DEFAULT_AUTO_SESSION_ID = "auto-recorder"


class AutoRecorder:
    def __init__(self, recorder: AudioRecorder) -> None:
        self._recorder = recorder
        self.session_id: Optional[str] = None
        self.source: Optional[AudioSource] = None
        self._consumed_segments = 0

    @property
    def is_active(self) -> bool:
        if self.session_id is None:
            return False
        return self._recorder.get_recording_status(self.session_id).is_recording

    async def start(
        self,
        session_id: str = DEFAULT_AUTO_SESSION_ID,
        source: Union[AudioSource, str] = AudioSource.SYSTEM,
    ) -> None:
        if self.session_id is not None:
            logger.info("Auto recorder already running for %s; restarting", self.session_id)
            await self.stop()
        await self._recorder.start_recording(source, session_id)
        self.session_id = session_id
        self.source = self._recorder.get_recording_status(session_id).source
        self._consumed_segments = 0
        logger.info("Auto recorder started for session %s", session_id)

    async def stop(self) -> Optional[str]:
        if self.session_id is None:
            return None
        session_id = self.session_id
        self.session_id = None
        self.source = None
        self._consumed_segments = 0
        transcript = await self._recorder.stop_recording(session_id)
        logger.info("Auto recorder stopped for session %s", session_id)
        return transcript

    def current_transcription(self) -> str:
        """Text captured since the last reset()."""
        if self.session_id is None:
            return ""
        return self._recorder.get_transcript(self.session_id, self._consumed_segments)

    def reset(self) -> None:
        if self.session_id is None:
            return
        self._consumed_segments = self._recorder.segment_count(self.session_id)
        logger.debug("Auto recorder reset at segment %d", self._consumed_segments)

    async def flush(self) -> str:
        if self.session_id is None:
            return ""
        await self._recorder.flush_pending(self.session_id)
        return self.current_transcription()

    def status(self) -> dict:
        return {
            "is_active": self.is_active,
            "session_id": self.session_id,
            "source": self.source.value if self.source else None,
            "current_transcription": self.current_transcription(),
        }
