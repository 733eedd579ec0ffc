"""
Recording session state and the in-memory session registry.

One RecordingSession exists per session id. Segments are appended in tick
order and the recent-transcription queue is drained by a single consumer.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Deque, Iterator, Optional

logger = logging.getLogger(__name__)

MAX_RECENT_TRANSCRIPTIONS = 10


class AudioSource(str, Enum):
    INTERVIEWER = "internal"
    INTERVIEWEE = "microphone"
    BOTH = "both"
    SYSTEM = "system"


@dataclass
class Segment:
    """A trailing slice of a recording, extracted on one scheduler tick."""
    id: str
    file_path: Path
    start_time: datetime
    duration_ms: int
    transcription: Optional[str] = None


@dataclass(frozen=True)
class TranscriptionEvent:
    text: str
    timestamp: datetime
    segment_id: str

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "segment_id": self.segment_id,
        }


class RecentTranscriptions:
    """Fixed-capacity queue: push evicts the oldest entry, drain empties it."""

    def __init__(self, capacity: int = MAX_RECENT_TRANSCRIPTIONS) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: Deque[TranscriptionEvent] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def push(self, event: TranscriptionEvent) -> None:
        self._items.append(event)

    def drain(self) -> list[TranscriptionEvent]:
        items = list(self._items)
        self._items.clear()
        return items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[TranscriptionEvent]:
        return iter(list(self._items))


@dataclass
class RecordingStatus:
    is_recording: bool
    source: Optional[AudioSource] = None
    start_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "is_recording": self.is_recording,
            "source": self.source.value if self.source else None,
            "start_time": self.start_time.isoformat() if self.start_time else None,
        }


@dataclass
class RecordingSession:
    """Mutable state for one session's recording."""
    session_id: str
    source: AudioSource
    output_path: Path
    start_time: datetime
    capture: Any = None  # recording.capture.CaptureProcess while active
    is_active: bool = False
    segments: list[Segment] = field(default_factory=list)
    recent: RecentTranscriptions = field(default_factory=RecentTranscriptions)
    scheduler: Any = None  # recording.scheduler.SegmentScheduler
    last_failure: Optional[str] = None
    needs_manual_restart: bool = False
    restart_count: int = 0
    # Serializes tick/flush/final processing so segment writes never interleave
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def add_segment(self, segment: Segment) -> None:
        self.segments.append(segment)
        if segment.transcription:
            self.recent.push(
                TranscriptionEvent(
                    text=segment.transcription,
                    timestamp=segment.start_time,
                    segment_id=segment.id,
                )
            )

    def transcript(self, start_index: int = 0) -> str:
        return " ".join(
            segment.transcription
            for segment in self.segments[start_index:]
            if segment.transcription
        )

    def summary(self) -> dict:
        return {
            "session_id": self.session_id,
            "source": self.source.value,
            "is_active": self.is_active,
            "start_time": self.start_time.isoformat(),
            "segment_count": len(self.segments),
            "has_recent_transcriptions": len(self.recent) > 0,
            "last_failure": self.last_failure,
            "needs_manual_restart": self.needs_manual_restart,
            "restart_count": self.restart_count,
        }


class SessionRegistry:
    """Keyed store of RecordingSession objects, one per session id."""

    def __init__(self) -> None:
        self._sessions: dict[str, RecordingSession] = {}

    def get(self, session_id: str) -> Optional[RecordingSession]:
        return self._sessions.get(session_id)

    def set(self, session: RecordingSession) -> None:
        existing = self._sessions.get(session.session_id)
        if existing is not None and existing is not session:
            raise ValueError(f"Session {session.session_id} already has a recording")
        self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> Optional[RecordingSession]:
        return self._sessions.pop(session_id, None)

    def is_current(self, session: RecordingSession) -> bool:
        return self._sessions.get(session.session_id) is session

    def status(self, session_id: str) -> RecordingStatus:
        session = self._sessions.get(session_id)
        if session is None:
            return RecordingStatus(is_recording=False)
        return RecordingStatus(
            is_recording=session.is_active,
            source=session.source,
            start_time=session.start_time,
        )

    def drain_recent_transcriptions(self, session_id: str) -> list[TranscriptionEvent]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return session.recent.drain()

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[RecordingSession]:
        return iter(list(self._sessions.values()))
