"""Core data models for recording sessions and their output."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol
import uuid


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPING = "stopping"
    TRANSCRIBING = "transcribing"
    ENHANCING = "enhancing"
    DELIVERING = "delivering"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RecordingSession:
    """
    The one in-progress dictation.

    ``cancel_requested`` may be set at any time; the controller checks it at
    fixed points and discards the session when it is set.
    """
    audio_path: Path
    model_id: str
    started_at: Optional[datetime] = None
    cancel_requested: bool = False
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class TranscriptionRecord:
    """A finished transcription; ``enhanced_text`` is set only when enhancement succeeded."""
    raw_text: str
    duration_seconds: float
    enhanced_text: Optional[str] = None
    audio_file_path: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def final_text(self) -> str:
        return self.enhanced_text or self.raw_text

    @property
    def word_count(self) -> int:
        return len(self.raw_text.split())


class TranscriptionStore(Protocol):
    def save(self, record: TranscriptionRecord) -> None: ...


class InMemoryTranscriptionStore:
    """Keeps records for the lifetime of the process."""

    def __init__(self) -> None:
        self.records: List[TranscriptionRecord] = []

    def save(self, record: TranscriptionRecord) -> None:
        if not record.raw_text:
            raise ValueError("Transcription records require raw text")
        self.records.append(record)
