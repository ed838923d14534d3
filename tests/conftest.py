"""Shared fakes for the dictation pipeline tests."""

import asyncio
import io
import struct
import wave
from pathlib import Path
from typing import List, Optional, Sequence

import pytest

from voicedrop.config import Settings, SettingsStore


def make_wav(samples: Sequence[int], sample_rate: int = 16000) -> bytes:
    """Build a 16-bit mono PCM WAV container with the canonical 44 byte header."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(struct.pack(f"<{len(samples)}h", *samples))
    return buffer.getvalue()


class FakeClock:
    """Monotonic clock whose sleeps advance time instantly."""

    def __init__(self, now: float = 0.0):
        self.now = now
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


class FakeRecorder:
    """Stands in for the microphone; writes a WAV file when stopped."""

    def __init__(self, payload: Optional[bytes] = None, duration: float = 1.5, fail_start: Optional[Exception] = None):
        self.payload = payload if payload is not None else make_wav([1000, -1000, 0, 2000])
        self.duration = duration
        self.fail_start = fail_start
        self.output_path: Optional[Path] = None
        self.start_calls = 0
        self.stop_calls = 0
        self._recording = False

    async def start_recording(self, output_path) -> None:
        self.start_calls += 1
        await asyncio.sleep(0)
        if self.fail_start is not None:
            raise self.fail_start
        self.output_path = Path(output_path)
        self._recording = True

    async def stop_recording(self) -> float:
        self.stop_calls += 1
        await asyncio.sleep(0)
        self.output_path.write_bytes(self.payload)
        self._recording = False
        return self.duration

    def is_recording(self) -> bool:
        return self._recording


class FakeEngine:
    """
    Transcription engine double.

    When ``hold`` is set, ``full_transcribe`` signals ``entered`` and waits
    for ``hold`` before returning. A ``failure`` is raised from
    ``full_transcribe``.
    """

    def __init__(self, model_id: str = "base", text: str = "hello world"):
        self.model_id = model_id
        self.text = text
        self.prompts: List[str] = []
        self.sample_counts: List[int] = []
        self.released = False
        self.entered: Optional[asyncio.Event] = None
        self.hold: Optional[asyncio.Event] = None
        self.failure: Optional[Exception] = None

    async def set_prompt(self, prompt: str) -> None:
        self.prompts.append(prompt)

    async def full_transcribe(self, samples) -> None:
        self.sample_counts.append(len(samples))
        if self.hold is not None:
            self.entered.set()
            await self.hold.wait()
        if self.failure is not None:
            raise self.failure

    async def get_transcription(self) -> str:
        return self.text

    async def release(self) -> None:
        self.released = True


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(Settings(recordings_dir=str(tmp_path / "recordings")))
