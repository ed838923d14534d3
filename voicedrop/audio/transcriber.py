"""
Speech-to-text engine access using Faster Whisper.

The session controller talks to the engine through three calls: set the
context prompt, run a full transcription over normalized samples, and read
the resulting text back. ``FasterWhisperEngine`` implements that contract on
top of a loaded ``WhisperModel``; the blocking model calls run in a thread
pool so the event loop keeps serving the UI.
"""

from typing import Any, Dict, List, Optional, Protocol, Sequence
import asyncio
import logging
import platform
import time

import numpy as np

try:
    import psutil
    PSUTIL_AVAILABLE = True
except ImportError:
    PSUTIL_AVAILABLE = False
    psutil = None

try:
    from faster_whisper import WhisperModel
    FASTER_WHISPER_AVAILABLE = True
except ImportError:
    FASTER_WHISPER_AVAILABLE = False
    WhisperModel = None

from ..errors import ModelLoadError

logger = logging.getLogger(__name__)

AVAILABLE_MODELS = [
    "large-v3-turbo",
    "large-v3",
    "medium",
    "small",
    "base",
    "tiny",
]


class TranscriptionEngine(Protocol):
    """What the session controller needs from a loaded speech-to-text model."""

    model_id: str

    async def set_prompt(self, prompt: str) -> None: ...

    async def full_transcribe(self, samples: Sequence[float]) -> None: ...

    async def get_transcription(self) -> str: ...

    async def release(self) -> None: ...


def detect_optimal_device() -> str:
    """
    Pick the device faster-whisper should run on.

    MPS (Apple Silicon GPU) is not supported by faster-whisper, so macOS
    always runs on CPU.
    """
    try:
        import torch
        if torch.cuda.is_available():
            return "cuda"
    except ImportError:
        pass

    if platform.system() == "Darwin":
        logger.info("Running on macOS: using CPU device (MPS not supported by faster-whisper)")
    return "cpu"


def detect_optimal_compute_type(device: str) -> str:
    """float16 on GPU; on CPU int8 unless there is plenty of free memory."""
    if device == "cuda":
        return "float16"
    if PSUTIL_AVAILABLE:
        available_memory_gb = psutil.virtual_memory().available / (1024 ** 3)
        return "int8" if available_memory_gb < 4 else "float32"
    return "int8"


class FasterWhisperEngine:
    """
    ``TranscriptionEngine`` backed by a faster-whisper model.

    Use :meth:`load` to create one; the constructor takes an already loaded
    model so tests can hand in a stand-in.
    """

    def __init__(
        self,
        model: Any,
        model_id: str,
        language: Optional[str] = "en",
        beam_size: int = 5,
        vad_filter: bool = True,
        vad_parameters: Optional[Dict[str, Any]] = None,
    ):
        self._model = model
        self.model_id = model_id
        self.language = language
        self.beam_size = beam_size
        self.vad_filter = vad_filter
        self.vad_parameters = vad_parameters or {
            "min_silence_duration_ms": 500,
            "speech_pad_ms": 400,
        }
        self._prompt: Optional[str] = None
        self._segments: List[str] = []

    @classmethod
    async def load(
        cls,
        model_id: str,
        device: str = "auto",
        compute_type: str = "auto",
        language: Optional[str] = "en",
    ) -> "FasterWhisperEngine":
        """
        Load ``model_id`` in a worker thread, falling back to CPU if the
        preferred device fails.

        Raises:
            ModelLoadError: If faster-whisper is missing or every device fails.
        """
        if not FASTER_WHISPER_AVAILABLE:
            raise ModelLoadError(model_id, "faster-whisper not available. Install with: pip install faster-whisper")

        device = detect_optimal_device() if device == "auto" else device
        compute_type = detect_optimal_compute_type(device) if compute_type == "auto" else compute_type
        devices_to_try = [device] if device == "cpu" else [device, "cpu"]

        loop = asyncio.get_running_loop()
        last_error: Optional[Exception] = None
        for candidate in devices_to_try:
            candidate_compute = "int8" if candidate == "cpu" and compute_type == "float16" else compute_type
            logger.info(f"Loading Whisper model: {model_id} on {candidate} with {candidate_compute}")
            start_time = time.time()
            try:
                model = await loop.run_in_executor(
                    None,
                    lambda: WhisperModel(model_id, device=candidate, compute_type=candidate_compute)
                )
            except (RuntimeError, ValueError, OSError) as e:
                last_error = e
                logger.warning(f"Failed to load model '{model_id}' on device '{candidate}': {e}")
                continue

            logger.info(f"Model {model_id} loaded in {time.time() - start_time:.2f}s")
            return cls(model, model_id, language=language)

        raise ModelLoadError(model_id, str(last_error))

    async def set_prompt(self, prompt: str) -> None:
        self._prompt = prompt or None

    async def full_transcribe(self, samples: Sequence[float]) -> None:
        if self._model is None:
            raise RuntimeError(f"Model {self.model_id} has been released")

        audio = np.asarray(samples, dtype=np.float32)
        params = {
            "language": self.language,
            "initial_prompt": self._prompt,
            "beam_size": self.beam_size,
            "vad_filter": self.vad_filter,
        }
        if self.vad_filter and self.vad_parameters:
            params["vad_parameters"] = self.vad_parameters

        def run() -> List[str]:
            segments, _info = self._model.transcribe(audio, **params)
            # segments is a lazy generator; drain it in the worker thread
            return [segment.text.strip() for segment in segments]

        start_time = time.time()
        loop = asyncio.get_running_loop()
        self._segments = [text for text in await loop.run_in_executor(None, run) if text]

        audio_duration = len(audio) / 16000.0
        processing_time = time.time() - start_time
        if audio_duration > 0:
            logger.info(
                f"Transcription completed: {processing_time:.2f}s for {audio_duration:.2f}s audio "
                f"(RTF: {processing_time / audio_duration:.2f})"
            )

    async def get_transcription(self) -> str:
        return " ".join(self._segments)

    async def release(self) -> None:
        self._model = None
        self._segments = []
        self._prompt = None
