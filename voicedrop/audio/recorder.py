"""
Audio recording functionality using PyAudio.

Captures the default microphone straight into a WAV file so the session
controller can hand the file to the decoder once recording stops.
"""

import asyncio
import logging
import wave
from pathlib import Path
from typing import Optional, Union

try:
    import pyaudio
    PYAUDIO_AVAILABLE = True
except ImportError:
    PYAUDIO_AVAILABLE = False
    pyaudio = None

logger = logging.getLogger(__name__)


class AudioRecorderError(Exception):
    """Base exception for audio recorder errors."""
    pass


class MicrophonePermissionError(AudioRecorderError):
    """Raised when microphone permissions are not granted."""
    pass


class DeviceError(AudioRecorderError):
    """Raised when no audio input devices are available."""
    pass


class AudioRecorder:
    """
    Async microphone recorder writing 16kHz, 16-bit mono WAV files.

    ``start_recording`` returns once the output file is open and the
    recording flag is set; capture continues in a background task until
    ``stop_recording`` finalizes the file and reports its duration.

    Args:
        sample_rate: Sample rate in Hz (16kHz is Whisper's native rate)
        chunk_size: Frames per read (512 balances latency and CPU)
        channels: Number of channels (1 for mono)

    Example:
        >>> recorder = AudioRecorder()
        >>> await recorder.start_recording(Path("/tmp/output.wav"))
        >>> # ... user speaks ...
        >>> duration = await recorder.stop_recording()
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        chunk_size: int = 512,
        channels: int = 1
    ):
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.channels = channels
        self.sample_width = 2  # 16-bit = 2 bytes per sample

        self._audio = None
        self._stream = None
        self._wav_file: Optional[wave.Wave_write] = None
        self._output_path: Optional[Path] = None
        self._is_recording = False
        self._frames_written = 0
        self._recording_task: Optional[asyncio.Task] = None

        self._validate_config()

    def _validate_config(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.chunk_size}")
        if self.channels not in (1, 2):
            raise ValueError(f"Channels must be 1 or 2, got {self.channels}")

    @property
    def output_path(self) -> Optional[Path]:
        return self._output_path

    def is_recording(self) -> bool:
        return self._is_recording

    async def start_recording(self, output_path: Union[str, Path]) -> None:
        """
        Open the output file and the microphone stream, then start capturing.

        Raises:
            RuntimeError: If already recording
            MicrophonePermissionError: If the stream cannot be opened (macOS permissions)
            DeviceError: If no input devices are available
            AudioRecorderError: If PyAudio is missing or initialization fails
        """
        if self._is_recording:
            raise RuntimeError("Recording already in progress")
        if not PYAUDIO_AVAILABLE:
            raise AudioRecorderError("PyAudio not available. Install with: pip install pyaudio")

        self._output_path = Path(output_path)
        self._frames_written = 0

        try:
            self._audio = pyaudio.PyAudio()
            if not self._has_input_devices():
                raise DeviceError("No audio input devices found")

            try:
                self._stream = self._audio.open(
                    format=pyaudio.paInt16,
                    channels=self.channels,
                    rate=self.sample_rate,
                    input=True,
                    frames_per_buffer=self.chunk_size,
                )
            except OSError as e:
                if "device" in str(e).lower() or "input" in str(e).lower():
                    raise MicrophonePermissionError(self._format_permission_error()) from e
                raise AudioRecorderError(f"Failed to open audio stream: {e}") from e

            self._output_path.parent.mkdir(parents=True, exist_ok=True)
            self._wav_file = wave.open(str(self._output_path), "wb")
            self._wav_file.setnchannels(self.channels)
            self._wav_file.setsampwidth(self.sample_width)
            self._wav_file.setframerate(self.sample_rate)

            self._is_recording = True
            self._recording_task = asyncio.create_task(self._record_audio_loop())
            logger.info(f"Recording started: {self.sample_rate}Hz, {self.channels} channel(s) -> {self._output_path}")

        except Exception as e:
            self._cleanup_resources()
            if isinstance(e, (AudioRecorderError, RuntimeError)):
                raise
            raise AudioRecorderError(f"Failed to start recording: {e}") from e

    async def stop_recording(self) -> float:
        """
        Stop capturing and finalize the WAV file.

        Returns:
            Recorded duration in seconds.

        Raises:
            RuntimeError: If not currently recording
            AudioRecorderError: If the file cannot be finalized
        """
        if not self._is_recording:
            raise RuntimeError("Not currently recording")

        self._is_recording = False
        try:
            if self._recording_task:
                await self._recording_task
                self._recording_task = None
        finally:
            self._cleanup_resources()

        duration = self._frames_written / float(self.sample_rate)
        logger.info(f"Recording stopped: {duration:.2f}s captured")
        return duration

    async def _record_audio_loop(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self._is_recording and self._stream:
                try:
                    data = await loop.run_in_executor(
                        None,
                        lambda: self._stream.read(self.chunk_size, exception_on_overflow=False)
                    )
                except OSError as e:
                    logger.warning(f"Audio read error: {e}")
                    if "input overflowed" not in str(e).lower():
                        break
                    await asyncio.sleep(0.01)
                    continue

                if data and self._wav_file:
                    self._wav_file.writeframes(data)
                    self._frames_written += len(data) // (self.sample_width * self.channels)
        finally:
            logger.debug("Recording loop ended")

    def _has_input_devices(self) -> bool:
        if not self._audio:
            return False
        try:
            for i in range(self._audio.get_device_count()):
                if self._audio.get_device_info_by_index(i).get('maxInputChannels', 0) > 0:
                    return True
        except OSError as e:
            logger.warning(f"Error checking input devices: {e}")
        return False

    def _format_permission_error(self) -> str:
        return (
            "Microphone access denied. On macOS:\n"
            "1. Open System Settings → Privacy & Security → Microphone\n"
            "2. Enable microphone access for Terminal or your application\n"
            "3. Restart the application and try again"
        )

    def _cleanup_resources(self) -> None:
        if self._stream:
            try:
                if self._stream.is_active():
                    self._stream.stop_stream()
                self._stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
            self._stream = None

        if self._audio:
            self._audio.terminate()
            self._audio = None

        if self._wav_file:
            try:
                self._wav_file.close()
            except (OSError, wave.Error) as e:
                raise AudioRecorderError(f"Failed to finalize {self._output_path}: {e}") from e
            finally:
                self._wav_file = None
