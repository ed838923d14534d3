"""
Recording session controller.

Coordinates one dictation at a time: microphone capture, model preparation
running alongside it, transcription, optional enhancement and delivery.

Cancellation is cooperative. ``cancel()`` only raises a flag on the
session; the flag is checked at these points, and a positive check discards
the session without output:

- after capture stops
- before the audio is decoded
- before the engine prompt is set
- before the transcription call
- after the transcription call returns
- before enhancement starts and after it returns
"""

from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional
import asyncio
import logging
import shutil
import tempfile
import uuid

from ..audio.decoder import decode_file
from ..audio.model_gate import ModelReadinessGate
from ..audio.recorder import AudioRecorder, AudioRecorderError
from ..audio.transcriber import TranscriptionEngine
from ..config import Settings, SettingsStore
from ..enhancement.client import EnhancementClient
from ..enhancement.context import ScreenContextService
from ..errors import DictationError, ModelLoadError, SessionCancelledError
from .app_modes import ActiveAppConfigurator
from .delivery import DeliveryReport, DeliverySink
from .models import (
    InMemoryTranscriptionStore,
    RecordingSession,
    SessionState,
    TranscriptionRecord,
    TranscriptionStore,
)
from .replacements import apply_replacements

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], None]
ErrorListener = Callable[[str], None]
DeliveryListener = Callable[[TranscriptionRecord, DeliveryReport], None]

NO_MODEL_MESSAGE = "No transcription model selected. Choose a model before recording."
NO_SPEECH_MESSAGE = "No speech detected"

_PROCESSING_STATES = {
    SessionState.STOPPING,
    SessionState.TRANSCRIBING,
    SessionState.ENHANCING,
    SessionState.DELIVERING,
}


class RecordingSessionController:
    """
    Drives a dictation session from ``toggle()`` to delivered text.

    Args:
        recorder: Microphone capture writing to a WAV file
        gate: Model readiness gate owning the transcription engine
        settings: Settings store read at the start of each phase
        delivery: Paste/copy sink for the final text
        enhancement: Enhancement client, or None to never enhance
        store: Receives a record for every delivered transcription
        app_configurator: Applies the foreground application's mode
        screen_context: Screen text capture shared with the enhancement client
        temp_dir: Directory for in-progress capture files
        on_state_change: Called on every state transition
        on_error: Called with each user-facing error message
        on_delivered: Called after a record has been delivered
    """

    def __init__(
        self,
        recorder: AudioRecorder,
        gate: ModelReadinessGate,
        settings: SettingsStore,
        delivery: DeliverySink,
        enhancement: Optional[EnhancementClient] = None,
        store: Optional[TranscriptionStore] = None,
        app_configurator: Optional[ActiveAppConfigurator] = None,
        screen_context: Optional[ScreenContextService] = None,
        temp_dir: Optional[Path] = None,
        on_state_change: Optional[StateListener] = None,
        on_error: Optional[ErrorListener] = None,
        on_delivered: Optional[DeliveryListener] = None,
    ):
        self.recorder = recorder
        self.gate = gate
        self.settings = settings
        self.delivery = delivery
        self.enhancement = enhancement
        self.store = store if store is not None else InMemoryTranscriptionStore()
        self.app_configurator = app_configurator
        if screen_context is None and enhancement is not None:
            screen_context = enhancement.screen_context
        self.screen_context = screen_context
        self.temp_dir = temp_dir or Path(tempfile.gettempdir()) / "voicedrop"

        self.on_state_change = on_state_change
        self.on_error = on_error
        self.on_delivered = on_delivered

        self.state = SessionState.IDLE
        self.last_error: Optional[str] = None
        self.last_clipboard_message: Optional[str] = None
        self.last_record: Optional[TranscriptionRecord] = None
        self.message_log: List[str] = []

        self._session: Optional[RecordingSession] = None
        self._start_joined: Optional[asyncio.Event] = None

    # Observable fields

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def is_recording(self) -> bool:
        return self.state == SessionState.RECORDING

    @property
    def is_processing(self) -> bool:
        return self.state in _PROCESSING_STATES

    @property
    def is_transcribing(self) -> bool:
        return self.state == SessionState.TRANSCRIBING

    # Commands

    async def toggle(self) -> None:
        """Start a session when idle; stop the current one when recording."""
        if self.state == SessionState.IDLE:
            await self._start()
        elif self.state == SessionState.RECORDING and self._session is not None:
            await self._stop(self._session)
        else:
            logger.debug(f"Ignoring toggle while {self.state.value}")

    async def cancel(self) -> None:
        """
        Request that the current session be discarded.

        A recording session is stopped right away. A session that is already
        processing finishes its in-flight call and is discarded at the next
        checkpoint.
        """
        session = self._session
        if session is None:
            return
        session.cancel_requested = True
        logger.info("Cancellation requested")
        if self.state == SessionState.RECORDING:
            await self._stop(session)

    # Recording

    async def _start(self) -> None:
        settings = self.settings.current
        if not settings.transcription_model:
            logger.warning("Toggle ignored: no transcription model configured")
            self._report_error(NO_MODEL_MESSAGE)
            return

        session = RecordingSession(
            audio_path=self.temp_dir / f"recording-{uuid.uuid4()}.wav",
            model_id=settings.transcription_model,
        )
        self._session = session
        self._start_joined = joined = asyncio.Event()
        self.last_error = None
        self._set_state(SessionState.RECORDING)

        try:
            try:
                self.temp_dir.mkdir(parents=True, exist_ok=True)
                await self.recorder.start_recording(session.audio_path)
            except (AudioRecorderError, RuntimeError, OSError) as e:
                logger.error(f"Failed to start recording: {e}")
                await self._finish(session, SessionState.FAILED, f"Failed to start recording: {e}")
                return

            session.started_at = datetime.now()
            logger.info(f"Recording started: {session.audio_path}")
            await asyncio.gather(
                self._preconfigure(),
                self._preload_model(session.model_id),
            )
        finally:
            joined.set()

    async def _preconfigure(self) -> None:
        """Apply the foreground application's mode, then capture screen context."""
        if self.app_configurator is not None:
            try:
                await self.app_configurator.apply_for_current_app()
            except (DictationError, OSError, RuntimeError) as e:
                logger.warning(f"Could not apply application mode: {e}")

        settings = self.settings.current
        if self.screen_context is not None and settings.enhancement_enabled and settings.use_screen_context:
            try:
                await self.screen_context.capture()
            except (DictationError, OSError, RuntimeError) as e:
                logger.warning(f"Screen context capture failed: {e}")

    async def _preload_model(self, model_id: str) -> None:
        if self.gate.is_loaded(model_id):
            return
        try:
            await self.gate.ensure_loaded(model_id)
        except ModelLoadError as e:
            logger.warning(f"Model preload failed, retrying at transcription time: {e}")

    async def _stop(self, session: RecordingSession) -> None:
        self._set_state(SessionState.STOPPING)

        if self._start_joined is not None and not self._start_joined.is_set():
            logger.info("Stop requested before recording finished starting; discarding session")
            session.cancel_requested = True
            await self._start_joined.wait()
        if self._session is not session:
            return

        try:
            session.duration_seconds = await self.recorder.stop_recording()
        except (AudioRecorderError, RuntimeError, OSError) as e:
            logger.error(f"Failed to stop recording: {e}")
            await self._finish(session, SessionState.FAILED, f"Failed to stop recording: {e}")
            return

        logger.info(f"Recording stopped ({session.duration_seconds:.1f}s)")
        if session.cancel_requested:
            await self._finish(session, SessionState.CANCELLED)
            return

        try:
            await self._process(session)
        except Exception as e:
            logger.exception("Unexpected error while processing recording")
            if self._session is session:
                await self._finish(session, SessionState.FAILED, f"Transcription failed: {e}")

    # Processing

    async def _process(self, session: RecordingSession) -> None:
        settings = self.settings.current
        try:
            raw_text = await self._transcribe(session, settings)
        except SessionCancelledError:
            await self._finish(session, SessionState.CANCELLED)
            return
        except ModelLoadError as e:
            logger.error(f"Transcription model unavailable: {e}")
            await self._finish(session, SessionState.FAILED, str(e))
            return
        except (DictationError, RuntimeError, OSError) as e:
            logger.error(f"Transcription failed: {e}")
            await self._finish(session, SessionState.FAILED, f"Transcription failed: {e}")
            return

        if not raw_text:
            logger.info("Transcription was empty")
            await self._finish(session, SessionState.IDLE, NO_SPEECH_MESSAGE)
            return

        try:
            enhanced_text = await self._enhance(session, raw_text)
        except SessionCancelledError:
            await self._finish(session, SessionState.CANCELLED)
            return

        record = TranscriptionRecord(
            raw_text=raw_text,
            duration_seconds=session.duration_seconds,
            enhanced_text=enhanced_text,
            audio_file_path=self._archive_recording(session, settings),
        )
        self.store.save(record)
        self.last_record = record

        self._set_state(SessionState.DELIVERING)
        report = await self.delivery.deliver(record.final_text, auto_copy=settings.auto_copy)
        if report.clipboard_message:
            self.last_clipboard_message = report.clipboard_message
            self.message_log.append(report.clipboard_message)
        if report.paste_error:
            logger.info(f"Text not pasted: {report.paste_error}")
        if self.on_delivered is not None:
            self.on_delivered(record, report)

        await self._finish(session, SessionState.IDLE)

    async def _transcribe(self, session: RecordingSession, settings: Settings) -> str:
        self._set_state(SessionState.TRANSCRIBING)
        engine: TranscriptionEngine = await self.gate.ensure_loaded(session.model_id)

        self._checkpoint(session)
        samples = decode_file(session.audio_path)

        self._checkpoint(session)
        await engine.set_prompt(settings.transcription_prompt)

        self._checkpoint(session)
        logger.info(f"Transcribing {len(samples)} samples with {engine.model_id}")
        started = datetime.now()
        await engine.full_transcribe(samples)
        text = (await engine.get_transcription()).strip()
        self._checkpoint(session)

        elapsed = (datetime.now() - started).total_seconds()
        logger.info(f"Transcription completed in {elapsed:.2f}s ({len(text)} characters)")
        logger.debug(f"Raw transcription: {text}")

        if text and settings.word_replacement_enabled and settings.word_replacements:
            text = apply_replacements(text, settings.word_replacements)
        return text

    async def _enhance(self, session: RecordingSession, raw_text: str) -> Optional[str]:
        """Return the enhanced text, or None to deliver the raw transcription."""
        if self.enhancement is None:
            return None
        config = self.enhancement.snapshot_config()
        if not config.enabled:
            return None
        if not config.is_configured:
            logger.info("Enhancement enabled but not configured; delivering raw text")
            return None

        self._checkpoint(session)
        self._set_state(SessionState.ENHANCING)
        try:
            enhanced = await self.enhancement.enhance(raw_text, config)
        except SessionCancelledError:
            raise
        except DictationError as e:
            logger.warning(f"Enhancement failed, delivering raw transcription: {e}")
            self.message_log.append(f"Enhancement failed: {e}")
            enhanced = None
        except Exception as e:
            logger.exception("Unexpected enhancement error, delivering raw transcription")
            self.message_log.append(f"Enhancement failed: {e}")
            enhanced = None
        self._checkpoint(session)
        return enhanced

    def _archive_recording(self, session: RecordingSession, settings: Settings) -> Optional[str]:
        if not settings.recordings_dir:
            return None
        destination = Path(settings.recordings_dir) / f"{uuid.uuid4()}.wav"
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(session.audio_path, destination)
        except OSError as e:
            logger.warning(f"Could not keep recording in {destination.parent}: {e}")
            return None
        return str(destination)

    def _checkpoint(self, session: RecordingSession) -> None:
        if session.cancel_requested:
            raise SessionCancelledError("Session cancelled")

    # Teardown

    async def _finish(self, session: RecordingSession, state: SessionState, message: Optional[str] = None) -> None:
        if state == SessionState.CANCELLED:
            logger.info("Session cancelled; no output delivered")
        if state != SessionState.IDLE:
            self._set_state(state)
        if message:
            self._report_error(message)

        await self.gate.unload()
        try:
            session.audio_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug(f"Could not remove {session.audio_path}: {e}")

        if self._session is session:
            self._session = None
        self._set_state(SessionState.IDLE)

    def _set_state(self, state: SessionState) -> None:
        if state == self.state:
            return
        logger.debug(f"Session state: {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _report_error(self, message: str) -> None:
        self.last_error = message
        self.message_log.append(message)
        if self.on_error is not None:
            self.on_error(message)
