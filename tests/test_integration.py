"""
Integration tests for VoiceDrop components.

These tests verify that components work together correctly and catch
common integration issues like missing methods or incompatible interfaces.
"""

import inspect
import io
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner
from rich.console import Console

from voicedrop import __version__
from voicedrop.audio.model_gate import ModelReadinessGate
from voicedrop.audio.recorder import AudioRecorder
from voicedrop.audio.transcriber import FasterWhisperEngine, TranscriptionEngine
from voicedrop.config import Settings, SettingsStore
from voicedrop.enhancement.client import EnhancementClient
from voicedrop.enhancement.prompts import DEFAULT_PROMPT_ID
from voicedrop.main import DictationApp, main
from voicedrop.session.controller import RecordingSessionController
from voicedrop.session.delivery import DeliveryReport, DeliverySink
from voicedrop.session.models import SessionState, TranscriptionRecord
from voicedrop.ui.terminal import TerminalUI


def quiet_console() -> Console:
    return Console(file=io.StringIO(), force_terminal=False, width=100)


class TestMethodExistence:
    """Test that all required methods exist on components."""

    def test_audio_recorder_methods(self):
        recorder = AudioRecorder()

        assert inspect.iscoroutinefunction(recorder.start_recording)
        assert inspect.iscoroutinefunction(recorder.stop_recording)
        assert not inspect.iscoroutinefunction(recorder.is_recording)
        assert not recorder.is_recording()

    def test_engine_contract(self):
        for name in ("set_prompt", "full_transcribe", "get_transcription", "release"):
            assert inspect.iscoroutinefunction(getattr(FasterWhisperEngine, name))
            assert hasattr(TranscriptionEngine, name)
        assert inspect.iscoroutinefunction(FasterWhisperEngine.load)

    def test_controller_methods(self):
        assert inspect.iscoroutinefunction(RecordingSessionController.toggle)
        assert inspect.iscoroutinefunction(RecordingSessionController.cancel)
        for name in ("is_recording", "is_processing", "is_transcribing"):
            assert isinstance(getattr(RecordingSessionController, name), property)

    def test_enhancement_and_delivery_methods(self):
        assert inspect.iscoroutinefunction(EnhancementClient.enhance)
        assert inspect.iscoroutinefunction(DeliverySink.deliver)
        assert inspect.iscoroutinefunction(ModelReadinessGate.ensure_loaded)

    def test_terminal_ui_methods(self):
        ui = TerminalUI(quiet_console())

        assert inspect.iscoroutinefunction(ui.read_command)
        assert not inspect.iscoroutinefunction(ui.on_state_change)
        assert not inspect.iscoroutinefunction(ui.on_error)
        assert not inspect.iscoroutinefunction(ui.on_delivered)


class TestTerminalUI:
    """The UI listeners render without raising."""

    def test_renders_session_events(self):
        console = quiet_console()
        ui = TerminalUI(console)

        ui.show_welcome("base", "off")
        for state in SessionState:
            ui.on_state_change(state)
        ui.on_error("Failed to start recording: microphone busy")
        ui.on_delivered(
            TranscriptionRecord(raw_text="um hello", duration_seconds=2.0, enhanced_text="Hello."),
            DeliveryReport(pasted=False, copied=True, paste_error="Accessibility permissions not granted."),
        )

        output = console.file.getvalue()
        assert "RECORDING" in output
        assert "microphone permissions" in output
        assert "Hello." in output
        assert "Transcription copied to clipboard" in output

    @pytest.mark.asyncio
    async def test_end_of_input_quits(self):
        ui = TerminalUI(quiet_console())

        with patch("builtins.input", side_effect=EOFError):
            assert await ui.read_command() == "q"


class TestDictationApp:

    def test_app_initialization(self):
        store = SettingsStore(Settings())
        app = DictationApp(store, quiet_console())

        assert app.settings is store
        assert store.current.selected_prompt_id == DEFAULT_PROMPT_ID
        assert app._enhancement_summary() == "off"

    def test_enhancement_summary(self):
        store = SettingsStore(Settings(enhancement_enabled=True, provider="anthropic"))
        app = DictationApp(store, quiet_console())

        assert app._enhancement_summary() == "Anthropic (Default)"

    @pytest.mark.asyncio
    async def test_quit_command(self):
        store = SettingsStore(Settings())
        app = DictationApp(store, quiet_console())
        app.ui.read_command = AsyncMock(return_value="q")

        await app.run()

        app.ui.read_command.assert_awaited_once()


class TestCommandLine:

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_options(self):
        result = CliRunner().invoke(main, ["--help"])

        assert result.exit_code == 0
        for option in ("--model", "--provider", "--enhance", "--settings", "--verbose"):
            assert option in result.output

    def test_rejects_unknown_provider(self):
        result = CliRunner().invoke(main, ["--provider", "nope"])

        assert result.exit_code != 0
