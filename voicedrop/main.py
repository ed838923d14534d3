"""
Main application entry point for VoiceDrop.

Wires the recorder, model gate, enhancement client and delivery sink into a
session controller and drives it from the terminal.
"""

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Optional, Set
import asyncio
import logging
import sys

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .audio.model_gate import ModelReadinessGate
from .audio.recorder import AudioRecorder
from .audio.transcriber import AVAILABLE_MODELS, FasterWhisperEngine
from .config import SettingsStore, default_settings_path, load_settings
from .enhancement.client import EnhancementClient
from .enhancement.prompts import PromptLibrary
from .enhancement.providers import PROVIDERS
from .session.app_modes import ActiveAppConfigurator
from .session.controller import RecordingSessionController
from .session.delivery import DeliverySink
from .session.models import InMemoryTranscriptionStore
from .ui.terminal import TerminalUI

logger = logging.getLogger(__name__)


def configure_logging(verbose: bool, console: Optional[Console] = None) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
    )
    # Keep third-party HTTP chatter out of the debug stream.
    for name in ("httpx", "httpcore", "openai", "anthropic", "faster_whisper"):
        logging.getLogger(name).setLevel(logging.WARNING)


class DictationApp:
    """
    Main application class that coordinates all components.

    Enter toggles recording, ``c`` cancels the current session and ``q``
    quits.
    """

    def __init__(self, settings: SettingsStore, console: Optional[Console] = None):
        self.settings = settings
        self.console = console or Console()
        self.ui = TerminalUI(self.console)
        self.prompts = PromptLibrary(settings)
        self.transcriptions = InMemoryTranscriptionStore()
        self._tasks: Set[asyncio.Future] = set()

    async def _load_engine(self, model_id: str) -> FasterWhisperEngine:
        return await FasterWhisperEngine.load(model_id, language=self.settings.current.language or None)

    def _enhancement_summary(self) -> str:
        current = self.settings.current
        if not current.enhancement_enabled:
            return "off"
        provider = PROVIDERS.get(current.provider)
        name = provider.name if provider else current.provider
        active = self.prompts.active_prompt
        return f"{name} ({active.title if active else 'Default'})"

    async def run(self) -> None:
        async with httpx.AsyncClient() as http_client:
            enhancement = EnhancementClient(store=self.settings, http_client=http_client)
            gate = ModelReadinessGate(self._load_engine)
            controller = RecordingSessionController(
                recorder=AudioRecorder(),
                gate=gate,
                settings=self.settings,
                delivery=DeliverySink(),
                enhancement=enhancement,
                store=self.transcriptions,
                app_configurator=ActiveAppConfigurator(self.settings),
                on_state_change=self.ui.on_state_change,
                on_error=self.ui.on_error,
                on_delivered=self.ui.on_delivered,
            )

            self.ui.show_welcome(self.settings.current.transcription_model, self._enhancement_summary())
            try:
                await self._command_loop(controller)
            finally:
                if controller.session is not None:
                    await controller.cancel()
                if self._tasks:
                    await asyncio.gather(*self._tasks, return_exceptions=True)
                await gate.unload()
                await enhancement.aclose()

    async def _command_loop(self, controller: RecordingSessionController) -> None:
        while True:
            command = await self.ui.read_command()
            if command in ("q", "quit", "exit"):
                return
            if command in ("c", "cancel"):
                self._spawn(controller.cancel())
            else:
                self._spawn(controller.toggle())

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Session command failed: {task.exception()}")
            self.ui.on_error(str(task.exception()))


@click.command()
@click.version_option(version=__version__)
@click.option(
    "--model",
    default=None,
    help="Whisper model to transcribe with",
    type=click.Choice(AVAILABLE_MODELS),
)
@click.option(
    "--provider",
    default=None,
    help="AI enhancement provider",
    type=click.Choice(sorted(PROVIDERS)),
)
@click.option("--enhance/--no-enhance", default=None, help="Turn AI enhancement on or off")
@click.option(
    "--settings",
    "settings_path",
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help="Settings file (defaults to the platform config directory)",
)
@click.option("--verbose", is_flag=True, help="Show debug logging")
def main(
    model: Optional[str],
    provider: Optional[str],
    enhance: Optional[bool],
    settings_path: Optional[Path],
    verbose: bool,
) -> None:
    """
    VoiceDrop - dictation with optional AI enhancement.

    Records from the microphone, transcribes with Whisper, optionally
    enhances the text with an LLM provider, then pastes it at the cursor
    and copies it to the clipboard. Press Enter to start/stop recording.
    """
    console = Console()
    configure_logging(verbose, console)

    path = settings_path or default_settings_path()
    overrides: Dict[str, Any] = {}
    if model:
        overrides["transcription_model"] = model
    if provider:
        overrides["provider"] = provider
    if enhance is not None:
        overrides["enhancement_enabled"] = enhance

    settings = SettingsStore(replace(load_settings(path), **overrides), path=path, persist=True)
    logger.debug(f"Settings loaded from {path}")

    try:
        app = DictationApp(settings, console)
        asyncio.run(app.run())
    except KeyboardInterrupt:
        click.echo("\nApplication interrupted by user.")
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
