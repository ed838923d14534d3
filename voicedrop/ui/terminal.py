"""
Rich-based terminal user interface.

Binds the session controller's observable fields to the console: state
changes, errors with guidance, and the delivered transcription.
"""

from typing import Optional
import asyncio
import time

try:
    from rich.console import Console
    from rich.panel import Panel
    from rich.text import Text
    from rich.table import Table
    from rich import box
    RICH_AVAILABLE = True
except ImportError:
    RICH_AVAILABLE = False
    Console = None

from .. import __version__
from ..session.delivery import DeliveryReport
from ..session.models import SessionState, TranscriptionRecord

_STATE_MESSAGES = {
    SessionState.STOPPING: "⏹️  Stopping recording...",
    SessionState.TRANSCRIBING: "🤖 Transcribing...",
    SessionState.ENHANCING: "✨ Enhancing transcription...",
    SessionState.DELIVERING: "📋 Delivering text...",
    SessionState.CANCELLED: "[yellow]Session cancelled.[/yellow]",
}


class TerminalUI:
    """
    Rich-based terminal interface for the dictation application.

    The ``on_*`` methods are passed to the controller as its listeners.
    """

    def __init__(self, console: Optional[Console] = None):
        if not RICH_AVAILABLE:
            raise RuntimeError("Rich library not available. Install with: pip install rich")

        self.console = console or Console()
        self._recording_start_time: Optional[float] = None

    def show_welcome(self, model_id: str, enhancement: str) -> None:
        welcome_text = Text()
        welcome_text.append(f"🎙️  VoiceDrop {__version__}", style="bold magenta")
        welcome_text.append("\n\nDictate anywhere, with optional AI enhancement\n")
        welcome_text.append(f"\nModel: {model_id or 'not selected'}", style="dim")
        welcome_text.append(f"\nEnhancement: {enhancement}", style="dim")

        self.console.print(Panel(
            welcome_text,
            title="Welcome",
            title_align="center",
            border_style="cyan",
            padding=(1, 2),
        ))
        self.console.print("\n📋 Commands:")
        self.console.print("  • [bold green]Enter[/bold green] start / stop recording")
        self.console.print("  • [bold yellow]c[/bold yellow] + Enter cancel the current session")
        self.console.print("  • [bold red]q[/bold red] + Enter quit")
        self.console.print()

    async def read_command(self) -> str:
        """Wait for the next input line without blocking the event loop."""
        loop = asyncio.get_event_loop()
        try:
            line = await loop.run_in_executor(None, input)
        except EOFError:
            return "q"
        return line.strip().lower()

    def on_state_change(self, state: SessionState) -> None:
        if state == SessionState.RECORDING:
            self._recording_start_time = time.time()
            self.console.print(Panel(
                Text("🔴 RECORDING", style="bold red") + Text("\n\nSpeak now... Press Enter to stop", style="white"),
                title="Recording Audio",
                title_align="center",
                border_style="red",
                padding=(1, 2),
            ))
        elif state == SessionState.STOPPING and self._recording_start_time:
            duration = time.time() - self._recording_start_time
            self._recording_start_time = None
            self.console.print(f"⏹️  Recording stopped ({duration:.1f}s)")
        elif state in _STATE_MESSAGES:
            self.console.print(_STATE_MESSAGES[state])

    def on_error(self, message: str) -> None:
        lowered = message.lower()
        if "permission" in lowered or "audio" in lowered or "microphone" in lowered:
            guidance = "\n\n💡 Try checking your microphone permissions in System Preferences."
        elif "model" in lowered:
            guidance = "\n\n💡 Pick an available model with --model (tiny, base, small, ...)."
        elif "timeout" in lowered:
            guidance = "\n\n💡 Try again - the service might be temporarily slow."
        else:
            guidance = ""

        self.console.print(Panel(
            Text(f"❌ {message}{guidance}", style="red"),
            title="Error",
            title_align="center",
            border_style="red",
            padding=(1, 2),
        ))

    def on_delivered(self, record: TranscriptionRecord, report: DeliveryReport) -> None:
        if record.enhanced_text:
            table = Table(
                title="Transcription",
                title_style="bold cyan",
                box=box.ROUNDED,
                show_header=True,
                header_style="bold white",
            )
            table.add_column("Version", style="magenta", width=10)
            table.add_column("Text", style="white")
            table.add_row("Raw", f"[dim]{record.raw_text}[/dim]")
            table.add_row("Enhanced", record.enhanced_text)
            self.console.print(table)

        status = []
        if report.pasted:
            status.append("Pasted at cursor")
        if report.clipboard_message:
            status.append(report.clipboard_message)
        if not status:
            status.append("Not delivered automatically")

        preview = record.final_text
        if len(preview) > 100:
            preview = preview[:100] + "..."
        self.console.print(Panel(
            f"✅ {'. '.join(status)}\n\n[dim]{preview}[/dim]\n\n"
            f"[dim]{record.word_count} words, {record.duration_seconds:.1f}s of audio[/dim]",
            title="Success",
            title_align="center",
            border_style="green",
            padding=(1, 2),
        ))
        if report.paste_error and not report.pasted:
            self.console.print(f"[yellow]⚠️  {report.paste_error}[/yellow]")
