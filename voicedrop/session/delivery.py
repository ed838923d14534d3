"""
Delivery of finished text: paste at the cursor and copy to the clipboard.

Neither step raises. Each outcome is recorded on a ``DeliveryReport`` so
the controller can surface it without aborting the session.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import asyncio
import logging
import sys

import pyperclip

try:
    from pynput.keyboard import Controller, Key
    PYNPUT_AVAILABLE = True
except ImportError:
    PYNPUT_AVAILABLE = False
    Controller = None
    Key = None

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    pasted: bool = False
    copied: bool = False
    paste_error: Optional[str] = None
    copy_error: Optional[str] = None

    @property
    def clipboard_message(self) -> str:
        if self.copied:
            return "Transcription copied to clipboard"
        if self.copy_error:
            return "Failed to copy to clipboard"
        return ""


def accessibility_trusted() -> bool:
    """
    Whether this process may send synthetic keystrokes.

    Only macOS gates this behind the Accessibility permission; the check
    uses the ApplicationServices bindings that pynput installs there.
    """
    if not PYNPUT_AVAILABLE:
        return False
    if sys.platform != "darwin":
        return True
    import HIServices
    return bool(HIServices.AXIsProcessTrusted())


class CursorPaster:
    """
    Pastes text into the focused application.

    The text goes through the clipboard followed by a Cmd/Ctrl+V keystroke;
    the previous clipboard content is restored afterwards.
    """

    def __init__(self, paste_delay_s: float = 0.05, restore_delay_s: float = 0.1):
        self._paste_delay_s = paste_delay_s
        self._restore_delay_s = restore_delay_s

    async def paste(self, text: str) -> None:
        if not PYNPUT_AVAILABLE:
            raise RuntimeError("pynput not available. Install with: pip install pynput")

        old_clip = pyperclip.paste()
        pyperclip.copy(text)
        try:
            await asyncio.sleep(self._paste_delay_s)
            modifier = Key.cmd if sys.platform == "darwin" else Key.ctrl
            keyboard = Controller()
            with keyboard.pressed(modifier):
                keyboard.press("v")
                keyboard.release("v")
            await asyncio.sleep(self._restore_delay_s)
        finally:
            pyperclip.copy(old_clip)


class DeliverySink:
    """
    Pastes at the cursor (when the trust check passes) and, independently,
    copies to the clipboard (when auto-copy is on).

    Args:
        trust_check: Returns True when synthetic keystrokes are permitted
        paster: Object with an async ``paste(text)`` method
        clipboard_copy: Callable putting text on the clipboard
    """

    def __init__(
        self,
        trust_check: Callable[[], bool] = accessibility_trusted,
        paster: Optional[CursorPaster] = None,
        clipboard_copy: Callable[[str], None] = pyperclip.copy,
    ):
        self._trust_check = trust_check
        self._paster = paster or CursorPaster()
        self._clipboard_copy = clipboard_copy

    async def deliver(self, text: str, auto_copy: bool = True) -> DeliveryReport:
        report = DeliveryReport()

        try:
            trusted = self._trust_check()
        except Exception as e:
            logger.warning(f"Accessibility check failed: {e}")
            trusted = False

        if trusted:
            try:
                await self._paster.paste(text)
                report.pasted = True
            except Exception as e:
                report.paste_error = str(e)
                logger.warning(f"Could not paste at cursor: {e}")
        else:
            report.paste_error = "Accessibility permissions not granted. Transcription not pasted automatically."
            logger.info(report.paste_error)

        if auto_copy:
            try:
                self._clipboard_copy(text)
                report.copied = True
            except Exception as e:
                report.copy_error = str(e)
                logger.warning(f"Could not copy to clipboard: {e}")

        return report
