"""
Ambient context for enhancement prompts: clipboard text and captured
screen text.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

import pyperclip

logger = logging.getLogger(__name__)

ScreenTextSource = Callable[[], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class ContextSnapshot:
    """Context captured for a single enhancement request."""
    clipboard_text: Optional[str] = None
    screen_text: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.clipboard_text and not self.screen_text


def read_clipboard() -> Optional[str]:
    """Current clipboard text, or None when it is empty or unreadable."""
    try:
        text = pyperclip.paste()
    except pyperclip.PyperclipException as e:
        logger.warning(f"Could not read clipboard: {e}")
        return None
    return text or None


class ScreenContextService:
    """
    Holds the text most recently captured from the active window.

    A new ``capture`` cancels a capture that is still running and starts
    over, so the stored text always belongs to the latest recording.

    Args:
        source: Coroutine function returning the active window's text, or
            None when no screen text extraction is available
    """

    def __init__(self, source: Optional[ScreenTextSource] = None):
        self._source = source
        self._task: Optional[asyncio.Task] = None
        self.last_captured_text: Optional[str] = None

    @property
    def available(self) -> bool:
        return self._source is not None

    async def capture(self) -> Optional[str]:
        if self._source is None:
            return None

        if self._task is not None and not self._task.done():
            logger.info("Restarting screen context capture")
            self._task.cancel()

        task = asyncio.ensure_future(self._source())
        self._task = task
        try:
            text = await task
        except asyncio.CancelledError:
            if task.cancelled() and self._task is not task:
                # superseded by a newer capture
                return None
            raise
        finally:
            if self._task is task:
                self._task = None

        if text:
            self.last_captured_text = text
            logger.debug(f"Captured {len(text)} characters of screen context")
        return text

    def clear(self) -> None:
        self.last_captured_text = None
