"""
Settings persistence and change notification.

Settings are stored as JSON so they survive restarts. Components never hold
on to individual values across a session: they take a snapshot when a
request is built and subscribe to the store for changes they react to.
"""

from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set
import json
import logging
import os
import sys

logger = logging.getLogger(__name__)

APP_NAME = "VoiceDrop"

SettingsListener = Callable[["Settings", Set[str]], None]


def default_settings_path() -> Path:
    """Return the settings file location for this platform."""
    override = os.environ.get("VOICEDROP_SETTINGS_PATH")
    if override:
        path = Path(override).expanduser()
        return path if path.suffix else path / "settings.json"

    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support" / APP_NAME
    elif sys.platform.startswith("win"):
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming")) / APP_NAME
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config")) / APP_NAME.lower()
    return base / "settings.json"


def default_recordings_dir() -> str:
    return str(default_settings_path().parent / "Recordings")


@dataclass(frozen=True)
class Settings:
    """User preferences consumed by the session controller and enhancement client."""

    # Transcription
    transcription_model: str = "base"
    transcription_prompt: str = "Hello, how are you doing? Nice to meet you."
    language: str = "en"
    recordings_dir: str = field(default_factory=default_recordings_dir)

    # Post-processing and delivery
    auto_copy: bool = True
    word_replacement_enabled: bool = False
    word_replacements: Dict[str, str] = field(default_factory=dict)

    # Enhancement
    enhancement_enabled: bool = False
    use_clipboard_context: bool = False
    use_screen_context: bool = False
    provider: str = "openai"
    api_key: str = ""
    model: str = ""
    assistant_trigger: str = "hey"
    selected_prompt_id: str = ""
    custom_prompts: List[Dict[str, Any]] = field(default_factory=list)

    # Per-application modes
    app_modes: List[Dict[str, Any]] = field(default_factory=list)


def load_settings(path: Optional[Path] = None) -> Settings:
    """
    Load settings from disk.

    Missing files, unreadable JSON, unknown keys and values whose type does
    not match the default all fall back to defaults.
    """
    path = path or default_settings_path()
    raw: Dict[str, Any] = {}
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable settings file {path}: {e}")
            raw = {}

    defaults = asdict(Settings())
    data: Dict[str, Any] = {}
    for key, default in defaults.items():
        value = raw.get(key)
        if key in raw and type(value) is type(default):  # noqa: E721 - strict type match
            data[key] = value
        else:
            data[key] = default
    return Settings(**data)


def save_settings(settings: Settings, path: Optional[Path] = None) -> None:
    """Write settings to disk; failures are logged and otherwise ignored."""
    path = path or default_settings_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(asdict(settings), indent=2), encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not save settings to {path}: {e}")


class SettingsStore:
    """
    Process-wide holder of the current ``Settings``.

    ``update`` swaps in a new immutable ``Settings`` value and notifies
    listeners synchronously, in the order they subscribed, with the names of
    the fields that actually changed.
    """

    def __init__(self, settings: Optional[Settings] = None, path: Optional[Path] = None, persist: bool = False):
        self._settings = settings or Settings()
        self._path = path
        self._persist = persist
        self._listeners: List[SettingsListener] = []

    @classmethod
    def from_file(cls, path: Optional[Path] = None) -> "SettingsStore":
        path = path or default_settings_path()
        return cls(load_settings(path), path=path, persist=True)

    @property
    def current(self) -> Settings:
        return self._settings

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> Settings:
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise KeyError(f"Unknown settings: {', '.join(sorted(unknown))}")

        previous = self._settings
        changed = {k for k, v in changes.items() if getattr(previous, k) != v}
        if not changed:
            return previous

        self._settings = replace(previous, **changes)
        logger.debug(f"Settings changed: {sorted(changed)}")
        if self._persist:
            save_settings(self._settings, self._path)

        for listener in list(self._listeners):
            listener(self._settings, changed)
        return self._settings
