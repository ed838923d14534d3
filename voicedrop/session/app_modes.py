"""
Per-application modes.

A mode ties foreground applications to an enhancement setup (prompt and
on/off). When recording starts, the mode matching the frontmost
application is applied to the settings store before the session takes
its enhancement snapshot.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional
import logging
import uuid

from ..config import SettingsStore

logger = logging.getLogger(__name__)

ForegroundAppSource = Callable[[], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class AppMode:
    name: str
    app_ids: List[str] = field(default_factory=list)
    prompt_id: Optional[str] = None
    enhancement_enabled: Optional[bool] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppMode":
        return cls(
            name=str(data.get("name", "")),
            app_ids=[str(a) for a in data.get("app_ids", [])],
            prompt_id=data.get("prompt_id"),
            enhancement_enabled=data.get("enhancement_enabled"),
            id=str(data.get("id") or uuid.uuid4()),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AppModeValidationError:
    code: str
    message: str


def validate_for_save(
    mode: AppMode,
    existing: List[AppMode],
    editing_id: Optional[str] = None,
) -> List[AppModeValidationError]:
    """
    Check a mode before it is saved.

    Reports an empty name, a name already used by another mode, a mode with
    no applications, and applications already claimed by another mode.
    ``editing_id`` is the id of the mode being edited, which is not compared
    against itself.
    """
    errors: List[AppModeValidationError] = []
    others = [m for m in existing if m.id != editing_id]

    if not mode.name.strip():
        errors.append(AppModeValidationError("empty_name", "Mode name cannot be empty."))
    elif any(m.name == mode.name for m in others):
        errors.append(AppModeValidationError(
            "duplicate_name", f"A mode with the name '{mode.name}' already exists."
        ))

    if not mode.app_ids:
        errors.append(AppModeValidationError("no_triggers", "You must add at least one application."))

    for app_id in mode.app_ids:
        for other in others:
            if app_id in other.app_ids:
                errors.append(AppModeValidationError(
                    "duplicate_app_trigger",
                    f"The app '{app_id}' is already configured in the '{other.name}' mode.",
                ))
    return errors


class ActiveAppConfigurator:
    """
    Applies the mode matching the foreground application.

    Args:
        store: Settings store to update
        foreground_app: Coroutine function returning the frontmost
            application's identifier, or None when it cannot be determined
    """

    def __init__(self, store: SettingsStore, foreground_app: Optional[ForegroundAppSource] = None):
        self._store = store
        self._foreground_app = foreground_app

    @property
    def modes(self) -> List[AppMode]:
        return [AppMode.from_dict(m) for m in self._store.current.app_modes]

    def save_mode(self, mode: AppMode) -> List[AppModeValidationError]:
        existing = self.modes
        editing_id = mode.id if any(m.id == mode.id for m in existing) else None
        errors = validate_for_save(mode, existing, editing_id)
        if errors:
            return errors
        if editing_id:
            updated = [mode if m.id == mode.id else m for m in existing]
        else:
            updated = existing + [mode]
        self._store.update(app_modes=[m.to_dict() for m in updated])
        return []

    def mode_for(self, app_id: str) -> Optional[AppMode]:
        return next((m for m in self.modes if app_id in m.app_ids), None)

    async def apply_for_current_app(self) -> Optional[AppMode]:
        if self._foreground_app is None:
            return None
        app_id = await self._foreground_app()
        if not app_id:
            return None

        mode = self.mode_for(app_id)
        if mode is None:
            logger.debug(f"No mode configured for {app_id}")
            return None

        changes: Dict[str, Any] = {}
        if mode.prompt_id:
            changes["selected_prompt_id"] = mode.prompt_id
        if mode.enhancement_enabled is not None:
            changes["enhancement_enabled"] = mode.enhancement_enabled
        if changes:
            self._store.update(**changes)
        logger.info(f"Applied mode '{mode.name}' for {app_id}")
        return mode
