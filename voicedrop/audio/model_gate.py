"""
Model readiness gate.

Makes sure exactly one transcription model load is in flight at a time and
that every caller asking for the same model shares it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import DictationError, ModelLoadError
from .transcriber import TranscriptionEngine

logger = logging.getLogger(__name__)

EngineLoader = Callable[[str], Awaitable[TranscriptionEngine]]


class ModelReadinessGate:
    """
    Idempotent, awaitable model loading.

    ``ensure_loaded`` returns immediately when the requested model is
    resident, joins a load that is already running for it, and otherwise
    starts exactly one new load. A failed load is not cached: the next call
    tries again.

    Args:
        loader: Coroutine function creating an engine for a model id
    """

    def __init__(self, loader: EngineLoader):
        self._loader = loader
        self._engine: Optional[TranscriptionEngine] = None
        self._loading: Optional[asyncio.Future] = None
        self._loading_model_id: Optional[str] = None

    @property
    def engine(self) -> Optional[TranscriptionEngine]:
        return self._engine

    @property
    def loaded_model_id(self) -> Optional[str]:
        return self._engine.model_id if self._engine is not None else None

    def is_loaded(self, model_id: Optional[str] = None) -> bool:
        if self._engine is None:
            return False
        return model_id is None or self._engine.model_id == model_id

    def is_loading(self) -> bool:
        return self._loading is not None and not self._loading.done()

    async def ensure_loaded(self, model_id: str) -> TranscriptionEngine:
        """
        Return a loaded engine for ``model_id``.

        Raises:
            ModelLoadError: If the load fails.
        """
        while True:
            if self.is_loaded(model_id):
                return self._engine

            if self.is_loading():
                if self._loading_model_id == model_id:
                    logger.debug(f"Joining in-flight load of {model_id}")
                    return await asyncio.shield(self._loading)
                # A different model is loading; let it settle before swapping.
                try:
                    await asyncio.shield(self._loading)
                except ModelLoadError:
                    pass
                continue

            if self._engine is not None:
                await self.unload()

            self._loading_model_id = model_id
            self._loading = asyncio.ensure_future(self._load(model_id))
            return await asyncio.shield(self._loading)

    async def _load(self, model_id: str) -> TranscriptionEngine:
        logger.info(f"Loading transcription model {model_id}")
        try:
            engine = await self._loader(model_id)
        except ModelLoadError:
            logger.error(f"Model load failed: {model_id}")
            raise
        except (DictationError, RuntimeError, OSError, ValueError) as e:
            logger.error(f"Model load failed: {model_id}: {e}")
            raise ModelLoadError(model_id, str(e)) from e
        self._engine = engine
        return engine

    async def unload(self) -> None:
        """Release the resident engine; the next ``ensure_loaded`` reloads it."""
        engine, self._engine = self._engine, None
        if engine is not None:
            logger.info(f"Releasing transcription model {engine.model_id}")
            await engine.release()
