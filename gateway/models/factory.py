from __future__ import annotations
from datetime import datetime, timezone
from typing import Callable, Dict, List
import logging

from ..core.errors import DuplicateRegistrationError, ModelNotFoundError
from .strategy import ModelStrategy

logger = logging.getLogger(__name__)

StrategyCreator = Callable[[], ModelStrategy]


class StrategyFactory:
    """
    Model ID -> strategy constructor.

    ``create`` calls the stored creator every time, so no strategy instance is
    shared between two invocations.
    """

    def __init__(self):
        self._creators: Dict[str, StrategyCreator] = {}
        self._registered_at: Dict[str, datetime] = {}

    def register(self, model_id: str, creator: StrategyCreator) -> None:
        if model_id in self._creators:
            raise DuplicateRegistrationError(f"Model strategy with ID '{model_id}' is already registered")
        if not callable(creator):
            raise TypeError(f"Creator for model ID '{model_id}' must be callable, got {type(creator).__name__}")

        self._creators[model_id] = creator
        self._registered_at[model_id] = datetime.now(timezone.utc)
        logger.debug(f"Registered strategy for {model_id}")

    def create(self, model_id: str) -> ModelStrategy:
        creator = self._creators.get(model_id)
        if creator is None:
            raise ModelNotFoundError(f"Model strategy with ID '{model_id}' is not registered", model_id=model_id)
        return creator()

    def is_registered(self, model_id: str) -> bool:
        return model_id in self._creators

    def registered_at(self, model_id: str) -> datetime:
        if model_id not in self._registered_at:
            raise ModelNotFoundError(f"Model strategy with ID '{model_id}' is not registered", model_id=model_id)
        return self._registered_at[model_id]

    def list_models(self) -> List[str]:
        return list(self._creators)

    def unregister(self, model_id: str) -> bool:
        self._registered_at.pop(model_id, None)
        return self._creators.pop(model_id, None) is not None

    def clear(self) -> None:
        self._creators.clear()
        self._registered_at.clear()

    def __len__(self) -> int:
        return len(self._creators)
