from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

TInput = TypeVar("TInput")
TResult = TypeVar("TResult")


@dataclass(frozen=True)
class ProcessContext:
    #per-invocation caller identity, never persisted
    api_key: Optional[str] = None
    user_id: Optional[str] = None


class ModelMetadata(BaseModel):
    """Metadata a strategy attaches to its result. Extra keys are kept as-is."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow", protected_namespaces=())

    processing_time: Optional[float] = Field(None, description="Processing time in milliseconds")
    model_version: Optional[str] = None
    model_id: Optional[str] = None
    api_provider: Optional[str] = None
    timestamp: Optional[str] = None


class ModelOutput(BaseModel, Generic[TResult]):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    result: TResult
    metadata: ModelMetadata = Field(default_factory=ModelMetadata)


class ModelStrategy(ABC, Generic[TInput, TResult]):
    """
    Processing contract every plugin implements.

    The gateway treats the validated payload as opaque: each strategy parses
    ``params`` into its own input type and returns a ``ModelOutput`` of its own
    result type.
    """

    @abstractmethod
    async def process(self, params: Dict[str, Any], context: ProcessContext) -> ModelOutput[TResult]:
        raise NotImplementedError
