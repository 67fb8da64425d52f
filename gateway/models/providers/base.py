from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from PIL import Image

#unified provider errors
class ProviderError(RuntimeError): ...
class ProviderTimeout(ProviderError): ...
class ProviderRetryable(ProviderError): ...

@dataclass(frozen=True)
class CompletionRequest:
    model: str
    messages: List[Dict[str, Any]]
    params: Dict[str, Any] | None = None
    images: Optional[List[Union[bytes, Image.Image]]] = None #images to include in the request

@dataclass(frozen=True)
class ProviderResponse:
    content: Any
    meta: Dict[str, Any] #latency, token counts, model, provider

class ModelProvider(ABC):
    name: str = "unknown"

    @abstractmethod
    async def generate(self, req: CompletionRequest) -> ProviderResponse:
        raise NotImplementedError

    @abstractmethod
    async def health_check(self) -> bool:
        raise NotImplementedError
