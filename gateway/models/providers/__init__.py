from .base import CompletionRequest, ModelProvider, ProviderError, ProviderResponse, ProviderRetryable, ProviderTimeout
from .simulated import SimulatedProvider

__all__ = [
    "CompletionRequest",
    "ModelProvider",
    "ProviderError",
    "ProviderResponse",
    "ProviderRetryable",
    "ProviderTimeout",
    "SimulatedProvider",
]
