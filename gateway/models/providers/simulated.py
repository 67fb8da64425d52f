from __future__ import annotations
from typing import Any, Callable, Optional
import asyncio
import time
import logging

from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from ...config import ProviderSettings
from .base import CompletionRequest, ModelProvider, ProviderError, ProviderResponse, ProviderRetryable, ProviderTimeout

logger = logging.getLogger(__name__)

Responder = Callable[[CompletionRequest], Any]


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (ProviderRetryable, ProviderTimeout))


def _echo(req: CompletionRequest) -> str:
    for msg in reversed(req.messages):
        if msg.get("role") == "user":
            return str(msg.get("content", ""))
    return ""


class SimulatedProvider(ModelProvider):
    """
    Stand-in for a remote model API.

    Waits ``latency_s`` to mimic the network round trip, then builds the
    response with ``responder``. Retryable failures raised by the responder
    are retried with exponential jitter.
    """

    name = "simulated"
    defaults = ProviderSettings()

    def __init__(self, provider_name: str = "simulated", responder: Optional[Responder] = None,
                 latency_s: Optional[float] = None, retry_attempts: Optional[int] = None,
                 request_timeout_s: Optional[float] = None):
        self.provider_name = provider_name
        self.responder = responder or _echo
        self.latency_s = self.defaults.latency_s if latency_s is None else latency_s
        self.retry_attempts = max(1, self.defaults.retry_attempts if retry_attempts is None else retry_attempts)
        self.request_timeout_s = request_timeout_s
        self.calls = 0

    async def _complete(self, req: CompletionRequest) -> ProviderResponse:
        self.calls += 1
        t0 = time.perf_counter()
        if self.latency_s:
            await asyncio.sleep(self.latency_s)

        try:
            content = self.responder(req)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{self.provider_name} request failed: {e}") from e

        meta = {"provider": self.provider_name, "model": req.model, "latency": time.perf_counter() - t0}
        return ProviderResponse(content=content, meta=meta)

    async def generate(self, req: CompletionRequest) -> ProviderResponse:
        timeout = (req.params or {}).get("timeout", self.request_timeout_s)

        async for attempt in AsyncRetrying(
            reraise=True,
            wait=wait_exponential_jitter(initial=0.05, max=1),
            stop=stop_after_attempt(self.retry_attempts),
            retry=retry_if_exception(_is_retryable),
        ):
            with attempt:
                try:
                    return await asyncio.wait_for(self._complete(req), timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise ProviderTimeout(f"{self.provider_name} timeout after {timeout}s") from e

    async def health_check(self) -> bool:
        return True

    @classmethod
    def configure(cls, settings: ProviderSettings) -> None:
        """Set the latency/retry defaults used by providers created afterwards."""
        cls.defaults = settings
