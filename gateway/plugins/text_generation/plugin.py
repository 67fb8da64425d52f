"""
Text generation plugin (Google Text Bison compatible contract).

The provider call is simulated: the response is built locally from the
prompt, shaped like the real API's completion payload.
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
import logging
import time

import jinja2
from pydantic import BaseModel, Field

from gateway.core.errors import ApiError, utc_timestamp
from gateway.models.providers import CompletionRequest, SimulatedProvider
from gateway.models.strategy import ModelMetadata, ModelOutput, ModelStrategy as BaseStrategy, ProcessContext

logger = logging.getLogger(__name__)

MODEL_ID = "google-text-bison"

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "description": "The text prompt to send to the model",
            "minLength": 1,
            "maxLength": 8192,
        },
        "maxTokens": {
            "type": "integer",
            "description": "Maximum number of tokens to generate",
            "minimum": 1,
            "maximum": 1024,
            "default": 256,
        },
        "temperature": {
            "type": "number",
            "description": "Controls randomness in the output",
            "minimum": 0.0,
            "maximum": 1.0,
            "default": 0.7,
        },
        "topP": {
            "type": "number",
            "description": "Controls diversity of the output",
            "minimum": 0.0,
            "maximum": 1.0,
            "default": 0.9,
        },
        "topK": {
            "type": "integer",
            "description": "Controls the number of top tokens to consider",
            "minimum": 1,
            "maximum": 100,
            "default": 40,
        },
        "stopSequences": {
            "type": "array",
            "description": "Sequences where the model should stop generating",
            "items": {"type": "string"},
            "maxItems": 5,
        },
    },
    "required": ["prompt"],
    "additionalProperties": True,
}

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"


class TextGenerationInput(BaseModel):
    prompt: str
    max_tokens: int = Field(256, alias="maxTokens")
    temperature: float = 0.7
    top_p: float = Field(0.9, alias="topP")
    top_k: int = Field(40, alias="topK")
    stop_sequences: List[str] = Field(default_factory=list, alias="stopSequences")


class Usage(BaseModel):
    prompt_tokens: int = Field(..., serialization_alias="promptTokens")
    completion_tokens: int = Field(..., serialization_alias="completionTokens")
    total_tokens: int = Field(..., serialization_alias="totalTokens")


class TextGenerationResult(BaseModel):
    text: str
    finish_reason: Literal["STOP", "MAX_TOKENS", "SAFETY"] = Field(..., serialization_alias="finishReason")
    usage: Usage


def _count_tokens(text: str) -> int:
    return max(1, (len(text) + 3) // 4)


def _simulate_completion(req: CompletionRequest) -> Dict[str, Any]:
    params = req.params or {}
    prompt = req.messages[-1]["content"].strip()
    text = (
        f'Based on your prompt: "{prompt}", here is a simulated response from {req.model}. '
        f"A deployed gateway would forward this request to the provider's text generation API."
    )

    finish_reason = "STOP"
    for stop in params.get("stop_sequences") or []:
        idx = text.find(stop)
        if idx != -1:
            text = text[:idx]

    words = text.split(" ")
    max_tokens = int(params.get("max_tokens", 256))
    if _count_tokens(text) > max_tokens:
        # roughly four characters per token
        kept = []
        for word in words:
            if _count_tokens(" ".join(kept + [word])) > max_tokens:
                break
            kept.append(word)
        text = " ".join(kept)
        finish_reason = "MAX_TOKENS"

    return {"text": text, "finish_reason": finish_reason}


class ModelStrategy(BaseStrategy[Dict[str, Any], TextGenerationResult]):
    model_name = "text-bison-001"

    def __init__(self, provider: Optional[SimulatedProvider] = None):
        self.provider = provider or SimulatedProvider(provider_name="Google", responder=_simulate_completion)
        self.jinja_env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(TEMPLATES_DIR)),
            undefined=jinja2.StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )

    def render_messages(self, params: TextGenerationInput) -> List[Dict[str, str]]:
        variables = {
            "model_name": self.model_name,
            "prompt": params.prompt,
            "max_tokens": params.max_tokens,
            "stop_sequences": params.stop_sequences,
        }
        try:
            system_content = self.jinja_env.get_template("system.j2").render(**variables)
            user_content = self.jinja_env.get_template("user.j2").render(**variables)
        except jinja2.UndefinedError as e:
            raise ValueError(f"Missing required variable in text generation template: {e}") from e
        return [
            {"role": "system", "content": system_content},
            {"role": "user", "content": user_content},
        ]

    async def process(self, params: Dict[str, Any], context: ProcessContext) -> ModelOutput[TextGenerationResult]:
        start_time = time.perf_counter()

        if not context.api_key:
            raise ApiError.unauthorized("API key is required for Google Text Bison")

        request = TextGenerationInput.model_validate(params)
        logger.info(f"Processing text generation request: prompt length {len(request.prompt)}, "
                    f"max tokens {request.max_tokens}, user {context.user_id}")

        response = await self.provider.generate(CompletionRequest(
            model=self.model_name,
            messages=self.render_messages(request),
            params={
                "max_tokens": request.max_tokens,
                "temperature": request.temperature,
                "top_p": request.top_p,
                "top_k": request.top_k,
                "stop_sequences": request.stop_sequences,
            },
        ))

        prompt_tokens = _count_tokens(request.prompt)
        completion_tokens = _count_tokens(response.content["text"])
        result = TextGenerationResult(
            text=response.content["text"],
            finish_reason=response.content["finish_reason"],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

        processing_time = (time.perf_counter() - start_time) * 1000
        logger.info(f"Text generation completed in {processing_time:.1f}ms ({result.finish_reason})")

        return ModelOutput[TextGenerationResult](
            result=result,
            metadata=ModelMetadata(
                processing_time=processing_time,
                model_version=self.model_name,
                api_provider="Google",
                timestamp=utc_timestamp(),
            ),
        )
