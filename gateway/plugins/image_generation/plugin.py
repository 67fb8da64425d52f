"""
Image generation plugin (Gemini image generation compatible contract).

Renders a placeholder PNG locally with Pillow instead of calling a remote
image model: the canvas follows the requested aspect ratio, its colour is
derived from the prompt, and input images (editing mode) are blended in.
"""
from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
import hashlib
import logging
import textwrap
import time

from PIL import Image, ImageDraw
from pydantic import BaseModel, Field

from gateway.core.errors import ApiError, utc_timestamp
from gateway.models.providers import CompletionRequest, SimulatedProvider
from gateway.models.strategy import ModelMetadata, ModelOutput, ModelStrategy as BaseStrategy, ProcessContext
from gateway.utils.image_converter import from_base64, to_base64

logger = logging.getLogger(__name__)

MODEL_ID = "gemini-image-gen"

ASPECT_RATIOS = ["1:1", "2:3", "3:2", "3:4", "4:3", "4:5", "5:4", "9:16", "16:9", "21:9"]
LONG_SIDE = 1024

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "prompt": {
            "type": "string",
            "description": "Descriptive text prompt for image generation or editing",
            "minLength": 1,
            "maxLength": 8192,
        },
        "aspectRatio": {
            "type": "string",
            "description": "Aspect ratio for generated image",
            "enum": ASPECT_RATIOS,
            "default": "1:1",
        },
        "responseModalities": {
            "type": "array",
            "description": "Output modalities (Image, Text, or both)",
            "items": {"type": "string", "enum": ["Image", "Text"]},
            "uniqueItems": True,
            "default": ["Image", "Text"],
        },
        "inputImages": {
            "type": "array",
            "description": "Optional input images for editing or composition",
            "items": {
                "type": "object",
                "properties": {
                    "data": {"type": "string", "description": "Base64 encoded image data"},
                    "mimeType": {"type": "string", "description": "Image MIME type"},
                },
                "required": ["data", "mimeType"],
            },
            "maxItems": 3,
        },
    },
    "required": ["prompt"],
}


class InputImage(BaseModel):
    data: str
    mime_type: str = Field(..., alias="mimeType")


class ImageGenerationInput(BaseModel):
    prompt: str
    aspect_ratio: str = Field("1:1", alias="aspectRatio")
    response_modalities: List[Literal["Image", "Text"]] = Field(
        default_factory=lambda: ["Image", "Text"], alias="responseModalities"
    )
    input_images: List[InputImage] = Field(default_factory=list, alias="inputImages")


class GeneratedImage(BaseModel):
    data: str
    mime_type: str = Field("image/png", serialization_alias="mimeType")
    width: int
    height: int


class ImageGenerationResult(BaseModel):
    images: List[GeneratedImage]
    text: Optional[str] = None


def canvas_size(aspect_ratio: str) -> tuple[int, int]:
    w, h = (int(x) for x in aspect_ratio.split(":"))
    if w >= h:
        return LONG_SIDE, max(1, LONG_SIDE * h // w)
    return max(1, LONG_SIDE * w // h), LONG_SIDE


def _prompt_colour(prompt: str) -> tuple[int, int, int]:
    digest = hashlib.sha256(prompt.encode("utf-8")).digest()
    return digest[0], digest[1], digest[2]


def _render(req: CompletionRequest) -> Dict[str, Any]:
    prompt = req.messages[-1]["content"]
    width, height = req.params["size"]
    canvas = Image.new("RGB", (width, height), _prompt_colour(prompt))

    for source in req.images or []:
        canvas = Image.blend(canvas, source.convert("RGB").resize((width, height)), alpha=0.5)

    draw = ImageDraw.Draw(canvas)
    caption = textwrap.fill(prompt[:200], width=max(10, width // 12))
    draw.multiline_text((16, 16), caption, fill=(255, 255, 255))
    return {"image": canvas, "description": f"A {width}x{height} rendering of: {prompt}"}


class ModelStrategy(BaseStrategy[Dict[str, Any], ImageGenerationResult]):
    model_name = "gemini-2.5-flash-image"
    description = "Gemini 2.5 Flash Image Generation - Text-to-Image, Image Editing, Style Transfer"

    def __init__(self, provider: Optional[SimulatedProvider] = None):
        self.provider = provider or SimulatedProvider(provider_name="Google Gemini", responder=_render)

    async def process(self, params: Dict[str, Any], context: ProcessContext) -> ModelOutput[ImageGenerationResult]:
        start_time = time.perf_counter()

        request = ImageGenerationInput.model_validate(params)
        if request.aspect_ratio not in ASPECT_RATIOS:
            raise ApiError.bad_request(f"Unsupported aspect ratio: {request.aspect_ratio}")
        for image in request.input_images:
            if not image.mime_type.startswith("image/"):
                raise ApiError.bad_request(f"Unsupported input image type: {image.mime_type}")

        mode = "image-editing" if request.input_images else "text-to-image"
        logger.info(f"Processing image generation request: mode {mode}, aspect ratio {request.aspect_ratio}, "
                    f"{len(request.input_images)} input images, user {context.user_id}")

        try:
            sources = [from_base64(img.data) for img in request.input_images]
        except ValueError as e:
            raise ApiError.bad_request(str(e))

        width, height = canvas_size(request.aspect_ratio)
        response = await self.provider.generate(CompletionRequest(
            model=self.model_name,
            messages=[{"role": "user", "content": request.prompt}],
            params={"size": (width, height)},
            images=sources,
        ))

        images = []
        if "Image" in request.response_modalities:
            images.append(GeneratedImage(data=to_base64(response.content["image"]), width=width, height=height))
        text = response.content["description"] if "Text" in request.response_modalities else None
        result = ImageGenerationResult(images=images, text=text)

        processing_time = (time.perf_counter() - start_time) * 1000
        logger.info(f"Image generation completed in {processing_time:.1f}ms ({len(images)} images)")

        return ModelOutput[ImageGenerationResult](
            result=result,
            metadata=ModelMetadata(
                processing_time=processing_time,
                model_version=self.model_name,
                api_provider="Google Gemini",
                timestamp=utc_timestamp(),
                aspectRatio=request.aspect_ratio,
                hasInputImages=bool(request.input_images),
                mode=mode,
                imagesGenerated=len(images),
            ),
        )
