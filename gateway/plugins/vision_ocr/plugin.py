"""
OCR plugin (Google Vision OCR compatible contract).

The image arrives as a multipart upload on ``imageFile`` (or base64 in a JSON
body). Pillow decodes it for dimensions and format; the text recognition
itself is simulated.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional
import base64
import binascii
import hashlib
import logging
import time

from pydantic import BaseModel, Field

from gateway.core.errors import ApiError, utc_timestamp
from gateway.models.providers import CompletionRequest, SimulatedProvider
from gateway.models.strategy import ModelMetadata, ModelOutput, ModelStrategy as BaseStrategy, ProcessContext
from gateway.models.uploads import find_upload
from gateway.utils.image_converter import describe_image, open_image

logger = logging.getLogger(__name__)

MODEL_ID = "google-vision-ocr"

ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/png", "image/gif", "image/webp", "image/bmp"]
MAX_IMAGE_SIZE = 10 * 1024 * 1024

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "imageFile": {
            "type": "string",
            "description": "Image file for OCR processing",
            "format": "binary",
        },
        "language": {
            "type": "string",
            "description": 'Language hint for OCR (e.g., "en", "es", "fr")',
            "pattern": "^[a-z]{2}(-[A-Z]{2})?$",
            "default": "en",
        },
        "maxResults": {
            "type": "integer",
            "description": "Maximum number of text annotations to return",
            "minimum": 1,
            "maximum": 100,
            "default": 10,
        },
        "confidenceThreshold": {
            "type": "number",
            "description": "Minimum confidence score for text detection",
            "minimum": 0.0,
            "maximum": 1.0,
            "default": 0.8,
        },
        "includeBoundingBoxes": {
            "type": "boolean",
            "description": "Whether to include bounding box coordinates",
            "default": True,
        },
        "outputFormat": {
            "type": "string",
            "enum": ["text", "json", "structured"],
            "description": "Format of the OCR output",
            "default": "structured",
        },
    },
    "required": ["imageFile"],
    "additionalProperties": False,
    "x-multipart-media": {
        "fieldName": "imageFile",
        "allowedTypes": ALLOWED_IMAGE_TYPES,
        "maxSize": MAX_IMAGE_SIZE,
    },
}

# canned documents the simulated engine "recognizes"
SAMPLE_DOCUMENTS = [
    [
        ("This is a sample text", 0.95),
        ("extracted from an image", 0.92),
        ("using Google Vision OCR", 0.88),
    ],
    [
        ("Invoice #12345", 0.98),
        ("Date: 2024-01-15", 0.94),
        ("Amount: $1,234.56", 0.96),
        ("Status: Paid", 0.91),
    ],
    [
        ("Remember to buy groceries", 0.85),
        ("Milk", 0.90),
        ("Bread", 0.88),
        ("Eggs", 0.79),
    ],
]


@dataclass(frozen=True)
class OcrRequest:
    image: bytes
    mimetype: str
    language: str
    extra: Dict[str, Any] | None = None


class OcrOptions(BaseModel):
    language: str = "en"
    max_results: int = Field(10, alias="maxResults")
    confidence_threshold: float = Field(0.8, alias="confidenceThreshold")
    include_bounding_boxes: bool = Field(True, alias="includeBoundingBoxes")
    output_format: Literal["text", "json", "structured"] = Field("structured", alias="outputFormat")


class BoundingBox(BaseModel):
    x: int
    y: int
    width: int
    height: int


class TextAnnotation(BaseModel):
    text: str
    confidence: float
    bounding_box: Optional[BoundingBox] = Field(None, serialization_alias="boundingBox")
    language: Optional[str] = None


class ImageInfo(BaseModel):
    width: int
    height: int
    format: str
    size: int


class OcrResult(BaseModel):
    text: str
    annotations: List[TextAnnotation]
    language: str
    confidence: float
    image_info: ImageInfo = Field(..., serialization_alias="imageInfo")


def _simulate_recognition(req: CompletionRequest) -> List[Dict[str, Any]]:
    image = req.images[0]
    width, height = req.params["width"], req.params["height"]
    digest = hashlib.sha256(image).digest()
    lines = SAMPLE_DOCUMENTS[digest[0] % len(SAMPLE_DOCUMENTS)]

    line_height = max(1, height // (len(lines) + 1))
    detections = []
    for i, (text, confidence) in enumerate(lines):
        detections.append({
            "text": text,
            "confidence": confidence,
            "box": {
                "x": width // 20,
                "y": i * line_height + line_height // 2,
                "width": min(width - width // 20, len(text) * max(1, width // 40)),
                "height": max(1, int(line_height * 0.6)),
            },
        })
    return detections


class ModelStrategy(BaseStrategy[Dict[str, Any], OcrResult]):
    model_name = "vision-ocr-v1"

    def __init__(self, provider: Optional[SimulatedProvider] = None):
        self.provider = provider or SimulatedProvider(provider_name="Google", responder=_simulate_recognition)

    def _resolve_image(self, params: Dict[str, Any]) -> OcrRequest:
        upload = find_upload(params, "imageFile") or find_upload(params)
        if upload is not None:
            if upload.mimetype not in ALLOWED_IMAGE_TYPES:
                raise ApiError.bad_request(f"Unsupported image format: {upload.mimetype}")
            if upload.size > MAX_IMAGE_SIZE:
                raise ApiError.bad_request("Image file size exceeds 10MB limit")
            return OcrRequest(image=upload.buffer, mimetype=upload.mimetype, language=params.get("language", "en"))

        encoded = params.get("imageFile")
        if not isinstance(encoded, str) or not encoded:
            raise ApiError.bad_request("Image file is required for OCR processing")
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise ApiError.bad_request("imageFile must be an uploaded file or base64 encoded image data")
        return OcrRequest(image=raw, mimetype="application/octet-stream", language=params.get("language", "en"))

    async def process(self, params: Dict[str, Any], context: ProcessContext) -> ModelOutput[OcrResult]:
        start_time = time.perf_counter()

        if not context.api_key:
            raise ApiError.unauthorized("API key is required for Google Vision OCR")

        options = OcrOptions.model_validate(params)
        ocr_request = self._resolve_image(params)
        try:
            image = open_image(ocr_request.image)
        except ValueError as e:
            raise ApiError.bad_request(str(e))
        image_info = describe_image(image, len(ocr_request.image))

        logger.info(f"Processing OCR request: {image_info['width']}x{image_info['height']} {image_info['format']}, "
                    f"language {options.language}, user {context.user_id}")

        response = await self.provider.generate(CompletionRequest(
            model=self.model_name,
            messages=[{"role": "user", "content": f"Detect text (language hint: {options.language})"}],
            params={"width": image_info["width"], "height": image_info["height"]},
            images=[ocr_request.image],
        ))

        detections = [d for d in response.content if d["confidence"] >= options.confidence_threshold]
        detections = detections[:options.max_results]

        annotations = [
            TextAnnotation(
                text=d["text"],
                confidence=d["confidence"],
                bounding_box=BoundingBox(**d["box"]) if options.include_bounding_boxes else None,
                language=options.language,
            )
            for d in detections
        ]
        confidence = round(sum(a.confidence for a in annotations) / len(annotations), 4) if annotations else 0.0

        result = OcrResult(
            text="\n".join(a.text for a in annotations),
            annotations=[] if options.output_format == "text" else annotations,
            language=options.language,
            confidence=confidence,
            image_info=ImageInfo(**image_info),
        )

        processing_time = (time.perf_counter() - start_time) * 1000
        logger.info(f"OCR completed in {processing_time:.1f}ms with {len(annotations)} annotations")

        return ModelOutput[OcrResult](
            result=result,
            metadata=ModelMetadata(
                processing_time=processing_time,
                model_version=self.model_name,
                api_provider="Google",
                timestamp=utc_timestamp(),
                outputFormat=options.output_format,
                imageProcessed=True,
            ),
        )
