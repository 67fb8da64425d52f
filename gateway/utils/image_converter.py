from __future__ import annotations
from typing import Any, Dict, Union
import base64
import io
from PIL import Image, UnidentifiedImageError


def to_base64(image_data: Union[bytes, Image.Image], format: str = "PNG") -> str:
    if isinstance(image_data, bytes):
        return base64.b64encode(image_data).decode('utf-8')

    elif isinstance(image_data, Image.Image):
        if image_data.mode == 'P':
            image_data = image_data.convert('RGBA')

        buffer = io.BytesIO()
        image_data.save(buffer, format=format)
        return base64.b64encode(buffer.getvalue()).decode('utf-8')

    else:
        raise ValueError(f"Unsupported image data type: {type(image_data)}")


def from_base64(data: str) -> Image.Image:
    try:
        raw = base64.b64decode(data, validate=True)
    except ValueError as e:
        raise ValueError(f"Invalid base64 image data: {e}") from e
    return open_image(raw)


def open_image(content: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Cannot decode image: {e}") from e
    return img


def describe_image(img: Image.Image, size: int) -> Dict[str, Any]:
    width, height = img.size
    return {"width": width, "height": height, "format": (img.format or "unknown").lower(), "size": size}
