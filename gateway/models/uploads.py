"""
Upload capability of a model, derived from its input schema.

A schema asks for multipart file handling either explicitly, through the
``x-multipart-media`` extension marker, or implicitly, when a property or
required-field name contains a file-related token. The resulting policy is
computed once when the schema is registered.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from ..config import UploadSettings
from ..core.errors import InvalidSchemaError

FILE_TOKENS = ("file", "files", "upload", "image", "document")
MULTIPART_MARKER = "x-multipart-media"
COMPOSITION_KEYWORDS = ("anyOf", "oneOf", "allOf")


@dataclass(frozen=True)
class UploadPolicy:
    requires_file_upload: bool = False
    file_fields: Tuple[str, ...] = ()
    allowed_types: Tuple[str, ...] = ()
    max_file_size: int = 10 * 1024 * 1024
    max_files: int = 5
    explicit: bool = False  # declared via the extension marker

    def allows(self, mimetype: Optional[str]) -> bool:
        return bool(mimetype) and mimetype in self.allowed_types


NO_UPLOADS = UploadPolicy()


class UploadedFile(BaseModel):
    fieldname: str
    originalname: str
    encoding: str = "7bit"
    mimetype: str
    size: int
    buffer: bytes
    path: Optional[str] = None


def _matches(name: Any) -> bool:
    if not isinstance(name, str):
        return False
    lowered = name.lower()
    return any(token in lowered for token in FILE_TOKENS)


def detect_file_fields(schema: Any) -> List[str]:
    """
    Walk ``properties``, ``required``, ``items`` and the composition keywords
    and return every file-looking field name, in discovery order.
    """
    found: List[str] = []

    def add(name: str) -> None:
        if name not in found:
            found.append(name)

    def walk(node: Any) -> None:
        if not isinstance(node, Mapping):
            return

        properties = node.get("properties")
        if isinstance(properties, Mapping):
            for key, sub in properties.items():
                if _matches(key):
                    add(key)
                walk(sub)

        required = node.get("required")
        if isinstance(required, list):
            for key in required:
                if _matches(key):
                    add(key)

        items = node.get("items")
        if isinstance(items, list):
            for item in items:
                walk(item)
        else:
            walk(items)

        for keyword in COMPOSITION_KEYWORDS:
            branches = node.get(keyword)
            if isinstance(branches, list):
                for branch in branches:
                    walk(branch)

    walk(schema)
    return found


def requires_file_upload(schema: Any) -> bool:
    if isinstance(schema, Mapping) and isinstance(schema.get(MULTIPART_MARKER), Mapping):
        return True
    return bool(detect_file_fields(schema))


def build_upload_policy(schema: Mapping[str, Any], defaults: Optional[UploadSettings] = None) -> UploadPolicy:
    defaults = defaults or UploadSettings()
    marker = schema.get(MULTIPART_MARKER)
    fields = detect_file_fields(schema)

    if not isinstance(marker, Mapping):
        if not fields:
            return NO_UPLOADS
        return UploadPolicy(
            requires_file_upload=True,
            file_fields=tuple(fields),
            allowed_types=tuple(defaults.allowed_types),
            max_file_size=defaults.max_file_size,
            max_files=defaults.max_files,
        )

    declared = marker.get("fieldName")
    if isinstance(declared, str) and declared not in fields:
        fields.insert(0, declared)

    allowed = marker.get("allowedTypes") or defaults.allowed_types
    if not isinstance(allowed, (list, tuple)) or not all(isinstance(t, str) for t in allowed):
        raise InvalidSchemaError(f"{MULTIPART_MARKER}.allowedTypes must be a list of MIME type strings, got {allowed!r}")
    max_size = marker.get("maxSize")
    if max_size is not None and (isinstance(max_size, bool) or not isinstance(max_size, int) or max_size <= 0):
        raise InvalidSchemaError(f"{MULTIPART_MARKER}.maxSize must be a positive integer byte count, got {max_size!r}")
    max_size = min(max_size, defaults.max_file_size) if max_size else defaults.max_file_size

    return UploadPolicy(
        requires_file_upload=True,
        file_fields=tuple(fields),
        allowed_types=tuple(allowed),
        max_file_size=max_size,
        max_files=defaults.max_files,
        explicit=True,
    )


FileGroup = Union[List[UploadedFile], Dict[str, List[UploadedFile]]]


def iter_uploads(params: Mapping[str, Any]) -> Iterable[UploadedFile]:
    single = params.get("file")
    if isinstance(single, UploadedFile):
        yield single
    group = params.get("files")
    if isinstance(group, Mapping):
        for files in group.values():
            yield from files
    elif isinstance(group, list):
        yield from group


def find_upload(params: Mapping[str, Any], fieldname: Optional[str] = None) -> Optional[UploadedFile]:
    """First uploaded file in an invocation input, optionally matching a field name."""
    for upload in iter_uploads(params):
        if fieldname is None or upload.fieldname == fieldname:
            return upload
    return None
