"""
Upload gate: reads the invocation body as JSON or as a multipart form.

Models whose upload policy requires files accept ``multipart/form-data``.
Files are checked against the policy's MIME allow-list, read into memory
in chunks and rejected as soon as they pass the size limit. They are handed
to the controller separately from the validated body, where each file field
is represented by its original filename.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from fastapi import Depends, Request
from starlette.datastructures import UploadFile

from ...config import GatewaySettings
from ...core.errors import BadRequestError, UploadRejectedError
from ...models.registry import SchemaRegistry
from ...models.uploads import NO_UPLOADS, UploadedFile, UploadPolicy
from .state import get_registry, get_settings

logger = logging.getLogger(__name__)

FORM_TYPES = ("multipart/form-data", "application/x-www-form-urlencoded")
TRUE_VALUES = ("true", "1", "yes", "on")
FALSE_VALUES = ("false", "0", "no", "off")
READ_CHUNK_SIZE = 64 * 1024


@dataclass
class InvocationPayload:
    body: Dict[str, Any]
    files: Dict[str, List[UploadedFile]] = field(default_factory=dict)

    @property
    def file_count(self) -> int:
        return sum(len(f) for f in self.files.values())


def _schema_type(prop: Any) -> Optional[str]:
    if not isinstance(prop, Mapping):
        return None
    declared = prop.get("type")
    if isinstance(declared, list):
        declared = next((t for t in declared if t != "null"), None)
    return declared if isinstance(declared, str) else None


def coerce_form_value(raw: str, prop: Any) -> Any:
    """
    Convert a form string to the type its schema property declares.

    Values that do not parse are returned unchanged so that validation
    reports them against the schema.
    """
    kind = _schema_type(prop)
    try:
        if kind == "integer":
            return int(raw)
        if kind == "number":
            try:
                return int(raw)
            except ValueError:
                return float(raw)
        if kind == "boolean":
            lowered = raw.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            return raw
        if kind in ("array", "object"):
            parsed = json.loads(raw)
            expected = list if kind == "array" else dict
            return parsed if isinstance(parsed, expected) else raw
    except ValueError:
        return raw
    return raw


def _properties(schema: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    props = (schema or {}).get("properties")
    return props if isinstance(props, Mapping) else {}


def _add_value(body: Dict[str, Any], key: str, value: Any) -> None:
    if key not in body:
        body[key] = value
    elif isinstance(body[key], list):
        body[key].append(value)
    else:
        body[key] = [body[key], value]


def _too_large(filename: str, policy: UploadPolicy) -> UploadRejectedError:
    return UploadRejectedError(
        f"File '{filename}' exceeds the maximum size of {policy.max_file_size} bytes",
        filename=filename,
    )


async def read_upload(upload: UploadFile, fieldname: str, policy: UploadPolicy) -> UploadedFile:
    filename = upload.filename or fieldname
    mimetype = upload.content_type or "application/octet-stream"
    if not policy.allows(mimetype):
        raise UploadRejectedError(
            f"File '{filename}' has unsupported type {mimetype}. Allowed types: {', '.join(policy.allowed_types)}",
            filename=filename,
        )

    # the parser already knows the spooled size; read in chunks otherwise
    if upload.size is not None and upload.size > policy.max_file_size:
        raise _too_large(filename, policy)
    chunks = bytearray()
    while chunk := await upload.read(READ_CHUNK_SIZE):
        chunks.extend(chunk)
        if len(chunks) > policy.max_file_size:
            raise _too_large(filename, policy)
    buffer = bytes(chunks)

    return UploadedFile(
        fieldname=fieldname,
        originalname=filename,
        mimetype=mimetype,
        size=len(buffer),
        buffer=buffer,
    )


async def parse_form(request: Request, model_id: str, policy: UploadPolicy,
                     schema: Optional[Mapping[str, Any]], settings: GatewaySettings) -> InvocationPayload:
    max_files = policy.max_files if policy.requires_file_upload else settings.uploads.max_files
    props = _properties(schema)
    payload = InvocationPayload(body={})

    async with request.form(max_files=max_files) as form:
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if not policy.requires_file_upload:
                    if schema is None:
                        # unknown model, answered with 404 after the gate
                        continue
                    raise UploadRejectedError(f"Model '{model_id}' does not accept file uploads",
                                              filename=value.filename)
                uploaded = await read_upload(value, key, policy)
                payload.files.setdefault(key, []).append(uploaded)
                _add_value(payload.body, key, uploaded.originalname)
            else:
                prop = props.get(key)
                if _schema_type(prop) != "array":
                    _add_value(payload.body, key, coerce_form_value(value, prop))
                    continue
                # array fields arrive either as one JSON value or as repeated keys
                parsed = coerce_form_value(value, prop)
                if isinstance(parsed, list):
                    payload.body.setdefault(key, []).extend(parsed)
                else:
                    payload.body.setdefault(key, []).append(coerce_form_value(value, prop.get("items")))

    if payload.files:
        logger.info(f"Accepted {payload.file_count} uploaded files for model {model_id}: "
                    f"{', '.join(f.originalname for group in payload.files.values() for f in group)}")
    return payload


async def parse_json(request: Request) -> InvocationPayload:
    raw = await request.body()
    if not raw.strip():
        return InvocationPayload(body={})
    try:
        body = json.loads(raw)
    except ValueError:
        raise BadRequestError("Malformed JSON in request body")
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return InvocationPayload(body=body)


async def invocation_payload(
    request: Request,
    model_id: str,
    registry: SchemaRegistry = Depends(get_registry),
    settings: GatewaySettings = Depends(get_settings),
) -> InvocationPayload:
    """FastAPI dependency producing the parsed body and files of an invocation."""
    schema = None
    policy = NO_UPLOADS
    if registry.has_schema(model_id):
        registration = registry.get(model_id)
        schema, policy = registration.schema, registration.upload_policy

    content_type = request.headers.get("content-type", "").lower()
    if content_type.startswith(FORM_TYPES):
        return await parse_form(request, model_id, policy, schema, settings)
    return await parse_json(request)
