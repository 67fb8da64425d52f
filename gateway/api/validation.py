"""
Schema-driven request validation.

Each model's registered JSON Schema is compiled once and reused. Validation
collects every violation so a caller can fix a request in one round trip.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator, SchemaError
from jsonschema.validators import validator_for

from ..core.errors import ApiError, BadRequestError, ModelNotFoundError, RequestValidationError
from ..models.registry import SchemaRegistration, SchemaRegistry

logger = logging.getLogger(__name__)

ErrorDetail = Dict[str, Any]


def _dotted(path) -> str:
    return ".".join(str(p) for p in path)


def format_error_message(keyword: str, field: str, limit: Any, fallback: str) -> str:
    field = field or "root"
    if keyword == "type":
        expected = ", ".join(limit) if isinstance(limit, list) else limit
        return f"Field '{field}' must be of type {expected}"
    if keyword == "format":
        return f"Field '{field}' must be a valid {limit}"
    if keyword == "minimum":
        return f"Field '{field}' must be at least {limit}"
    if keyword == "maximum":
        return f"Field '{field}' must be at most {limit}"
    if keyword == "minLength":
        return f"Field '{field}' must be at least {limit} characters long"
    if keyword == "maxLength":
        return f"Field '{field}' must be at most {limit} characters long"
    if keyword == "pattern":
        return f"Field '{field}' does not match the required pattern"
    if keyword == "enum":
        return f"Field '{field}' must be one of: {', '.join(str(v) for v in limit)}"
    if keyword == "additionalProperties":
        return f"Field '{field}' contains additional properties not allowed in schema"
    if keyword == "uniqueItems":
        return f"Field '{field}' must contain unique items"
    return fallback or f"Validation failed for field '{field}'"


def compile_schema(schema: Mapping[str, Any]):
    cls = validator_for(schema, default=Draft7Validator)
    cls.check_schema(schema)
    return cls(schema, format_checker=cls.FORMAT_CHECKER)


def collect_errors(validator, instance: Any) -> List[ErrorDetail]:
    """
    Run ``validator`` over ``instance`` and translate every violation.

    ``required`` yields one violation per missing property; those are named
    after the property itself (``items.0.name``), everything else after the
    offending value's path, with ``root`` for the document itself.
    """
    details: List[ErrorDetail] = []
    missing_seen: Dict[Tuple, int] = defaultdict(int)

    for error in validator.iter_errors(instance):
        path = tuple(error.absolute_path)
        if error.validator == "required":
            present = error.instance if isinstance(error.instance, Mapping) else {}
            missing = [p for p in error.validator_value if p not in present]
            index = missing_seen[path]
            missing_seen[path] += 1
            name = missing[index] if index < len(missing) else "unknown"
            details.append({
                "field": _dotted(path + (name,)),
                "message": f"Field '{name}' is required",
            })
            continue

        field = _dotted(path) or "root"
        detail: ErrorDetail = {
            "field": field,
            "message": format_error_message(error.validator, _dotted(path), error.validator_value, error.message),
            "value": error.instance,
        }
        if error.validator == "enum":
            detail["allowedValues"] = list(error.validator_value)
        details.append(detail)

    return details


class RequestValidator:
    """Validates invocation bodies against the schema registered for a model."""

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry
        self._cache: Dict[str, Tuple[SchemaRegistration, Any]] = {}

    def _compiled(self, model_id: str):
        try:
            registration = self.registry.get(model_id)
        except ModelNotFoundError:
            raise ModelNotFoundError(f"No validation schema found for model: {model_id}", model_id=model_id)

        cached = self._cache.get(model_id)
        # a re-registered model gets a new registration object
        if cached and cached[0] is registration:
            return cached[1]

        try:
            validator = compile_schema(registration.schema)
        except SchemaError as e:
            logger.error(f"Schema for model {model_id} is not a valid JSON Schema: {e.message}")
            raise ApiError(500, f"Schema for model '{model_id}' is invalid", is_operational=False)
        self._cache[model_id] = (registration, validator)
        return validator

    def validate(self, model_id: str, body: Any) -> List[ErrorDetail]:
        """Return every violation of ``body``; an empty list means valid."""
        if not model_id:
            raise BadRequestError("Model ID is required in request parameters")

        errors = collect_errors(self._compiled(model_id), body)
        if errors:
            logger.warning(f"Validation failed for model {model_id}: {len(errors)} errors")
        else:
            logger.info(f"Validation passed for model {model_id}")
        return errors

    def forget(self, model_id: Optional[str] = None) -> None:
        if model_id is None:
            self._cache.clear()
        else:
            self._cache.pop(model_id, None)


def validate_query(params: Mapping[str, Any], schema: Mapping[str, Any]) -> None:
    """Validate query parameters; raises ``RequestValidationError`` (422)."""
    errors = collect_errors(compile_schema(schema), dict(params))
    if errors:
        for e in errors:
            if e["field"] == "root":
                e["field"] = "query"
                e["message"] = e["message"].replace("Field 'root'", "Query string")
        raise RequestValidationError("Query parameters validation failed", details=errors)
