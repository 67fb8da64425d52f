from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
import logging

from ..config import UploadSettings
from ..core.errors import DuplicateRegistrationError, InvalidSchemaError, ModelNotFoundError
from .uploads import UploadPolicy, build_upload_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaRegistration:
    model_id: str
    schema: Dict[str, Any]
    upload_policy: UploadPolicy
    registered_at: datetime


class SchemaRegistry:
    """
    In-memory map of model ID -> JSON-Schema input contract.

    Written during plugin loading and read on every request. Only the presence
    and shape of a schema is checked here; whether it is a correct JSON Schema
    is left to the validator.
    """

    def __init__(self, upload_defaults: Optional[UploadSettings] = None):
        self._schemas: Dict[str, SchemaRegistration] = {}
        self.upload_defaults = upload_defaults or UploadSettings()

    def register(self, model_id: str, schema: Mapping[str, Any]) -> SchemaRegistration:
        if model_id in self._schemas:
            raise DuplicateRegistrationError(f"Schema for model ID '{model_id}' is already registered")
        if not isinstance(schema, Mapping):
            raise InvalidSchemaError(
                f"Invalid schema provided for model ID '{model_id}'. Schema must be a valid JSON Schema object."
            )

        try:
            policy = build_upload_policy(schema, self.upload_defaults)
        except InvalidSchemaError as e:
            raise InvalidSchemaError(f"Invalid schema provided for model ID '{model_id}': {e}") from e
        except (TypeError, ValueError) as e:
            raise InvalidSchemaError(f"Cannot derive upload policy for model ID '{model_id}': {e}") from e

        registration = SchemaRegistration(
            model_id=model_id,
            schema=dict(schema),
            upload_policy=policy,
            registered_at=datetime.now(timezone.utc),
        )
        self._schemas[model_id] = registration
        logger.debug(f"Registered schema for {model_id} (file upload: {registration.upload_policy.requires_file_upload})")
        return registration

    def get(self, model_id: str) -> SchemaRegistration:
        registration = self._schemas.get(model_id)
        if registration is None:
            raise ModelNotFoundError(f"Schema for model ID '{model_id}' is not registered", model_id=model_id)
        return registration

    def get_schema(self, model_id: str) -> Dict[str, Any]:
        return self.get(model_id).schema

    def get_upload_policy(self, model_id: str) -> UploadPolicy:
        return self.get(model_id).upload_policy

    def has_schema(self, model_id: str) -> bool:
        return model_id in self._schemas

    def list_models(self) -> List[str]:
        return list(self._schemas)

    def unregister(self, model_id: str) -> bool:
        return self._schemas.pop(model_id, None) is not None

    def clear(self) -> None:
        self._schemas.clear()

    def size(self) -> int:
        return len(self._schemas)

    def __len__(self) -> int:
        return len(self._schemas)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._schemas
