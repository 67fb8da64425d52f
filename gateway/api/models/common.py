"""
Envelope models shared by every endpoint.

Field names are snake_case in Python and camelCase on the wire.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional

from ...core.errors import utc_timestamp


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


class ErrorBody(CamelModel):
    """Standard error payload."""
    name: str = Field(..., description="Error class name")
    message: str = Field(..., description="Human-readable error message")
    status_code: int = Field(..., description="HTTP status code")
    timestamp: str = Field(default_factory=utc_timestamp)
    path: Optional[str] = None
    method: Optional[str] = None
    details: Optional[List[Dict[str, Any]]] = Field(None, description="Per-field violations")
    stack: Optional[str] = Field(None, description="Stack trace, outside production only")


class ErrorResponse(CamelModel):
    success: bool = False
    error: ErrorBody


class ValidationErrorDetail(CamelModel):
    field: str = Field(..., description="Dotted path of the offending field, 'root' for the body itself")
    message: str
    value: Optional[Any] = None
    allowed_values: Optional[List[Any]] = None


class InvocationMetadata(CamelModel):
    model_id: str
    processing_time: float = Field(..., description="Processing time in milliseconds")
    timestamp: str = Field(default_factory=utc_timestamp)


class InvocationResponse(CamelModel):
    """Outer envelope of POST /models/{model_id}/invoke."""
    success: bool
    data: Optional[Any] = None
    metadata: Optional[InvocationMetadata] = None
    error: Optional[ErrorBody] = None

    @model_validator(mode="after")
    def check_envelope(self):
        if self.success and (self.data is None or self.error is not None):
            raise ValueError("successful envelope needs data and no error")
        if not self.success and (self.data is not None or self.error is None):
            raise ValueError("failed envelope needs an error and no data")
        return self


class HealthStatus(CamelModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="API version")
    environment: str
    uptime: float = Field(..., description="Uptime in seconds")
    timestamp: str = Field(default_factory=utc_timestamp)
    registered_models: List[str]
    registered_schemas: List[str]
