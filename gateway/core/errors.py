from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ApiError(Exception):
    """
    Application error carrying an HTTP status code.

    Operational errors are expected failures (bad input, unknown model) whose
    message is safe to show to the caller.
    """

    name = "ApiError"

    def __init__(self, status_code: int = 500, message: str = "Internal Server Error", is_operational: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.is_operational = is_operational
        self.timestamp = utc_timestamp()

    @classmethod
    def bad_request(cls, message: str = "Bad Request") -> "ApiError":
        return cls(400, message)

    @classmethod
    def unauthorized(cls, message: str = "Unauthorized") -> "ApiError":
        return cls(401, message)

    @classmethod
    def conflict(cls, message: str = "Conflict") -> "ApiError":
        return cls(409, message)

    @classmethod
    def service_unavailable(cls, message: str = "Service Unavailable") -> "ApiError":
        return cls(503, message)


class BadRequestError(ApiError):
    name = "BadRequestError"

    def __init__(self, message: str = "Bad Request"):
        super().__init__(400, message)


class UnauthorizedError(ApiError):
    name = "UnauthorizedError"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(401, message)


class ForbiddenError(ApiError):
    name = "ForbiddenError"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(403, message)


class ModelNotFoundError(ApiError, LookupError):
    name = "NotFoundError"

    def __init__(self, message: str = "Not Found", model_id: Optional[str] = None):
        super().__init__(404, message)
        self.model_id = model_id


class RequestValidationError(ApiError):
    """Raised when query parameters fail their schema; carries per-field details."""

    name = "ValidationError"

    def __init__(self, message: str = "Validation Error", details: Optional[List[Dict[str, Any]]] = None):
        super().__init__(422, message)
        self.details = details or []


class UploadRejectedError(ApiError):
    name = "UploadError"

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(400, message)
        self.filename = filename


class InvocationTimeoutError(ApiError):
    name = "InvocationTimeoutError"

    def __init__(self, message: str = "Model invocation timed out"):
        super().__init__(504, message)


# registry errors: raised at startup, isolated per plugin by the loader
class RegistryError(RuntimeError): ...
class DuplicateRegistrationError(RegistryError): ...
class InvalidSchemaError(RegistryError, ValueError): ...
class PluginLoadError(RegistryError): ...
