"""
Error boundary for the gateway.

Every failure that escapes a route is turned into the same JSON envelope:

    {"success": false, "error": {"name", "message", "statusCode", "timestamp",
                                 "path", "method", "stack"?, "details"?}}

The stack trace is only attached outside production.
"""

import logging
import traceback
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError as MalformedRequestError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..config import GatewaySettings
from ..core.errors import ApiError, RequestValidationError
from .models.common import ErrorBody, ErrorResponse

logger = logging.getLogger(__name__)

HTTP_ERROR_NAMES = {
    400: "BadRequestError",
    401: "UnauthorizedError",
    403: "ForbiddenError",
    404: "NotFoundError",
    405: "MethodNotAllowedError",
    409: "ConflictError",
    413: "PayloadTooLargeError",
    415: "UnsupportedMediaTypeError",
    422: "ValidationError",
    503: "ServiceUnavailableError",
}


def _settings(request: Request) -> GatewaySettings:
    return getattr(request.app.state, "settings", None) or GatewaySettings()


def _stack(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def error_response(
    request: Request,
    status_code: int,
    name: str,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
    exc: Optional[BaseException] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build the standard failure envelope for ``request``."""
    body = ErrorBody(
        name=name,
        message=message,
        status_code=status_code,
        path=request.url.path,
        method=request.method,
        details=details,
        stack=_stack(exc) if exc is not None and not _settings(request).is_production else None,
    )
    envelope = ErrorResponse(error=body)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(by_alias=True, exclude_none=True)),
        headers=headers,
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.name} on {request.method} {request.url.path}: {exc.message}", exc_info=exc)
    else:
        logger.warning(f"{exc.name} on {request.method} {request.url.path}: {exc.message}")

    message = exc.message
    if not exc.is_operational and not _settings(request).expose_internal_messages:
        message = "Internal Server Error"
    details = exc.details if isinstance(exc, RequestValidationError) else None
    # plain ApiError instances are named after their status
    name = HTTP_ERROR_NAMES.get(exc.status_code, exc.name) if type(exc) is ApiError else exc.name
    return error_response(request, exc.status_code, name, message, details=details, exc=exc)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    name = HTTP_ERROR_NAMES.get(exc.status_code, "HTTPError")
    logger.warning(f"{name} on {request.method} {request.url.path}: {exc.detail}")
    return error_response(
        request, exc.status_code, name, str(exc.detail), headers=getattr(exc, "headers", None)
    )


async def malformed_request_handler(request: Request, exc: MalformedRequestError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(p) for p in err.get("loc", ())[1:]) or "root",
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    logger.warning(f"Malformed request on {request.method} {request.url.path}: {len(details)} errors")
    return error_response(request, 422, "ValidationError", "Request validation failed", details=details)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    settings = _settings(request)
    message = str(exc) or "Internal Server Error"
    if not settings.expose_internal_messages:
        message = "Internal Server Error"
    return error_response(request, 500, "InternalServerError", message, exc=exc)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(MalformedRequestError, malformed_request_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
