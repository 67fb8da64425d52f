"""
Model catalogue and invocation endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..controllers import ModelController
from ..dependencies.auth import AuthContext, invoke_auth, listing_auth
from ..dependencies.state import get_validator
from ..dependencies.uploads import InvocationPayload, invocation_payload
from ..errors import error_response
from ..models.common import ErrorResponse, InvocationResponse
from ..models.models import ModelInfoResponse, ModelListResponse
from ..validation import RequestValidator, validate_query

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid body, upload or validation failure"},
    401: {"model": ErrorResponse, "description": "Missing or invalid API key"},
    403: {"model": ErrorResponse, "description": "Insufficient permissions"},
    404: {"model": ErrorResponse, "description": "Model not registered"},
}


LISTING_QUERY_SCHEMA = {
    "type": "object",
    "properties": {
        "fileUpload": {"type": "string", "enum": ["true", "false"]},
    },
    "additionalProperties": False,
}


def get_controller(request: Request) -> ModelController:
    return request.app.state.controller


@router.get("/models", response_model=ModelListResponse, response_model_by_alias=True)
async def list_models(
    request: Request,
    auth: AuthContext = Depends(listing_auth),
    controller: ModelController = Depends(get_controller),
):
    """
    List every registered model.

    ``?fileUpload=true|false`` keeps only the models that do (or do not)
    accept multipart uploads.
    """
    validate_query(request.query_params, LISTING_QUERY_SCHEMA)
    flag = request.query_params.get("fileUpload")
    return ModelListResponse(data=controller.list_models(file_upload=None if flag is None else flag == "true"))


@router.get("/models/{model_id}", response_model=ModelInfoResponse, response_model_by_alias=True,
            responses=ERROR_RESPONSES)
async def get_model(
    model_id: str,
    auth: AuthContext = Depends(listing_auth),
    controller: ModelController = Depends(get_controller),
):
    return ModelInfoResponse(data=controller.describe(model_id))


@router.get("/models/{model_id}/schema", responses=ERROR_RESPONSES)
async def get_model_schema(
    model_id: str,
    auth: AuthContext = Depends(listing_auth),
    controller: ModelController = Depends(get_controller),
) -> Dict[str, Any]:
    """
    Return the JSON Schema a model's invocation body must satisfy.

    Clients use it to build input forms.
    """
    return controller.schema(model_id)


@router.post("/models/{model_id}/invoke", responses=ERROR_RESPONSES)
async def invoke_model(
    request: Request,
    model_id: str,
    auth: AuthContext = Depends(invoke_auth),
    payload: InvocationPayload = Depends(invocation_payload),
    validator: RequestValidator = Depends(get_validator),
    controller: ModelController = Depends(get_controller),
):
    """
    Invoke a model.

    The body is JSON, or a multipart form for models that take file uploads.
    It is validated against the model's schema; every violation is reported
    in one 400 response.
    """
    errors = validator.validate(model_id, payload.body)
    if errors:
        return error_response(request, 400, "ValidationError", "Request body validation failed", details=errors)

    envelope: InvocationResponse = await controller.invoke(model_id, payload, auth)
    return JSONResponse(status_code=200, content=envelope.model_dump(mode="json", by_alias=True, exclude={"error"}))
