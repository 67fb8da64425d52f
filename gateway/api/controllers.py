"""
Invocation controller: resolves a model ID to a fresh strategy, runs it and
wraps the outcome in the response envelope.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..config import GatewaySettings
from ..core.errors import BadRequestError, InvocationTimeoutError, ModelNotFoundError
from ..models.factory import StrategyFactory
from ..models.registry import SchemaRegistry
from ..models.strategy import ProcessContext
from ..models.uploads import UploadedFile
from .dependencies.auth import AuthContext
from .dependencies.uploads import InvocationPayload
from .models.common import InvocationMetadata, InvocationResponse
from .models.models import ModelInfo, ModelListData, ModelSummary

logger = logging.getLogger(__name__)


def attach_files(body: Dict[str, Any], files: Dict[str, List[UploadedFile]]) -> Dict[str, Any]:
    """
    Merge uploaded files into the strategy input.

    A single file goes under ``file``. Several files from one field go under
    ``files`` as a list; files from several fields as a mapping of field name
    to list.
    """
    params = dict(body)
    uploads = [f for group in files.values() for f in group]
    if len(uploads) == 1:
        params["file"] = uploads[0]
    elif len(files) == 1:
        params["files"] = uploads
    elif uploads:
        params["files"] = {name: list(group) for name, group in files.items()}
    return params


def dump_output(output: Any) -> Any:
    if isinstance(output, BaseModel):
        return output.model_dump(mode="json", by_alias=True)
    return output


class ModelController:
    def __init__(self, factory: StrategyFactory, registry: SchemaRegistry, settings: Optional[GatewaySettings] = None):
        self.factory = factory
        self.registry = registry
        self.settings = settings or GatewaySettings()

    def _require_registered(self, model_id: str) -> None:
        if not model_id:
            raise BadRequestError("Model ID is required in request parameters")
        if not self.factory.is_registered(model_id):
            raise ModelNotFoundError(f"Model '{model_id}' is not available", model_id=model_id)

    async def _run(self, strategy, params: Dict[str, Any], context: ProcessContext) -> Any:
        result = strategy.process(params, context)
        if not inspect.isawaitable(result):
            return result

        timeout = self.settings.invocation_timeout_s
        if timeout is None:
            return await result
        try:
            return await asyncio.wait_for(result, timeout=timeout)
        except asyncio.TimeoutError:
            raise InvocationTimeoutError(f"Model invocation exceeded {timeout}s")

    async def invoke(self, model_id: str, payload: InvocationPayload, auth: AuthContext) -> InvocationResponse:
        start_time = time.perf_counter()
        try:
            self._require_registered(model_id)
            strategy = self.factory.create(model_id)

            params = attach_files(payload.body, payload.files)
            context = ProcessContext(api_key=auth.api_key_id, user_id=auth.api_key_id)

            logger.info(f"Invoking model '{model_id}': body keys [{', '.join(payload.body)}], "
                        f"{payload.file_count} files, caller {auth.api_key_id}")

            output = await self._run(strategy, params, context)
            processing_time = (time.perf_counter() - start_time) * 1000

            logger.info(f"Model '{model_id}' completed successfully in {processing_time:.1f}ms")
            return InvocationResponse(
                success=True,
                data=dump_output(output),
                metadata=InvocationMetadata(model_id=model_id, processing_time=processing_time),
            )
        except Exception as e:
            processing_time = (time.perf_counter() - start_time) * 1000
            logger.error(f"Model '{model_id}' invocation failed after {processing_time:.1f}ms: {e}")
            raise

    def describe(self, model_id: str) -> ModelInfo:
        self._require_registered(model_id)
        has_schema = self.registry.has_schema(model_id)
        return ModelInfo(
            model_id=model_id,
            available=True,
            registered_at=self.factory.registered_at(model_id).isoformat(),
            requires_file_upload=self._accepts_uploads(model_id),
            has_schema=has_schema,
        )

    def _accepts_uploads(self, model_id: str) -> bool:
        if not self.registry.has_schema(model_id):
            return False
        return self.registry.get_upload_policy(model_id).requires_file_upload

    def list_models(self, file_upload: Optional[bool] = None) -> ModelListData:
        models = [
            ModelSummary(model_id=model_id, available=True,
                         registered_at=self.factory.registered_at(model_id).isoformat())
            for model_id in self.factory.list_models()
            if file_upload is None or self._accepts_uploads(model_id) == file_upload
        ]
        return ModelListData(models=models, total=len(models))

    def schema(self, model_id: str) -> Dict[str, Any]:
        self._require_registered(model_id)
        return self.registry.get_schema(model_id)
