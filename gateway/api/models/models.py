"""
API models for the model catalogue endpoints.
"""

from pydantic import Field
from typing import List

from .common import CamelModel


class ModelSummary(CamelModel):
    model_id: str
    available: bool = True
    registered_at: str


class ModelInfo(ModelSummary):
    requires_file_upload: bool = False
    has_schema: bool = False


class ModelListData(CamelModel):
    models: List[ModelSummary]
    total: int


class ModelListResponse(CamelModel):
    success: bool = True
    data: ModelListData


class ModelInfoResponse(CamelModel):
    success: bool = True
    data: ModelInfo = Field(..., description="Descriptor of one registered model")
