"""
Health check endpoints for monitoring and diagnostics.
"""

import time
from fastapi import APIRouter, Depends

from ... import __version__
from ...config import GatewaySettings
from ...core.errors import ApiError
from ...models.factory import StrategyFactory
from ...models.providers import SimulatedProvider
from ...models.registry import SchemaRegistry
from ..dependencies.state import get_factory, get_registry, get_settings
from ..models.common import HealthStatus

router = APIRouter()

# Track server start time for uptime calculation
_server_start_time = time.time()


@router.get("", response_model=HealthStatus, response_model_by_alias=True)
async def health_check(
    settings: GatewaySettings = Depends(get_settings),
    factory: StrategyFactory = Depends(get_factory),
    registry: SchemaRegistry = Depends(get_registry),
):
    """
    Basic health check endpoint.

    Reports uptime and the models currently registered in the factory and
    the schema registry. Useful for load balancers and monitoring systems.
    """
    return HealthStatus(
        status="healthy",
        version=__version__,
        environment=settings.environment,
        uptime=time.time() - _server_start_time,
        registered_models=factory.list_models(),
        registered_schemas=registry.list_models(),
    )


@router.get("/ready")
async def readiness_check(factory: StrategyFactory = Depends(get_factory)):
    """
    Readiness probe for container deployments.

    Ready once at least one model strategy has been registered and the
    provider backend answers its health check; 503 otherwise.
    """
    if len(factory) == 0:
        raise ApiError.service_unavailable("No models registered")
    if not await SimulatedProvider().health_check():
        raise ApiError.service_unavailable("Model provider is not healthy")
    return {"ready": True, "message": "Service ready to handle requests"}
