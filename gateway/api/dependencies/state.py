"""
Application state dependencies.

The factory, the registry and the settings are built once by ``create_app``
and kept on ``app.state``; routes receive them through these functions so a
test can hand an app its own instances.
"""

from fastapi import Request

from ...config import GatewaySettings
from ...models.factory import StrategyFactory
from ...models.registry import SchemaRegistry
from ..validation import RequestValidator


def get_settings(request: Request) -> GatewaySettings:
    """FastAPI dependency to get the gateway settings from app state."""
    return request.app.state.settings


def get_factory(request: Request) -> StrategyFactory:
    """FastAPI dependency to get the strategy factory from app state."""
    return request.app.state.factory


def get_registry(request: Request) -> SchemaRegistry:
    """FastAPI dependency to get the schema registry from app state."""
    return request.app.state.registry


def get_validator(request: Request) -> RequestValidator:
    return request.app.state.validator
