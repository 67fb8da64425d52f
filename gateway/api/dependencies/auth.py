"""
API-key authentication.

Callers send their key in the ``X-API-Key`` header. Keys come from the config
file and from ``API_KEY_<NAME>=key:perm1,perm2`` environment variables; when
neither defines one, a single default key with read/write access is accepted.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from ...config import ApiKey, AuthSettings
from ...core.errors import ForbiddenError, UnauthorizedError
from .state import get_settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


@dataclass(frozen=True)
class AuthContext:
    api_key_id: Optional[str] = None
    permissions: Tuple[str, ...] = ()
    authenticated: bool = False

    def has(self, *permissions: str) -> bool:
        return all(p in self.permissions for p in permissions)


ANONYMOUS = AuthContext()


def valid_keys(auth: AuthSettings) -> Tuple[ApiKey, ...]:
    if auth.keys:
        return auth.keys
    logger.warning("No API keys configured. Using default key. This is not recommended for production.")
    return (ApiKey(id="default", key=auth.default_key, permissions=("read", "write")),)


def authenticate(api_key: Optional[str], auth: AuthSettings) -> Optional[AuthContext]:
    """Resolve a raw key to its context, or None when the key is unknown."""
    if not api_key:
        return None
    for entry in valid_keys(auth):
        if entry.key == api_key:
            return AuthContext(api_key_id=entry.id, permissions=entry.permissions, authenticated=True)
    return None


async def require_api_key(request: Request, api_key: Optional[str] = Depends(api_key_header)) -> AuthContext:
    if not api_key:
        logger.warning(f"API key authentication failed: missing key - {request.method} {request.url.path}")
        raise UnauthorizedError("API key is required. Please provide X-API-Key header.")

    context = authenticate(api_key, get_settings(request).auth)
    if context is None:
        client = request.client.host if request.client else "unknown"
        logger.warning(f"API key authentication failed: {client} - {request.method} {request.url.path}")
        raise UnauthorizedError("Invalid API key provided.")

    logger.info(f"API key authenticated: {context.api_key_id} - {request.method} {request.url.path}")
    return context


async def optional_api_key(request: Request, api_key: Optional[str] = Depends(api_key_header)) -> AuthContext:
    """Like ``require_api_key`` but a missing or unknown key yields an anonymous context."""
    return authenticate(api_key, get_settings(request).auth) or ANONYMOUS


async def listing_auth(request: Request, api_key: Optional[str] = Depends(api_key_header)) -> AuthContext:
    """Auth for the read-only model routes, optional unless ``auth.protect_listing`` is set."""
    if get_settings(request).auth.protect_listing:
        return await require_api_key(request, api_key)
    return await optional_api_key(request, api_key)


def require_permissions(*required: str):
    """Dependency factory: the authenticated key must hold every permission in ``required``."""

    async def check(auth: AuthContext = Depends(require_api_key)) -> AuthContext:
        if not auth.authenticated:
            raise UnauthorizedError("User permissions not found.")
        if not auth.has(*required):
            raise ForbiddenError(f"Insufficient permissions. Required: {', '.join(required)}")
        return auth

    return check


async def invoke_auth(request: Request, auth: AuthContext = Depends(require_api_key)) -> AuthContext:
    """Auth for model invocation; ``write`` is only demanded when permissions are enforced."""
    if get_settings(request).auth.enforce_permissions:
        return await require_permissions("write")(auth)
    return auth
