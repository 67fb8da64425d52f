from __future__ import annotations
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
import os
import logging

import yaml

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "gateway.yaml"

DEFAULT_ALLOWED_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "text/plain",
    "application/pdf",
    "application/json",
)


@dataclass(frozen=True)
class ServerSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    allowed_origins: Tuple[str, ...] = ("http://localhost:4200",)


@dataclass(frozen=True)
class ApiKey:
    id: str
    key: str
    permissions: Tuple[str, ...] = ("read",)


@dataclass(frozen=True)
class AuthSettings:
    keys: Tuple[ApiKey, ...] = ()
    default_key: str = "default-key-change-in-production"
    enforce_permissions: bool = False
    protect_listing: bool = True


@dataclass(frozen=True)
class UploadSettings:
    max_file_size: int = 10 * 1024 * 1024
    max_files: int = 5
    allowed_types: Tuple[str, ...] = DEFAULT_ALLOWED_TYPES


@dataclass(frozen=True)
class PluginSettings:
    directory: Optional[Path] = None  # None -> gateway/plugins
    allow: Tuple[str, ...] = ()
    deny: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProviderSettings:
    latency_s: float = 0.0
    retry_attempts: int = 3


@dataclass(frozen=True)
class GatewaySettings:
    environment: str = "development"
    server: ServerSettings = field(default_factory=ServerSettings)
    auth: AuthSettings = field(default_factory=AuthSettings)
    uploads: UploadSettings = field(default_factory=UploadSettings)
    plugins: PluginSettings = field(default_factory=PluginSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    invocation_timeout_s: Optional[float] = None
    expose_internal_messages: bool = True

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _csv(raw: Optional[str]) -> Tuple[str, ...]:
    return tuple(x.strip() for x in (raw or "").split(",") if x.strip())


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return value


def parse_api_key_value(key_id: str, raw: str) -> Optional[ApiKey]:
    """Parse an ``API_KEY_*`` style value of the form ``key:perm1,perm2``."""
    key, _, perms = raw.partition(":")
    key = key.strip()
    if not key:
        return None
    permissions = _csv(perms) or ("read",)
    return ApiKey(id=key_id, key=key, permissions=permissions)


def _parse_keys(entries: Any) -> List[ApiKey]:
    if entries is None:
        return []
    if not isinstance(entries, list):
        raise ValueError("Config 'auth.keys' must be a list")
    keys = []
    for i, entry in enumerate(entries):
        if not isinstance(entry, dict) or "key" not in entry:
            raise ValueError(f"Config 'auth.keys[{i}]' missing 'key'")
        perms = entry.get("permissions") or ["read"]
        keys.append(ApiKey(id=str(entry.get("id", f"key_{i}")), key=str(entry["key"]), permissions=tuple(perms)))
    return keys


def _from_mapping(config: Dict[str, Any]) -> GatewaySettings:
    server_cfg = _section(config, "server")
    auth_cfg = _section(config, "auth")
    uploads_cfg = _section(config, "uploads")
    plugins_cfg = _section(config, "plugins")
    provider_cfg = _section(config, "provider")
    invocation_cfg = _section(config, "invocation")
    errors_cfg = _section(config, "errors")

    defaults_server = ServerSettings()
    server = ServerSettings(
        host=str(server_cfg.get("host", defaults_server.host)),
        port=int(server_cfg.get("port", defaults_server.port)),
        allowed_origins=tuple(server_cfg.get("allowed_origins") or defaults_server.allowed_origins),
    )

    defaults_auth = AuthSettings()
    auth = AuthSettings(
        keys=tuple(_parse_keys(auth_cfg.get("keys"))),
        default_key=str(auth_cfg.get("default_key", defaults_auth.default_key)),
        enforce_permissions=bool(auth_cfg.get("enforce_permissions", defaults_auth.enforce_permissions)),
        protect_listing=bool(auth_cfg.get("protect_listing", defaults_auth.protect_listing)),
    )

    defaults_uploads = UploadSettings()
    uploads = UploadSettings(
        max_file_size=int(uploads_cfg.get("max_file_size", defaults_uploads.max_file_size)),
        max_files=int(uploads_cfg.get("max_files", defaults_uploads.max_files)),
        allowed_types=tuple(uploads_cfg.get("allowed_types") or defaults_uploads.allowed_types),
    )
    if uploads.max_file_size <= 0 or uploads.max_files <= 0:
        raise ValueError("Config 'uploads' limits must be positive")

    directory = plugins_cfg.get("directory")
    plugins = PluginSettings(
        directory=Path(directory) if directory else None,
        allow=tuple(plugins_cfg.get("allow") or ()),
        deny=tuple(plugins_cfg.get("deny") or ()),
    )

    defaults_provider = ProviderSettings()
    provider = ProviderSettings(
        latency_s=float(provider_cfg.get("latency_s", defaults_provider.latency_s)),
        retry_attempts=int(provider_cfg.get("retry_attempts", defaults_provider.retry_attempts)),
    )

    timeout = invocation_cfg.get("timeout_seconds")
    return GatewaySettings(
        environment=str(config.get("environment", "development")),
        server=server,
        auth=auth,
        uploads=uploads,
        plugins=plugins,
        provider=provider,
        invocation_timeout_s=float(timeout) if timeout is not None else None,
        expose_internal_messages=bool(errors_cfg.get("expose_internal_messages", True)),
    )


def _apply_env(settings: GatewaySettings, environ: Dict[str, str]) -> GatewaySettings:
    server = settings.server
    if "HOST" in environ:
        server = replace(server, host=environ["HOST"])
    if "PORT" in environ:
        server = replace(server, port=int(environ["PORT"]))
    if environ.get("ALLOWED_ORIGINS"):
        server = replace(server, allowed_origins=_csv(environ["ALLOWED_ORIGINS"]))

    # API_KEY_<NAME>=key:perm1,perm2
    env_keys = []
    for name in sorted(environ):
        if not name.startswith("API_KEY_"):
            continue
        parsed = parse_api_key_value(name, environ[name])
        if parsed:
            env_keys.append(parsed)
    auth = replace(
        settings.auth,
        keys=settings.auth.keys + tuple(env_keys),
        default_key=environ.get("DEFAULT_API_KEY", settings.auth.default_key),
    )

    plugins = settings.plugins
    if environ.get("PLUGINS_ALLOW"):
        plugins = replace(plugins, allow=_csv(environ["PLUGINS_ALLOW"]))
    if environ.get("PLUGINS_DENY"):
        plugins = replace(plugins, deny=_csv(environ["PLUGINS_DENY"]))

    return replace(
        settings,
        environment=environ.get("GATEWAY_ENV", settings.environment),
        server=server,
        auth=auth,
        plugins=plugins,
    )


def load_settings(config_path: Union[Path, str, None] = None, environ: Optional[Dict[str, str]] = None) -> GatewaySettings:
    environ = dict(os.environ if environ is None else environ)
    path = Path(config_path or environ.get("GATEWAY_CONFIG") or DEFAULT_CONFIG_PATH)

    if path.exists():
        with open(path) as f:
            config = yaml.safe_load(f) or {}
        if not isinstance(config, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
        settings = _from_mapping(config)
        logger.info(f"Loaded gateway config from {path}")
    else:
        logger.warning(f"Config not found at {path}, using defaults")
        settings = GatewaySettings()

    return _apply_env(settings, environ)
