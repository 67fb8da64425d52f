"""
Plugin discovery and registration.

Two ways in: ``register_all`` takes a static registration table, and
``load_plugins`` builds that table from a plugins directory where every
subdirectory holds one plugin module exporting ``MODEL_ID``, ``CONFIG_SCHEMA``
and ``ModelStrategy``.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union
import asyncio
import importlib.util
import inspect
import logging
import sys

from ..core.errors import PluginLoadError
from .factory import StrategyFactory
from .registry import SchemaRegistry

logger = logging.getLogger(__name__)

PLUGINS_DIR = Path(__file__).resolve().parents[1] / "plugins"
ENTRY_MODULES = ("plugin.py", "__init__.py")
REQUIRED_EXPORTS = ("MODEL_ID", "CONFIG_SCHEMA", "ModelStrategy")


@dataclass(frozen=True)
class PluginEntry:
    model_id: str
    config_schema: Dict[str, Any]
    strategy_class: type
    source: str = "static"


@dataclass
class LoadReport:
    loaded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


def register_entry(factory: StrategyFactory, registry: SchemaRegistry, entry: PluginEntry) -> None:
    factory.register(entry.model_id, entry.strategy_class)
    try:
        registry.register(entry.model_id, entry.config_schema)
    except Exception:
        # keep the factory and the registry paired
        factory.unregister(entry.model_id)
        raise


def register_all(factory: StrategyFactory, registry: SchemaRegistry, entries: Iterable[PluginEntry]) -> LoadReport:
    report = LoadReport()
    for entry in entries:
        try:
            register_entry(factory, registry, entry)
        except Exception as e:
            logger.error(f"Failed to register plugin '{entry.source}' ({entry.model_id}): {e}")
            report.failed[entry.source] = str(e)
            continue
        report.loaded.append(entry.model_id)
        logger.info(f"Registered model '{entry.model_id}' from {entry.source}")
    return report


def validate_plugin_module(module: ModuleType, plugin_name: str) -> PluginEntry:
    missing = [name for name in REQUIRED_EXPORTS if not hasattr(module, name)]
    if missing:
        raise PluginLoadError(
            f"Plugin '{plugin_name}' is missing required exports: {', '.join(missing)}. "
            f"Required exports: MODEL_ID (str), CONFIG_SCHEMA (dict), ModelStrategy (class)"
        )

    model_id = getattr(module, "MODEL_ID")
    schema = getattr(module, "CONFIG_SCHEMA")
    strategy_class = getattr(module, "ModelStrategy")

    invalid = []
    if not isinstance(model_id, str) or not model_id:
        invalid.append(f"MODEL_ID must be a non-empty str, got {type(model_id).__name__}")
    if not isinstance(schema, dict):
        invalid.append(f"CONFIG_SCHEMA must be a dict, got {type(schema).__name__}")
    if not inspect.isclass(strategy_class):
        invalid.append(f"ModelStrategy must be a class, got {type(strategy_class).__name__}")
    elif inspect.isabstract(strategy_class):
        invalid.append("ModelStrategy must be constructible, got an abstract class")
    if invalid:
        raise PluginLoadError(f"Plugin '{plugin_name}' has invalid exports: {'; '.join(invalid)}")

    return PluginEntry(model_id=model_id, config_schema=schema, strategy_class=strategy_class, source=plugin_name)


def _load_module(folder: Path) -> ModuleType:
    for filename in ENTRY_MODULES:
        mod_path = folder / filename
        if mod_path.exists():
            break
    else:
        raise PluginLoadError(f"No plugin.py or __init__.py found in plugin directory: {folder.name}")

    spec = importlib.util.spec_from_file_location(f"gateway_plugins.{folder.name}", str(mod_path))
    if not spec or not spec.loader:
        raise PluginLoadError(f"Cannot import plugin module: {mod_path}")
    module = importlib.util.module_from_spec(spec)
    # pydantic and dataclasses resolve annotations through sys.modules
    sys.modules[spec.name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        sys.modules.pop(spec.name, None)
        raise
    return module


async def _import_plugin(folder: Path) -> PluginEntry:
    module = await asyncio.to_thread(_load_module, folder)
    return validate_plugin_module(module, folder.name)


def discover_candidates(plugins_dir: Path) -> List[Path]:
    return sorted(
        p for p in plugins_dir.iterdir()
        if p.is_dir() and not p.name.startswith(("_", "."))
    )


async def load_plugins(
    factory: StrategyFactory,
    registry: SchemaRegistry,
    plugins_dir: Union[Path, str, None] = None,
    allow: Optional[Sequence[str]] = None,
    deny: Optional[Sequence[str]] = None,
) -> LoadReport:
    root = Path(plugins_dir) if plugins_dir else PLUGINS_DIR
    report = LoadReport()

    if not root.is_dir():
        logger.warning(f"Plugins directory not found: {root}. Skipping plugin loading.")
        return report

    candidates = []
    for folder in discover_candidates(root):
        name = folder.name
        if deny and name in deny:
            report.skipped[name] = "denied"
        elif allow and name not in allow:
            report.skipped[name] = "not_allowed"
        else:
            candidates.append(folder)

    if not candidates:
        logger.info(f"No plugin directories to load in {root}")
        return report

    logger.info(f"Found {len(candidates)} plugin directories: {', '.join(f.name for f in candidates)}")

    results = await asyncio.gather(*(_import_plugin(f) for f in candidates), return_exceptions=True)

    for folder, result in zip(candidates, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            logger.error(f"Failed to load plugin '{folder.name}': {result}")
            report.failed[folder.name] = str(result)
            continue
        try:
            register_entry(factory, registry, result)
        except Exception as e:
            logger.error(f"Failed to load plugin '{folder.name}': {e}")
            report.failed[folder.name] = str(e)
            continue
        report.loaded.append(result.model_id)
        logger.info(f"Loaded plugin '{folder.name}' as model '{result.model_id}'")

    logger.info(
        f"Plugin loading completed. Registered {len(factory.list_models())} strategies "
        f"and {registry.size()} schemas ({len(report.failed)} failed, {len(report.skipped)} skipped)."
    )
    return report
