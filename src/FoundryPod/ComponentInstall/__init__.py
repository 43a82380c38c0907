# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall",
#   "purpose": "Package initialization for FoundryPod.ComponentInstall",
#   "sections": [
#     {"id": "getattr", "name": "__getattr__", "anchor": "function-getattr", "kind": "function"},
#     {"id": "dir", "name": "__dir__", "anchor": "function-dir", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Public API for the FoundryPod component installer.

The installer brings ``<data_dir>/{systems,modules,worlds}`` in line with the
components declared for the running Foundry major version: it resolves each
declaration to a manifest or local source, fetches artifacts through a
content cache, extracts tar archives, publishes directories atomically, and
purges what is no longer declared.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict

__version__ = "1.0.0"

_EXPORTS: Dict[str, str] = {
    "ArchiveFormat": ".io.archive",
    "extract_archive": ".io.archive",
    "ContentCache": ".cache",
    "ComponentResolver": ".resolver",
    "InstallEngine": ".installer",
    "install_components": ".installer",
    "InstallPlan": ".planning",
    "build_install_plan": ".planning",
    "InstallSettings": ".settings",
    "load_settings": ".settings",
    "ContainerConfig": ".models",
    "ComponentDeclaration": ".models",
    "ComponentOverride": ".models",
    "InstallSummary": ".models",
    "LocalSource": ".models",
    "RemoteSource": ".models",
    "FetchResult": ".models",
    "load_container_config": ".config",
    "resolve_major_version": ".config",
    "ComponentInstallError": ".errors",
    "ConfigurationError": ".errors",
    "FetchError": ".errors",
    "ExtractionError": ".errors",
    "FilesystemError": ".errors",
}

__all__ = [*_EXPORTS, "__version__"]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .cache import ContentCache
    from .config import load_container_config, resolve_major_version
    from .errors import (
        ComponentInstallError,
        ConfigurationError,
        ExtractionError,
        FetchError,
        FilesystemError,
    )
    from .installer import InstallEngine, install_components
    from .io.archive import ArchiveFormat, extract_archive
    from .models import (
        ComponentDeclaration,
        ComponentOverride,
        ContainerConfig,
        FetchResult,
        InstallSummary,
        LocalSource,
        RemoteSource,
    )
    from .planning import InstallPlan, build_install_plan
    from .resolver import ComponentResolver
    from .settings import InstallSettings, load_settings


def __getattr__(name: str) -> Any:
    """Lazily import exports so ``import FoundryPod.ComponentInstall`` stays cheap."""

    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(module_name, __name__), name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
