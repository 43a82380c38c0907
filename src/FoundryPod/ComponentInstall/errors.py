# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.errors",
#   "purpose": "Define the exception hierarchy used across resolution, fetching, extraction, and installation",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "configuration", "name": "Configuration Errors", "anchor": "CFG", "kind": "api"},
#     {"id": "fetch", "name": "Fetch Errors", "anchor": "FET", "kind": "api"},
#     {"id": "extraction", "name": "Extraction Errors", "anchor": "EXT", "kind": "api"},
#     {"id": "filesystem", "name": "Filesystem Errors", "anchor": "FS", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared across component resolution and installation.

The installer spans configuration loading, HTTP retrieval through the content
cache, archive extraction, and atomic directory placement.  Failures are
grouped so the install engine can tell per-component, recoverable problems
(fetch, extraction, most filesystem errors) apart from configuration-shape
errors that must halt processing before any mutation happens.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "ComponentInstallError",
    "ConfigurationError",
    "FetchError",
    "ExtractionError",
    "FilesystemError",
]


class ComponentInstallError(RuntimeError):
    """Base exception for component resolution, fetch, extraction, or install failures."""


class ConfigurationError(ComponentInstallError):
    """Raised when a declaration or version install set cannot be used.

    Covers declarations with neither ``manifest`` nor ``path``, versions
    without an install set, and configuration files that cannot be parsed.
    """

    def __init__(self, message: str, *, component_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.component_id = component_id


class FetchError(ComponentInstallError):
    """Raised when a manifest or artifact cannot be fetched."""

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ExtractionError(ComponentInstallError):
    """Raised for unsupported archive formats or malformed archive streams."""


class FilesystemError(ComponentInstallError):
    """Raised when staging, copying, or publishing a component directory fails.

    ``fatal`` marks failures at the final rename step, where the destination
    may be left without either its previous or its new contents.
    """

    def __init__(self, message: str, *, path: Optional[str] = None, fatal: bool = False) -> None:
        super().__init__(message)
        self.path = path
        self.fatal = fatal
