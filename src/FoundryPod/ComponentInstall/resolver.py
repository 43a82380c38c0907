# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.resolver",
#   "purpose": "Resolve component declarations to local or remote sources",
#   "sections": [
#     {"id": "is-archive", "name": "is_archive_path", "anchor": "function-is-archive-path", "kind": "function"},
#     {"id": "resolver", "name": "ComponentResolver", "anchor": "class-componentresolver", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Source resolution for component declarations.

A declaration names its source either through ``manifest`` (a URL to a small
JSON document whose ``download`` field points at the artifact) or through
``path`` (a local directory or archive).  The resolver applies the version
override, picks the source with manifest precedence, and, for remote sources,
follows the manifest to its download URL through the shared content cache.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional

from .cache import ContentCache
from .errors import ConfigurationError, FetchError
from .models import (
    ComponentDeclaration,
    ComponentOverride,
    LocalSource,
    RemoteSource,
    ResolvedSource,
    merge_declaration,
)

__all__ = ["ARCHIVE_SUFFIX_PATTERN", "is_archive_path", "ComponentResolver"]

logger = logging.getLogger("FoundryPod.ComponentInstall")

ARCHIVE_SUFFIX_PATTERN = re.compile(
    r"\.(zip|tar\.gz|tgz|tar|tar\.bz2|tbz2|tar\.xz|txz)$", re.IGNORECASE
)


def is_archive_path(path: str) -> bool:
    """Return ``True`` when ``path`` carries a recognised archive suffix."""

    return bool(ARCHIVE_SUFFIX_PATTERN.search(path or ""))


class ComponentResolver:
    """Resolve declarations into :data:`ResolvedSource` values.

    Args:
        cache: Content cache used to fetch manifests; only required for
            :meth:`resolve_download_url`.
        download_field: Manifest field naming the artifact URL.
    """

    def __init__(
        self,
        cache: Optional[ContentCache] = None,
        *,
        download_field: str = "download",
    ) -> None:
        self._cache = cache
        self._download_field = download_field

    def resolve_source(
        self,
        base: Optional[ComponentDeclaration],
        override: Optional[ComponentOverride] = None,
        *,
        component_id: Optional[str] = None,
    ) -> ResolvedSource:
        """Merge ``override`` over ``base`` and classify the effective source.

        Raises:
            ConfigurationError: If neither ``manifest`` nor ``path`` is set.
        """

        return self.resolve(merge_declaration(base, override, component_id=component_id))

    def resolve(self, declaration: ComponentDeclaration) -> ResolvedSource:
        component_id = declaration.id or "<unnamed>"
        if declaration.manifest and declaration.path:
            logger.warning(
                "component %s: both manifest and path provided; manifest takes precedence",
                component_id,
                extra={"stage": "resolve", "component_id": component_id},
            )
            return RemoteSource(manifest_url=declaration.manifest)
        if declaration.manifest:
            return RemoteSource(manifest_url=declaration.manifest)
        if declaration.path:
            return LocalSource(path=Path(declaration.path), is_archive=is_archive_path(declaration.path))
        raise ConfigurationError(
            f"component {component_id}: neither manifest nor path provided",
            component_id=declaration.id or None,
        )

    def resolve_download_url(self, manifest_url: str) -> str:
        """Fetch ``manifest_url`` through the cache and return its download URL.

        Raises:
            FetchError: If the manifest cannot be fetched, is not a JSON object,
                or lacks a non-empty download field.
        """

        if self._cache is None:
            raise FetchError("No content cache configured for manifest fetches", url=manifest_url)
        result = self._cache.fetch_to_file_with_cache(manifest_url)
        if not result.success or result.path is None:
            raise FetchError(result.error or f"Failed to fetch {manifest_url}", url=manifest_url)
        try:
            document = json.loads(Path(result.path).read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise FetchError(f"Manifest {manifest_url} is not valid JSON: {exc}", url=manifest_url) from exc
        download_url = document.get(self._download_field) if isinstance(document, dict) else None
        if not isinstance(download_url, str) or not download_url.strip():
            raise FetchError(
                f"Manifest {manifest_url} has no usable '{self._download_field}' field",
                url=manifest_url,
            )
        logger.debug(
            "manifest resolved",
            extra={"stage": "resolve", "manifest_url": manifest_url, "download_url": download_url},
        )
        return download_url.strip()
