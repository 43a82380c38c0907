# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.models",
#   "purpose": "Typed declarations, install sets, resolved sources, cache entries and run summaries",
#   "sections": [
#     {"id": "categories", "name": "Categories", "anchor": "CAT", "kind": "api"},
#     {"id": "declarations", "name": "Declarations & Merge", "anchor": "DEC", "kind": "api"},
#     {"id": "config", "name": "Container Config", "anchor": "CFG", "kind": "api"},
#     {"id": "sources", "name": "Resolved Sources", "anchor": "SRC", "kind": "api"},
#     {"id": "cache", "name": "Cache Records", "anchor": "CAC", "kind": "api"},
#     {"id": "summary", "name": "Run Summary", "anchor": "SUM", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Data model for component declarations and installer results.

Declarations are pydantic records with strict value types: a configuration
that passed upstream schema validation still fails loudly here if a flag is
not a boolean or a source is not a string.  Per-version overrides are merged
over base declarations with :func:`merge_declaration`, which only considers
override fields that were explicitly present in the configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

__all__ = [
    "Category",
    "CATEGORY_ORDER",
    "ComponentDeclaration",
    "ComponentOverride",
    "merge_declaration",
    "VersionInstallSet",
    "VersionConfig",
    "ContainerConfig",
    "LocalSource",
    "RemoteSource",
    "ResolvedSource",
    "CacheEntry",
    "FetchResult",
    "OutcomeStatus",
    "ComponentOutcome",
    "InstallSummary",
]


# --- Categories -------------------------------------------------------------


class Category(str, Enum):
    """Component categories, each mapped to a directory under the data root."""

    SYSTEMS = "systems"
    MODULES = "modules"
    WORLDS = "worlds"


CATEGORY_ORDER = (Category.SYSTEMS, Category.MODULES, Category.WORLDS)


# --- Declarations -----------------------------------------------------------


def _blank_to_none(value: object) -> object:
    if isinstance(value, str) and not value.strip():
        return None
    if isinstance(value, str):
        return value.strip()
    return value


class ComponentOverride(BaseModel):
    """Partial declaration supplied per version; unset fields do not participate in merges."""

    model_config = ConfigDict(extra="ignore")

    name: Optional[StrictStr] = None
    manifest: Optional[StrictStr] = None
    path: Optional[StrictStr] = None
    install_at_startup: Optional[StrictBool] = None
    check_presence: Optional[StrictBool] = None

    @field_validator("manifest", "path", mode="before")
    @classmethod
    def normalize_sources(cls, value: object) -> object:
        return _blank_to_none(value)


class ComponentDeclaration(BaseModel):
    """Effective description of one installable component."""

    model_config = ConfigDict(extra="ignore")

    id: StrictStr = ""
    name: Optional[StrictStr] = None
    manifest: Optional[StrictStr] = None
    path: Optional[StrictStr] = None
    install_at_startup: StrictBool = True
    check_presence: StrictBool = False

    @field_validator("manifest", "path", mode="before")
    @classmethod
    def normalize_sources(cls, value: object) -> object:
        return _blank_to_none(value)


def merge_declaration(
    base: Optional[ComponentDeclaration],
    override: Optional[ComponentOverride],
    *,
    component_id: Optional[str] = None,
) -> ComponentDeclaration:
    """Shallow-merge ``override`` over ``base``; explicitly set override fields win.

    An override without a base declaration merges over an empty declaration
    carrying only ``component_id``.  Neither argument is modified.
    """

    if base is None:
        base = ComponentDeclaration(id=component_id or "")
    elif component_id and base.id != component_id:
        base = base.model_copy(update={"id": component_id})
    if override is None:
        return base
    updates = override.model_dump(exclude_unset=True)
    # install_at_startup/check_presence are not optional on the effective record.
    for flag in ("install_at_startup", "check_presence"):
        if flag in updates and updates[flag] is None:
            del updates[flag]
    return base.model_copy(update=updates)


# --- Container config -------------------------------------------------------


class VersionInstallSet(BaseModel):
    """Per-category override maps for one major version."""

    model_config = ConfigDict(extra="ignore")

    systems: Dict[str, ComponentOverride] = Field(default_factory=dict)
    modules: Dict[str, ComponentOverride] = Field(default_factory=dict)
    worlds: Dict[str, ComponentOverride] = Field(default_factory=dict)

    def for_category(self, category: Category) -> Dict[str, ComponentOverride]:
        return getattr(self, Category(category).value)


class VersionConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    supported: StrictBool = True
    install: Optional[VersionInstallSet] = None


class ContainerConfig(BaseModel):
    """Pre-validated container configuration consumed by the installer."""

    model_config = ConfigDict(extra="ignore")

    systems: Dict[str, ComponentDeclaration] = Field(default_factory=dict)
    modules: Dict[str, ComponentDeclaration] = Field(default_factory=dict)
    worlds: Dict[str, ComponentDeclaration] = Field(default_factory=dict)
    versions: Dict[str, VersionConfig] = Field(default_factory=dict)

    @field_validator("systems", "modules", "worlds", mode="after")
    @classmethod
    def attach_ids(cls, value: Dict[str, ComponentDeclaration]) -> Dict[str, ComponentDeclaration]:
        return {key: decl.model_copy(update={"id": key}) for key, decl in value.items()}

    def declarations(self, category: Category) -> Dict[str, ComponentDeclaration]:
        return getattr(self, Category(category).value)


# --- Resolved sources -------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LocalSource:
    """Component files available on local disk, as a directory or an archive."""

    path: Path
    is_archive: bool

    def describe(self) -> str:
        kind = "archive" if self.is_archive else "directory"
        return f"local {kind} {self.path}"


@dataclass(slots=True, frozen=True)
class RemoteSource:
    """Component published through a manifest that names its download URL."""

    manifest_url: str

    def describe(self) -> str:
        return f"manifest {self.manifest_url}"


ResolvedSource = Union[LocalSource, RemoteSource]


# --- Cache records ----------------------------------------------------------


class CacheEntry(BaseModel):
    """Persisted metadata for one cached URL."""

    url: str
    local_file_path: Path
    content_fingerprint: str
    fetched_at: datetime
    etag: Optional[str] = None
    last_modified: Optional[str] = None


@dataclass(slots=True, frozen=True)
class FetchResult:
    """Outcome of :meth:`ContentCache.fetch_to_file_with_cache`."""

    success: bool
    path: Optional[Path] = None
    from_cache: bool = False
    error: Optional[str] = None

    @classmethod
    def ok(cls, path: Path, *, from_cache: bool) -> "FetchResult":
        return cls(success=True, path=path, from_cache=from_cache)

    @classmethod
    def failed(cls, error: str) -> "FetchResult":
        return cls(success=False, error=error)


# --- Run summary ------------------------------------------------------------


class OutcomeStatus(str, Enum):
    INSTALLED = "installed"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    FAILED = "failed"
    PURGED = "purged"
    PLANNED = "planned"


@dataclass(slots=True)
class ComponentOutcome:
    category: Category
    component_id: str
    status: OutcomeStatus
    source: Optional[str] = None
    detail: Optional[str] = None
    error: Optional[str] = None


@dataclass
class InstallSummary:
    """Typed per-run result, one outcome per component action."""

    major_version: str
    dry_run: bool = False
    outcomes: List[ComponentOutcome] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def _with_status(self, status: OutcomeStatus) -> List[ComponentOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status is status]

    @property
    def installed(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.INSTALLED)

    @property
    def unchanged(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.UNCHANGED)

    @property
    def skipped(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    @property
    def failed(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    @property
    def purged(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.PURGED)

    @property
    def planned(self) -> List[ComponentOutcome]:
        return self._with_status(OutcomeStatus.PLANNED)

    def outcome_for(self, category: Category, component_id: str) -> Optional[ComponentOutcome]:
        for outcome in self.outcomes:
            if outcome.category is category and outcome.component_id == component_id:
                if outcome.status is not OutcomeStatus.PURGED:
                    return outcome
        return None

    @property
    def exit_code(self) -> int:
        """``0`` without failures, ``2`` when every attempted component failed, else ``1``."""

        failed = len(self.failed)
        if not failed:
            return 0
        attempted = failed + len(self.installed) + len(self.unchanged) + len(self.planned)
        return 2 if failed == attempted else 1

    def to_dict(self) -> Dict[str, object]:
        return {
            "major_version": self.major_version,
            "dry_run": self.dry_run,
            "outcomes": [
                {
                    "category": outcome.category.value,
                    "component_id": outcome.component_id,
                    "status": outcome.status.value,
                    "source": outcome.source,
                    "detail": outcome.detail,
                    "error": outcome.error,
                }
                for outcome in self.outcomes
            ],
            "warnings": list(self.warnings),
        }
