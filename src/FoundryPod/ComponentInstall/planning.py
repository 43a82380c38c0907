"""Install planning: resolve every declared component without side effects.

Planning is the first half of an installer run.  It merges each version
override over its base declaration, resolves the source, and lists the
directories a purge would remove, all without network access or filesystem
mutation.  ``PATCH_DRY_RUN`` stops after this step; a real run applies the
plan in :mod:`FoundryPod.ComponentInstall.installer`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .config import get_install_set
from .errors import ConfigurationError
from .io.filesystem import list_component_dirs
from .models import (
    CATEGORY_ORDER,
    Category,
    ComponentDeclaration,
    ContainerConfig,
    ResolvedSource,
    merge_declaration,
)
from .resolver import ComponentResolver

__all__ = ["PlannedActionKind", "PlannedAction", "InstallPlan", "build_install_plan"]

logger = logging.getLogger("FoundryPod.ComponentInstall")


class PlannedActionKind(str, Enum):
    INSTALL = "install"
    SKIP = "skip"
    INVALID = "invalid"
    PURGE = "purge"


@dataclass(slots=True)
class PlannedAction:
    category: Category
    component_id: str
    kind: PlannedActionKind
    declaration: Optional[ComponentDeclaration] = None
    source: Optional[ResolvedSource] = None
    error: Optional[str] = None

    def describe(self) -> str:
        if self.source is not None:
            return self.source.describe()
        return self.error or ""


@dataclass
class InstallPlan:
    """Resolved actions for one run, grouped by category in install order."""

    major_version: str
    data_dir: Path
    purge_enabled: bool
    declared: Dict[Category, List[str]] = field(default_factory=dict)
    actions: List[PlannedAction] = field(default_factory=list)

    def for_category(self, category: Category) -> List[PlannedAction]:
        return [action for action in self.actions if action.category is category]

    def category_dir(self, category: Category) -> Path:
        return self.data_dir / category.value

    def destination(self, category: Category, component_id: str) -> Path:
        return self.category_dir(category) / component_id


def build_install_plan(
    config: ContainerConfig,
    major_version: str,
    data_dir: Path,
    resolver: ComponentResolver,
    *,
    purge_enabled: bool = True,
) -> InstallPlan:
    """Resolve every component declared for ``major_version``.

    Declarations without a usable source become ``INVALID`` actions rather
    than aborting the plan, so unrelated components still proceed.

    Raises:
        ConfigurationError: If the version has no install set.
    """

    install_set = get_install_set(config, major_version)
    plan = InstallPlan(major_version=major_version, data_dir=Path(data_dir), purge_enabled=purge_enabled)

    for category in CATEGORY_ORDER:
        overrides = install_set.for_category(category)
        bases = config.declarations(category)
        plan.declared[category] = list(overrides)
        for component_id, override in overrides.items():
            declaration = merge_declaration(bases.get(component_id), override, component_id=component_id)
            if not declaration.install_at_startup:
                plan.actions.append(
                    PlannedAction(category, component_id, PlannedActionKind.SKIP, declaration=declaration)
                )
                continue
            try:
                source = resolver.resolve(declaration)
            except ConfigurationError as exc:
                logger.error(
                    "component %s/%s: %s",
                    category.value,
                    component_id,
                    exc,
                    extra={"stage": "plan", "category": category.value, "component_id": component_id},
                )
                plan.actions.append(
                    PlannedAction(
                        category,
                        component_id,
                        PlannedActionKind.INVALID,
                        declaration=declaration,
                        error=str(exc),
                    )
                )
                continue
            plan.actions.append(
                PlannedAction(
                    category,
                    component_id,
                    PlannedActionKind.INSTALL,
                    declaration=declaration,
                    source=source,
                )
            )

        if purge_enabled:
            declared = set(overrides)
            for name in list_component_dirs(plan.category_dir(category)):
                if name not in declared:
                    plan.actions.append(PlannedAction(category, name, PlannedActionKind.PURGE))

    return plan
