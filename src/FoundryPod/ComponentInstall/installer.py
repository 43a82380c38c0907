# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.installer",
#   "purpose": "Install, reconcile and purge declared components under the data directory",
#   "sections": [
#     {"id": "engine", "name": "InstallEngine", "anchor": "class-installengine", "kind": "class"},
#     {"id": "pipeline", "name": "Per-Component Pipeline", "anchor": "PIP", "kind": "helpers"},
#     {"id": "purge", "name": "Purge Pass", "anchor": "PRG", "kind": "helpers"},
#     {"id": "presence", "name": "Presence Diagnostics", "anchor": "PRS", "kind": "helpers"},
#     {"id": "install-components", "name": "install_components", "anchor": "function-install-components", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Install engine: converge ``<data_dir>/{systems,modules,worlds}`` to the declared set.

A run resolves the active major version, plans every declared component,
and then, category by category (systems, modules, worlds):

1. acquires each component's artifact (manifest and download through the
   content cache, or a local directory/archive),
2. skips it when its source fingerprint, its source description and the
   digest of the published tree all match the ledger record for its
   destination,
3. extracts archives into a fresh staging directory,
4. publishes the tree through a copy-then-rename swap,
5. purges category directories that are no longer declared, strictly after
   every install of that category has finished.

World declarations with ``check_presence`` are verified afterwards.  Errors
while processing one component are logged with its category and id and
recorded in the :class:`InstallSummary`; they never stop sibling installs.
Only a missing install set (raised before any mutation) and a failed final
rename abort the run.
"""

from __future__ import annotations

import logging
import shutil
import time
from concurrent import futures
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from .cache import ContentCache
from .config import load_container_config, resolve_major_version
from .errors import ComponentInstallError, ConfigurationError, FetchError, FilesystemError
from .io.archive import extract_archive
from .io.filesystem import (
    copy_dir_atomic,
    create_staging_dir,
    list_component_dirs,
    remove_tree,
    sha256_directory,
)
from .models import (
    CATEGORY_ORDER,
    Category,
    ComponentOutcome,
    ContainerConfig,
    InstallSummary,
    LocalSource,
    OutcomeStatus,
    RemoteSource,
)
from .network.client import create_http_client
from .planning import InstallPlan, PlannedAction, PlannedActionKind, build_install_plan
from .resolver import ComponentResolver
from .settings import InstallSettings

__all__ = ["InstallEngine", "install_components"]

logger = logging.getLogger("FoundryPod.ComponentInstall")


def _context(category: Category, component_id: str, stage: str) -> dict:
    return {"stage": stage, "category": category.value, "component_id": component_id}


def _ledger_key(destination: Path) -> str:
    return str(destination.resolve())


class InstallEngine:
    """Orchestrate resolution, fetch, extraction, atomic placement and purge.

    Args:
        config: Pre-validated container configuration.
        settings: Run settings (version, data directory, purge switch, workers).
        cache: Content cache shared with the resolver; built from ``settings``
            when omitted.
        transport: HTTPX transport override used when the engine builds its
            own client (tests pass ``httpx.MockTransport``).
        sleep: Sleep function for retry backoff and stagger delays.
    """

    def __init__(
        self,
        config: ContainerConfig,
        settings: InstallSettings,
        *,
        cache: Optional[ContentCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.settings = settings
        self.major_version = resolve_major_version(
            settings.foundry_version, settings.fallback_major_version
        )
        self.data_dir = Path(settings.data_dir)

        self._client: Optional[httpx.Client] = None
        if cache is None:
            self._client = create_http_client(settings.http, transport=transport)
            cache = ContentCache(
                settings.resolved_cache_dir(),
                self._client,
                retry=settings.retry,
                max_age_seconds=settings.cache_max_age_seconds,
                stagger_seconds=settings.fetch_stagger_seconds,
                sleep=sleep,
            )
        self.cache = cache
        self.resolver = ComponentResolver(cache, download_field=settings.manifest_download_field)

    @classmethod
    def from_settings(cls, settings: InstallSettings, **kwargs: object) -> "InstallEngine":
        """Load the container config named by ``settings`` and build an engine."""

        return cls(load_container_config(settings.config_path), settings, **kwargs)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "InstallEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- plan / apply ------------------------------------------------------

    def plan(self) -> InstallPlan:
        """Resolve all declared components without network or filesystem mutation.

        Raises:
            ConfigurationError: If the active version has no install set.
        """

        return build_install_plan(
            self.config,
            self.major_version,
            self.data_dir,
            self.resolver,
            purge_enabled=not self.settings.disable_purge,
        )

    def install(self, *, dry_run: Optional[bool] = None) -> InstallSummary:
        """Converge the data directory to the declared component set.

        Args:
            dry_run: Stop after planning; defaults to ``settings.dry_run``.

        Returns:
            Per-component outcomes plus presence warnings.

        Raises:
            ConfigurationError: If the active version has no install set.
            FilesystemError: If publishing a component failed at the final rename.
        """

        dry_run = self.settings.dry_run if dry_run is None else dry_run
        logger.info(
            "installing components for version %s into %s%s",
            self.major_version,
            self.data_dir,
            " (dry-run)" if dry_run else "",
            extra={"stage": "install", "major_version": self.major_version},
        )
        plan = self.plan()
        if dry_run:
            return self._describe_plan(plan)

        summary = InstallSummary(major_version=self.major_version)
        for category in CATEGORY_ORDER:
            actions = [a for a in plan.for_category(category) if a.kind is not PlannedActionKind.PURGE]
            summary.outcomes.extend(self._run_category(plan, actions))
            if plan.purge_enabled:
                summary.outcomes.extend(self._purge(plan, category))
            if category is Category.WORLDS:
                summary.warnings.extend(self._check_presence(plan))

        logger.info(
            "installation complete: %d installed, %d unchanged, %d skipped, %d failed, %d purged",
            len(summary.installed),
            len(summary.unchanged),
            len(summary.skipped),
            len(summary.failed),
            len(summary.purged),
            extra={"stage": "install", "major_version": self.major_version},
        )
        return summary

    def _describe_plan(self, plan: InstallPlan) -> InstallSummary:
        summary = InstallSummary(major_version=self.major_version, dry_run=True)
        for action in plan.actions:
            if action.kind is PlannedActionKind.INVALID:
                status = OutcomeStatus.FAILED
            elif action.kind is PlannedActionKind.SKIP:
                status = OutcomeStatus.SKIPPED
            else:
                status = OutcomeStatus.PLANNED
            logger.info(
                "(dry-run) %s %s/%s %s",
                action.kind.value,
                action.category.value,
                action.component_id,
                action.describe(),
                extra=_context(action.category, action.component_id, "plan"),
            )
            summary.outcomes.append(
                ComponentOutcome(
                    category=action.category,
                    component_id=action.component_id,
                    status=status,
                    source=action.source.describe() if action.source is not None else None,
                    detail=action.kind.value,
                    error=action.error,
                )
            )
        return summary

    # --- per-component pipeline -------------------------------------------

    def _run_category(self, plan: InstallPlan, actions: List[PlannedAction]) -> List[ComponentOutcome]:
        workers = min(self.settings.max_workers, max(len(actions), 1))
        if workers <= 1:
            return [self._process(plan, action) for action in actions]
        with futures.ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="component-install"
        ) as pool:
            pending = [pool.submit(self._process, plan, action) for action in actions]
            return [future.result() for future in pending]

    def _process(self, plan: InstallPlan, action: PlannedAction) -> ComponentOutcome:
        category, component_id = action.category, action.component_id
        if action.kind is PlannedActionKind.SKIP:
            logger.info(
                "skipping %s/%s (install_at_startup=false)",
                category.value,
                component_id,
                extra=_context(category, component_id, "install"),
            )
            return ComponentOutcome(category, component_id, OutcomeStatus.SKIPPED, detail="install_at_startup=false")
        if action.kind is PlannedActionKind.INVALID:
            return ComponentOutcome(category, component_id, OutcomeStatus.FAILED, error=action.error)

        try:
            return self._install_component(plan, action)
        except FilesystemError as exc:
            if exc.fatal:
                logger.error(
                    "component %s/%s left without a published directory: %s",
                    category.value,
                    component_id,
                    exc,
                    extra=_context(category, component_id, "install"),
                )
                raise
            return self._failed(action, exc)
        except (ComponentInstallError, OSError, ValueError) as exc:
            return self._failed(action, exc)

    def _failed(self, action: PlannedAction, exc: Exception) -> ComponentOutcome:
        logger.warning(
            "component %s/%s failed: %s",
            action.category.value,
            action.component_id,
            exc,
            extra=_context(action.category, action.component_id, "install"),
        )
        return ComponentOutcome(
            action.category,
            action.component_id,
            OutcomeStatus.FAILED,
            source=action.describe(),
            error=str(exc),
        )

    def _install_component(self, plan: InstallPlan, action: PlannedAction) -> ComponentOutcome:
        category, component_id = action.category, action.component_id
        source = action.source
        destination = plan.destination(category, component_id)
        ledger_key = _ledger_key(destination)

        if isinstance(source, RemoteSource):
            download_url = self.resolver.resolve_download_url(source.manifest_url)
            result = self.cache.fetch_to_file_with_cache(download_url)
            if not result.success or result.path is None:
                raise FetchError(result.error or f"Failed to fetch {download_url}", url=download_url)
            artifact, is_archive, format_hint = Path(result.path), True, download_url
        elif isinstance(source, LocalSource):
            artifact, is_archive, format_hint = source.path, source.is_archive, str(source.path)
            present = artifact.is_file() if is_archive else artifact.is_dir()
            if not present:
                raise FilesystemError(f"Local source not found: {artifact}", path=str(artifact))
        else:
            raise ConfigurationError(
                f"component {component_id}: unresolved source", component_id=component_id
            )

        source_label = source.describe()
        if is_archive:
            changed, fingerprint = self.cache.has_local_file_changed(artifact, ledger_key)
        else:
            changed, fingerprint = self.cache.has_local_directory_changed(artifact, ledger_key)
        record = self.cache.recorded_fingerprint(ledger_key) or {}
        if (
            not changed
            and record.get("source") == source_label
            and self._destination_matches(destination, record.get("installed"))
        ):
            logger.info(
                "%s/%s unchanged; skipping",
                category.value,
                component_id,
                extra=_context(category, component_id, "install"),
            )
            return ComponentOutcome(category, component_id, OutcomeStatus.UNCHANGED, source=source_label)

        if is_archive:
            staging = create_staging_dir(component_id)
            try:
                extract_archive(artifact, staging, format_hint)
                copy_dir_atomic(staging, destination)
            finally:
                shutil.rmtree(staging, ignore_errors=True)
        else:
            copy_dir_atomic(artifact, destination)

        self.cache.record_fingerprint(
            ledger_key, fingerprint, source=source_label, installed=sha256_directory(destination)
        )
        logger.info(
            "installed %s/%s from %s",
            category.value,
            component_id,
            source_label,
            extra=_context(category, component_id, "install"),
        )
        return ComponentOutcome(category, component_id, OutcomeStatus.INSTALLED, source=source_label)

    @staticmethod
    def _destination_matches(destination: Path, installed: Optional[str]) -> bool:
        if not installed or not destination.is_dir():
            return False
        return sha256_directory(destination) == installed

    # --- purge and presence -----------------------------------------------

    def _purge(self, plan: InstallPlan, category: Category) -> List[ComponentOutcome]:
        declared = set(plan.declared.get(category, ()))
        outcomes: List[ComponentOutcome] = []
        for name in list_component_dirs(plan.category_dir(category)):
            if name in declared:
                continue
            try:
                remove_tree(plan.destination(category, name))
            except OSError as exc:
                logger.warning(
                    "failed to purge %s/%s: %s",
                    category.value,
                    name,
                    exc,
                    extra=_context(category, name, "purge"),
                )
                outcomes.append(ComponentOutcome(category, name, OutcomeStatus.FAILED, error=str(exc)))
                continue
            self.cache.forget_fingerprint(_ledger_key(plan.destination(category, name)))
            logger.info(
                "purged unlisted %s/%s",
                category.value,
                name,
                extra=_context(category, name, "purge"),
            )
            outcomes.append(ComponentOutcome(category, name, OutcomeStatus.PURGED))
        return outcomes

    def _check_presence(self, plan: InstallPlan) -> List[str]:
        warnings: List[str] = []
        for action in plan.for_category(Category.WORLDS):
            declaration = action.declaration
            if declaration is None or not declaration.check_presence:
                continue
            world_path = plan.destination(Category.WORLDS, action.component_id)
            if world_path.is_dir():
                continue
            if declaration.install_at_startup:
                message = f"world presence warning: '{action.component_id}' not found after install at {world_path}"
            else:
                message = (
                    f"world presence warning: '{action.component_id}' not found at {world_path} "
                    "(install_at_startup=false)"
                )
            logger.warning(message, extra=_context(Category.WORLDS, action.component_id, "presence"))
            warnings.append(message)
        return warnings


def install_components(
    settings: InstallSettings,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> InstallSummary:
    """Load the configuration named by ``settings`` and run one install pass."""

    with InstallEngine.from_settings(settings, transport=transport) as engine:
        return engine.install()
