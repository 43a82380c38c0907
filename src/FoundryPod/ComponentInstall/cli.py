# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.cli",
#   "purpose": "Typer CLI wrapping the component install engine",
#   "sections": [
#     {"id": "app", "name": "Typer App", "anchor": "APP", "kind": "infra"},
#     {"id": "install", "name": "install", "anchor": "function-install", "kind": "function"},
#     {"id": "plan", "name": "plan", "anchor": "function-plan", "kind": "function"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command-line entry point for the component installer.

The container entrypoint calls ``foundrypod-install install`` after the game
server has been unpacked.  Every option is optional and falls back to the
environment variables read by :class:`InstallSettings`, so the bare command
behaves exactly like an environment-only invocation.

Exit codes:
    0: nothing failed.
    1: some, but not all, attempted components failed.
    2: every attempted component failed, or the configuration was unusable.

Example:
    $ foundrypod-install install --config ./container-config.json --data-dir ./Data
    $ foundrypod-install plan --foundry-version 13.307
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError, FilesystemError
from .installer import InstallEngine
from .logging_config import setup_logging
from .models import InstallSummary
from .settings import InstallSettings, load_settings

logger = logging.getLogger("FoundryPod.ComponentInstall")

app = typer.Typer(
    name="foundrypod-install",
    help="Install systems, modules and worlds declared in the container config",
    no_args_is_help=True,
)

_CONFIG_OPTION = typer.Option(
    None, "--config", "-c", help="Container config file (JSON or YAML); overrides CONTAINER_CONFIG_PATH"
)
_DATA_DIR_OPTION = typer.Option(
    None, "--data-dir", "-d", help="Data directory root; overrides FOUNDRY_DATA_DIR"
)
_VERSION_OPTION = typer.Option(
    None, "--foundry-version", help="Full Foundry version; overrides FOUNDRY_VERSION"
)
_CACHE_OPTION = typer.Option(None, "--cache-dir", help="Artifact cache directory; overrides CONTAINER_CACHE")
_JSON_LOGS_OPTION = typer.Option(False, "--json-logs", help="Emit JSON log lines on stdout")
_LOG_FILE_OPTION = typer.Option(None, "--log-file", help="Also write JSON log records to this file")
_SUMMARY_OPTION = typer.Option(False, "--summary-json", help="Print the run summary as JSON")


def _build_settings(**overrides: object) -> InstallSettings:
    try:
        return load_settings(**overrides)
    except PydanticValidationError as exc:
        typer.echo(f"Error: invalid settings: {exc}", err=True)
        raise typer.Exit(2) from exc


def _run(settings: InstallSettings, *, dry_run: bool, log_file: Optional[Path], summary_json: bool) -> None:
    setup_logging(settings.level_int(), json_logs=settings.json_logs, log_file=log_file)
    try:
        with InstallEngine.from_settings(settings) as engine:
            summary = engine.install(dry_run=dry_run)
    except ConfigurationError as exc:
        logger.error("configuration error: %s", exc, extra={"stage": "config"})
        raise typer.Exit(2) from exc
    except FilesystemError as exc:
        logger.error("installation aborted: %s", exc, extra={"stage": "install"})
        raise typer.Exit(2) from exc

    _report(summary, summary_json=summary_json)
    raise typer.Exit(summary.exit_code)


def _report(summary: InstallSummary, *, summary_json: bool) -> None:
    if summary_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
        return
    for outcome in summary.outcomes:
        line = f"{outcome.status.value:<9} {outcome.category.value}/{outcome.component_id}"
        if outcome.error:
            line += f"  ({outcome.error})"
        typer.echo(line)
    for warning in summary.warnings:
        typer.echo(f"warning: {warning}", err=True)


@app.command()
def install(
    config: Optional[Path] = _CONFIG_OPTION,
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
    foundry_version: Optional[str] = _VERSION_OPTION,
    cache_dir: Optional[Path] = _CACHE_OPTION,
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Plan only; same as PATCH_DRY_RUN=1"),
    no_purge: bool = typer.Option(False, "--no-purge", help="Keep undeclared directories; same as PATCH_DISABLE_PURGE=1"),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Concurrent installs per category"),
    json_logs: bool = _JSON_LOGS_OPTION,
    log_file: Optional[Path] = _LOG_FILE_OPTION,
    debug: bool = typer.Option(False, "--debug", help="Debug logging; same as PATCH_DEBUG=1"),
    summary_json: bool = _SUMMARY_OPTION,
) -> None:
    """Converge the data directory to the components declared for the active version."""
    settings = _build_settings(
        config_path=config,
        data_dir=data_dir,
        foundry_version=foundry_version,
        cache_dir=cache_dir,
        disable_purge=True if no_purge else None,
        dry_run=True if dry_run else None,
        debug=True if debug else None,
        json_logs=True if json_logs else None,
        max_workers=workers,
    )
    _run(settings, dry_run=settings.dry_run, log_file=log_file, summary_json=summary_json)


@app.command()
def plan(
    config: Optional[Path] = _CONFIG_OPTION,
    data_dir: Optional[Path] = _DATA_DIR_OPTION,
    foundry_version: Optional[str] = _VERSION_OPTION,
    cache_dir: Optional[Path] = _CACHE_OPTION,
    no_purge: bool = typer.Option(False, "--no-purge", help="Omit purge candidates from the plan"),
    json_logs: bool = _JSON_LOGS_OPTION,
    summary_json: bool = _SUMMARY_OPTION,
) -> None:
    """Show what an install would do without fetching or touching the data directory."""
    settings = _build_settings(
        config_path=config,
        data_dir=data_dir,
        foundry_version=foundry_version,
        cache_dir=cache_dir,
        disable_purge=True if no_purge else None,
        json_logs=True if json_logs else None,
    )
    _run(settings, dry_run=True, log_file=None, summary_json=summary_json)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
