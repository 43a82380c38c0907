"""Container configuration loading and active-version resolution.

The configuration file has already passed schema validation upstream; this
module only parses it (JSON, or YAML for ``.yaml``/``.yml`` files) into the
typed :class:`~FoundryPod.ComponentInstall.models.ContainerConfig`, anchors
relative ``path`` entries at the configuration file's directory, and selects
the install set for the active major version.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import CATEGORY_ORDER, ContainerConfig, VersionInstallSet

__all__ = [
    "resolve_major_version",
    "load_raw_config",
    "parse_container_config",
    "load_container_config",
    "get_install_set",
]

logger = logging.getLogger("FoundryPod.ComponentInstall")

_LEADING_INTEGER = re.compile(r"^\s*(\d+)")
_URL_PATTERN = re.compile(r"^(https?|ftp)://", re.IGNORECASE)


def resolve_major_version(version: Optional[str], fallback: str) -> str:
    """Return the major version encoded in ``version``.

    The major version is the integer prefix before the first separator, so
    ``"13.307"`` yields ``"13"``.  Missing, empty, or non-numeric values (such
    as ``"latest"``) resolve to ``fallback``.

    Examples:
        >>> resolve_major_version("13.307", "12")
        '13'
        >>> resolve_major_version("latest", "13")
        '13'
    """

    if not version:
        return fallback
    match = _LEADING_INTEGER.match(str(version))
    if match is None:
        return fallback
    return str(int(match.group(1)))


def load_raw_config(config_path: Path) -> Mapping[str, object]:
    """Read ``config_path`` as JSON, or YAML when the suffix says so."""

    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"Unable to read container config {config_path}: {exc}") from exc
    try:
        if config_path.suffix.lower() in {".yaml", ".yml"}:
            raw = yaml.safe_load(text)
        else:
            raw = json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Container config {config_path} is not parseable: {exc}") from exc
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Container config {config_path} must contain a mapping")
    return raw


def _anchor_path(value: Optional[str], base_dir: Path) -> Optional[str]:
    if not value or _URL_PATTERN.match(value):
        return value
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return value
    return str((base_dir / candidate).resolve())


def parse_container_config(
    raw: Mapping[str, object], *, base_dir: Optional[Path] = None
) -> ContainerConfig:
    """Validate ``raw`` into a :class:`ContainerConfig`.

    Args:
        raw: Parsed configuration mapping.
        base_dir: Directory used to anchor relative ``path`` entries; relative
            paths are left untouched when omitted.

    Raises:
        ConfigurationError: If a declaration carries a value of the wrong shape.
    """

    try:
        config = ContainerConfig.model_validate(raw)
    except PydanticValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error.get("loc", ()))
            messages.append(f"{location}: {error.get('msg')}")
        raise ConfigurationError("Invalid container config: " + "; ".join(messages)) from exc

    if base_dir is None:
        return config

    for category in CATEGORY_ORDER:
        declarations = config.declarations(category)
        for component_id, declaration in list(declarations.items()):
            anchored = _anchor_path(declaration.path, base_dir)
            if anchored != declaration.path:
                declarations[component_id] = declaration.model_copy(update={"path": anchored})
        for version in config.versions.values():
            if version.install is None:
                continue
            overrides = version.install.for_category(category)
            for component_id, override in overrides.items():
                anchored = _anchor_path(override.path, base_dir)
                if anchored != override.path:
                    # keep ``path`` marked as explicitly set for merges
                    override.path = anchored
    return config


def load_container_config(config_path: Path) -> ContainerConfig:
    """Load and parse the container configuration at ``config_path``."""

    config_path = Path(config_path).expanduser()
    raw = load_raw_config(config_path)
    config = parse_container_config(raw, base_dir=config_path.parent.resolve())
    logger.debug(
        "container config loaded",
        extra={"stage": "config", "config_path": str(config_path)},
    )
    return config


def get_install_set(config: ContainerConfig, major_version: str) -> VersionInstallSet:
    """Return the install set declared for ``major_version``.

    Raises:
        ConfigurationError: If the version is absent, unsupported, or declares
            no install set.
    """

    version = config.versions.get(major_version)
    if version is None:
        raise ConfigurationError(f"No configuration declared for version {major_version}")
    if not version.supported:
        raise ConfigurationError(f"Version {major_version} is marked as unsupported")
    if version.install is None:
        raise ConfigurationError(f"Version {major_version} has no install set")
    return version.install
