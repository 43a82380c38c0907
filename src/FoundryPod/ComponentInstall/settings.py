# === NAVMAP v1 ===
# {
#   "module": "FoundryPod.ComponentInstall.settings",
#   "purpose": "Environment-driven settings for the component installer",
#   "sections": [
#     {"id": "retry", "name": "RetrySettings", "anchor": "class-retrysettings", "kind": "class"},
#     {"id": "http", "name": "HttpSettings", "anchor": "class-httpsettings", "kind": "class"},
#     {"id": "install", "name": "InstallSettings", "anchor": "class-installsettings", "kind": "class"},
#     {"id": "load", "name": "load_settings", "anchor": "function-load-settings", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Environment-driven settings for the component installer.

The container entrypoint hands its parameters to the installer through
environment variables (``FOUNDRY_VERSION``, ``FOUNDRY_DATA_DIR``,
``CONTAINER_CONFIG_PATH`` and the ``PATCH_*`` switches).  They are collected
here into a single :class:`InstallSettings` instance so the rest of the package
never reads ``os.environ`` directly.  Tuning knobs that have no legacy variable
name live under the ``COMPONENT_INSTALL_`` prefix, with ``__`` separating
nested sections (``COMPONENT_INSTALL_RETRY__MAX_ATTEMPTS=5``).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import platformdirs
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = [
    "DEFAULT_MAJOR_VERSION",
    "DEFAULT_DATA_DIR",
    "DEFAULT_CONFIG_PATH",
    "RetrySettings",
    "HttpSettings",
    "InstallSettings",
    "load_settings",
]

DEFAULT_MAJOR_VERSION = "13"
DEFAULT_DATA_DIR = Path("/data/Data")
DEFAULT_CONFIG_PATH = Path("/config/container-config.json")


class RetrySettings(BaseModel):
    """Bounded retry settings for manifest and artifact fetches."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=4, ge=1, le=20, description="Total fetch attempts per URL")
    backoff_base: float = Field(
        default=0.5,
        ge=0.0,
        le=30.0,
        description="Initial backoff in seconds, doubled on every retry",
    )
    backoff_max: float = Field(
        default=8.0,
        ge=0.0,
        le=300.0,
        description="Backoff cap in seconds",
    )


class HttpSettings(BaseModel):
    """HTTP client settings."""

    model_config = ConfigDict(frozen=True)

    timeout_connect: float = Field(default=10.0, gt=0.0, le=120.0)
    timeout_read: float = Field(default=60.0, gt=0.0, le=600.0)
    user_agent: str = Field(default="FoundryPod-ComponentInstall/1.0")
    follow_redirects: bool = True


class InstallSettings(BaseSettings):
    """Settings for one installer run.

    Fields carrying an ``alias`` are read from the legacy container variable of
    that name; pass field names directly when constructing settings in code.
    """

    model_config = SettingsConfigDict(
        env_prefix="COMPONENT_INSTALL_",
        env_nested_delimiter="__",
        env_ignore_empty=True,
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    foundry_version: Optional[str] = Field(default=None, alias="FOUNDRY_VERSION")
    fallback_major_version: str = Field(default=DEFAULT_MAJOR_VERSION)
    data_dir: Path = Field(default=DEFAULT_DATA_DIR, alias="FOUNDRY_DATA_DIR")
    config_path: Path = Field(default=DEFAULT_CONFIG_PATH, alias="CONTAINER_CONFIG_PATH")
    cache_dir: Optional[Path] = Field(default=None, alias="CONTAINER_CACHE")
    disable_purge: bool = Field(default=False, alias="PATCH_DISABLE_PURGE")
    dry_run: bool = Field(default=False, alias="PATCH_DRY_RUN")
    debug: bool = Field(default=False, alias="PATCH_DEBUG")
    fetch_stagger_seconds: float = Field(default=0.0, ge=0.0, alias="FETCH_STAGGER_SECONDS")

    cache_max_age_seconds: Optional[float] = Field(
        default=None,
        ge=0.0,
        description="Revalidate cached URLs older than this; None keeps them indefinitely",
    )
    manifest_download_field: str = Field(default="download")
    max_workers: int = Field(default=1, ge=1, le=64)
    json_logs: bool = False
    log_level: str = "INFO"

    retry: RetrySettings = Field(default_factory=RetrySettings)
    http: HttpSettings = Field(default_factory=HttpSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        upper = str(value).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"log_level must be one of {sorted(valid_levels)}, got '{value}'")
        return upper

    def resolved_cache_dir(self) -> Path:
        """Return the cache directory, defaulting to the platform user cache."""

        if self.cache_dir is not None:
            return self.cache_dir.expanduser()
        return Path(platformdirs.user_cache_dir("foundrypod")) / "components"

    def level_int(self) -> int:
        if self.debug:
            return logging.DEBUG
        return getattr(logging, self.log_level, logging.INFO)


def load_settings(**overrides: object) -> InstallSettings:
    """Build settings from the environment, applying explicit ``overrides`` last.

    ``None`` overrides are ignored so CLI options that were not given leave the
    environment value in place.
    """

    settings = InstallSettings()
    updates = {key: value for key, value in overrides.items() if value is not None}
    if not updates:
        return settings
    return InstallSettings.model_validate({**settings.model_dump(), **updates})
