"""Tests for installer settings and structured logging setup."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from FoundryPod.ComponentInstall.logging_config import JSONFormatter, mask_sensitive_data, setup_logging
from FoundryPod.ComponentInstall.settings import HttpSettings, InstallSettings, RetrySettings, load_settings


def test_settings_read_container_environment(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FOUNDRY_VERSION", "13.331")
    monkeypatch.setenv("FOUNDRY_DATA_DIR", str(tmp_path / "Data"))
    monkeypatch.setenv("CONTAINER_CONFIG_PATH", str(tmp_path / "config.json"))
    monkeypatch.setenv("PATCH_DISABLE_PURGE", "1")
    monkeypatch.setenv("PATCH_DRY_RUN", "true")
    monkeypatch.setenv("FETCH_STAGGER_SECONDS", "2.5")
    monkeypatch.setenv("COMPONENT_INSTALL_RETRY__MAX_ATTEMPTS", "7")

    settings = InstallSettings()

    assert settings.foundry_version == "13.331"
    assert settings.data_dir == tmp_path / "Data"
    assert settings.config_path == tmp_path / "config.json"
    assert settings.disable_purge is True
    assert settings.dry_run is True
    assert settings.fetch_stagger_seconds == 2.5
    assert settings.retry.max_attempts == 7


def test_settings_defaults(monkeypatch) -> None:
    monkeypatch.delenv("COMPONENT_INSTALL_RETRY__MAX_ATTEMPTS", raising=False)

    settings = InstallSettings()

    assert settings.foundry_version is None
    assert settings.data_dir == Path("/data/Data")
    assert settings.config_path == Path("/config/container-config.json")
    assert settings.disable_purge is False
    assert settings.max_workers == 1
    assert settings.resolved_cache_dir().name == "components"


def test_empty_environment_values_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv("FOUNDRY_VERSION", "")

    assert InstallSettings().foundry_version is None


def test_load_settings_overrides_skip_none(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FOUNDRY_DATA_DIR", str(tmp_path / "from-env"))

    settings = load_settings(data_dir=None, dry_run=True, cache_dir=tmp_path / "cache")

    assert settings.data_dir == tmp_path / "from-env"
    assert settings.dry_run is True
    assert settings.resolved_cache_dir() == tmp_path / "cache"


def test_debug_switch_lowers_level(monkeypatch) -> None:
    monkeypatch.setenv("PATCH_DEBUG", "1")

    assert InstallSettings().level_int() == logging.DEBUG


def test_invalid_log_level_rejected() -> None:
    with pytest.raises(ValueError):
        InstallSettings(log_level="chatty")


@pytest.mark.parametrize("model", [RetrySettings(), HttpSettings()])
def test_nested_settings_are_frozen(model) -> None:
    field = next(iter(type(model).model_fields))

    with pytest.raises(ValidationError):
        setattr(model, field, getattr(model, field))


def test_mask_sensitive_data() -> None:
    masked = mask_sensitive_data({"Authorization": "Bearer x", "url": "https://a/b?token=abc", "stage": "cache"})

    assert masked == {"Authorization": "***masked***", "url": "***masked***", "stage": "cache"}


def test_json_formatter_includes_context_fields() -> None:
    record = logging.makeLogRecord(
        {
            "msg": "installed %s",
            "args": ("dice",),
            "levelname": "INFO",
            "stage": "install",
            "category": "modules",
            "component_id": "dice",
        }
    )

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "installed dice"
    assert payload["stage"] == "install"
    assert payload["category"] == "modules"
    assert payload["component_id"] == "dice"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_replaces_managed_handlers(tmp_path: Path) -> None:
    logger = setup_logging(logging.INFO)
    setup_logging(logging.DEBUG, json_logs=True, log_file=tmp_path / "logs" / "install.jsonl")

    managed = [h for h in logger.handlers if getattr(h, "_component_install_managed", False)]
    assert len(managed) == 2
    assert logger.level == logging.DEBUG

    logger.info("written", extra={"stage": "test"})
    for handler in managed:
        handler.flush()
    line = (tmp_path / "logs" / "install.jsonl").read_text().strip().splitlines()[-1]
    assert json.loads(line)["stage"] == "test"


def test_console_format_has_install_prefix(capsys) -> None:
    logger = setup_logging(logging.INFO)

    logger.warning("world presence warning: 'x' missing")

    assert "[install] WARNING: world presence warning: 'x' missing" in capsys.readouterr().out
