# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/config/loader.py

from __future__ import annotations

import logging
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from .models import BootstrapSettings

log = logging.getLogger("clusterseed")

SETTINGS_ENV = "CLUSTERSEED_SETTINGS_FILE"


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, "", [], {}):
                base[key] = value
    return base


def _find_settings_file(explicit: Optional[Path]) -> Path | None:
    """
    Locate the settings YAML using this priority:

    1. explicit path (--settings); must exist
    2. CLUSTERSEED_SETTINGS_FILE environment variable
    3. nothing -> built-in defaults
    """
    if explicit is not None:
        if not explicit.is_file():
            raise FileNotFoundError(f"settings file {explicit} does not exist")
        return explicit

    env = os.environ.get(SETTINGS_ENV)
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("%s=%s does not exist, using defaults", SETTINGS_ENV, env)
    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at top level")
    return data


def load_settings(
    path: str | Path | None = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> BootstrapSettings:
    """
    Build the run settings.

    The YAML file (if any) supplies site defaults; *overrides* (usually the
    CLI flags) are deep-merged on top, skipping empty values so an unset flag
    never clobbers the file. ``${ENV_VAR}`` placeholders in the YAML are
    resolved at load time.
    """
    settings_path = _find_settings_file(Path(path) if path else None)

    data: dict = {}
    if settings_path:
        log.debug("Loading settings from %s", settings_path)
        data = _load_yaml(settings_path)
    else:
        log.debug("No settings file, using defaults")

    if overrides:
        _deep_merge(data, overrides)

    return BootstrapSettings.model_validate(data)
