"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads YAML configuration set files and parses them into the frozen
``procurement_config.schema`` dataclasses.  Runtime callers go through
``procurement_config.get_active_config()`` instead of calling this
module directly.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing section, unknown key or out-of-range value -> ``ConfigError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import ConfigurationSet, MaterialRequestPolicy
from procurement_kernel.exceptions import ConfigError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_configuration_set(data: dict[str, Any]) -> ConfigurationSet:
    """Parse a ``ConfigurationSet`` from a dict."""
    if not isinstance(data, dict):
        raise ConfigError("<root>", "configuration set must be a mapping")

    section = data.get("material_requests")
    if section is None:
        raise ConfigError("material_requests", "section is required")
    if not isinstance(section, dict):
        raise ConfigError("material_requests", "section must be a mapping")

    return ConfigurationSet(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        material_requests=MaterialRequestPolicy.from_dict(section),
    )


def load_configuration_set(path: Path) -> ConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))
