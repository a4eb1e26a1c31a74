"""
procurement_config -- single public entrypoint for procurement configuration.

Responsibility:
    Provides the way to obtain policy configuration at runtime through
    ``get_active_config()``.  Services receive the returned
    ``MaterialRequestPolicy`` through their constructor and never read
    configuration files themselves.

Architecture position:
    Configuration -- YAML-driven policy sets.  This package sits above
    ``procurement_kernel`` and below ``procurement_modules``.  The kernel
    MUST NEVER import from ``procurement_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration set does not exist.
    - ``ConfigError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``procurement_config_loaded`` log entry with the config_id and version.
"""

from __future__ import annotations

from pathlib import Path

from procurement_config.loader import load_configuration_set
from procurement_config.schema import (
    ConfigurationSet,
    MaterialRequestPolicy,
    OverDeliveryPolicy,
)
from procurement_kernel.domain.calculator import OverpaymentPolicy
from procurement_kernel.logging_config import get_logger

logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_active_config(
    set_name: str = "default",
    config_dir: Path | None = None,
) -> MaterialRequestPolicy:
    """
    Load and validate the named configuration set.

    Args:
        set_name: File stem of the set under ``config_dir``.
        config_dir: Override path to configuration sets directory.
            Defaults to procurement_config/sets/.

    Raises:
        FileNotFoundError: If no matching configuration set is found.
        ConfigError: If configuration validation fails.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{set_name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"No configuration set '{set_name}' in {sets_dir}")

    config_set = load_configuration_set(path)
    logger.info(
        "procurement_config_loaded",
        extra={
            "config_id": config_set.config_id,
            "version": config_set.version,
            "path": str(path),
        },
    )
    return config_set.material_requests


__all__ = [
    "ConfigurationSet",
    "MaterialRequestPolicy",
    "OverDeliveryPolicy",
    "OverpaymentPolicy",
    "get_active_config",
]
