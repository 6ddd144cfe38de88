"""Provisioner plugins for infragraph.

Provisioner implementations are looked up by name and imported on demand,
the same way provider resource type schemas are loaded.
"""

import importlib
import logging
from typing import Any, Dict, Optional

import yaml

from modules.config_loader import ConfigurationError
from modules.provisioners.base import Provisioner

logger = logging.getLogger(__name__)

PROVISIONER_MODULES = {
    "local": "modules.provisioners.local",
    "command": "modules.provisioners.command",
}

DEFAULT_PROVISIONER = "local"


def load_provisioner_options(path: Optional[str]) -> Dict[str, Any]:
    """Read provisioner options from a YAML file, or {} when no path is given."""
    if not path:
        return {}
    try:
        with open(path, "r") as file:
            options = yaml.safe_load(file) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read provisioner config {path}: {e}") from e
    if not isinstance(options, dict):
        raise ConfigurationError(f"Provisioner config {path} must be a mapping")
    return options


def load_provisioner(name: str, options: Optional[Dict[str, Any]] = None) -> Provisioner:
    """
    Instantiate a provisioner by name.

    Args:
        name: Registered provisioner name ('local' | 'command')
        options: Implementation specific options

    Returns:
        Provisioner instance

    Raises:
        ValueError: If the name is not registered
        ConfigurationError: If the module cannot be imported
    """
    name = name.lower()
    if name not in PROVISIONER_MODULES:
        raise ValueError(
            f"Provisioner '{name}' not supported. "
            f"Must be one of: {', '.join(PROVISIONER_MODULES)}"
        )
    module_name = PROVISIONER_MODULES[name]
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        logger.error(f"Failed to import provisioner '{name}': {e}")
        raise ConfigurationError(
            f"Could not load provisioner '{name}' from module '{module_name}': {e}"
        ) from e
    provisioner = module.create_provisioner(options or {})
    logger.info(f"Using provisioner '{name}'")
    return provisioner


__all__ = ["Provisioner", "load_provisioner", "load_provisioner_options"]
