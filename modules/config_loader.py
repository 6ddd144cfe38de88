"""
Configuration Loader Module for infragraph

This module provides dynamic loading of provider-specific resource type
schemas. A resource type such as "gcp:container:Cluster" carries its provider
as the prefix before the first colon; the matching schema module is imported
on demand and cached by Python's import system.

"""

from typing import Dict, Any, List
import importlib
import logging

# Configure logging
logger = logging.getLogger(__name__)

# Module name mapping for each provider
PROVIDER_CONFIG_MODULES = {
    "gcp": "modules.config.resource_types_gcp",
    "kubernetes": "modules.config.resource_types_kubernetes",
}

# Supported providers
SUPPORTED_PROVIDERS = ["gcp", "kubernetes"]


class ConfigurationError(Exception):
    """Raised when configuration loading fails."""

    pass


def load_config(provider: str) -> Any:
    """
    Load provider-specific resource type schema module dynamically.

    Args:
        provider: Provider name ('gcp' | 'kubernetes')

    Returns:
        Provider-specific configuration module with constants and schemas

    Raises:
        ValueError: If provider not supported
        ConfigurationError: If configuration module cannot be loaded

    Examples:
        >>> gcp_config = load_config('gcp')
        >>> gcp_config.PROVIDER_NAME
        'GCP'

        >>> k8s_config = load_config('kubernetes')
        >>> k8s_config.PROVIDER_NAME
        'Kubernetes'

    Usage Notes:
        - Configuration modules are cached after first import
        - Module must exist at modules/config/resource_types_{provider}.py
        - Each module must define {PROVIDER}_RESOURCE_TYPES
    """
    provider = provider.lower()
    # Validate provider
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"Provider '{provider}' not supported. "
            f"Must be one of: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    module_name = PROVIDER_CONFIG_MODULES.get(provider)
    if not module_name:
        raise ConfigurationError(
            f"No configuration module mapped for provider '{provider}'"
        )

    try:
        config_module = importlib.import_module(module_name)
        logger.debug(
            f"Loaded resource types for provider '{provider}' from {module_name}"
        )
        return config_module

    except ImportError as e:
        logger.error(f"Failed to import configuration for provider '{provider}': {e}")
        raise ConfigurationError(
            f"Could not load configuration for provider '{provider}'. "
            f"Module '{module_name}' not found or has import errors. "
            f"Error: {e}"
        ) from e


def validate_config_module(config_module: Any, provider: str) -> bool:
    """
    Validate that a configuration module has required attributes.

    Args:
        config_module: Configuration module to validate
        provider: Provider name (for error messages)

    Returns:
        True if validation passes

    Raises:
        ConfigurationError: If validation fails

    Required Attributes:
        - PROVIDER_NAME (str): Human-readable provider name
        - PROVIDER_PREFIX (list): Resource type prefix(es)
        - {PROVIDER}_RESOURCE_TYPES (dict): Type name -> schema
    """
    required_attrs = [
        "PROVIDER_NAME",
        "PROVIDER_PREFIX",
        f"{provider.upper()}_RESOURCE_TYPES",
    ]

    missing_attrs = [attr for attr in required_attrs if not hasattr(config_module, attr)]

    if missing_attrs:
        raise ConfigurationError(
            f"Configuration module for provider '{provider}' is missing required attributes: "
            f"{', '.join(missing_attrs)}. Please ensure resource_types_{provider}.py defines all required constants."
        )

    logger.debug(f"Configuration module for '{provider}' passed validation")
    return True


def provider_of(resource_type: str) -> str:
    """Return the provider prefix of a resource type.

    Examples:
        >>> provider_of('gcp:compute:Network')
        'gcp'
    """
    return resource_type.split(":", 1)[0].lower()


def get_type_schema(resource_type: str) -> Dict[str, Any]:
    """
    Look up the schema of a single resource type.

    Args:
        resource_type: Fully qualified type, e.g. 'kubernetes:helm.sh/v3:Release'

    Returns:
        Schema dict with 'required' and 'outputs' lists

    Raises:
        ValueError: If the provider prefix is not supported
        KeyError: If the provider does not declare the type
    """
    provider = provider_of(resource_type)
    config = load_config(provider)
    validate_config_module(config, provider)
    types = getattr(config, f"{provider.upper()}_RESOURCE_TYPES")
    if resource_type not in types:
        raise KeyError(resource_type)
    schema = types[resource_type]
    return {
        "required": list(schema.get("required", [])),
        "outputs": list(schema.get("outputs", [])),
    }


def get_provider_constant(resource_type: str, suffix: str, default: Any = None) -> Any:
    """Fetch a {PROVIDER}_{SUFFIX} constant for the provider owning resource_type."""
    provider = provider_of(resource_type)
    try:
        config = load_config(provider)
    except (ValueError, ConfigurationError):
        return default
    return getattr(config, f"{provider.upper()}_{suffix}", default)


def list_available_providers() -> List[str]:
    """
    List all providers that have configuration modules available.

    Returns:
        List of provider names with available configurations

    Examples:
        >>> list_available_providers()
        ['gcp', 'kubernetes']
    """
    available = []

    for provider in SUPPORTED_PROVIDERS:
        try:
            load_config(provider)
            available.append(provider)
        except (ValueError, ConfigurationError):
            # Provider config not available
            pass

    return available


def list_resource_types() -> List[str]:
    """Return every resource type known across available providers."""
    types: List[str] = []
    for provider in list_available_providers():
        config = load_config(provider)
        types.extend(getattr(config, f"{provider.upper()}_RESOURCE_TYPES", {}).keys())
    return types
