"""Custom exception types for infragraph.

This module defines the exception hierarchy for infragraph errors. Everything
raised before the first provisioning call is a ConfigError and aborts the run
with no side effects. ProviderError is raised per resource and is contained
by the apply engine.

Exception Hierarchy:
    InfraGraphError (base)
    ├── ConfigError - Invalid stack definition, fatal, pre-apply
    │   ├── MissingRequiredProperty - Resource lacks a property its type requires
    │   ├── CredentialMissing - Required secret not present in the environment
    │   ├── TemplateError - Malformed ${...} interpolation
    │   └── CycleError - Dependency edges do not form a DAG
    ├── ProviderError - A provisioner call failed for one resource
    └── StateError - State file cannot be read or written
"""

from typing import Any, Dict, List, Optional


class InfraGraphError(Exception):
    """Base exception for all infragraph errors.

    Attributes:
        message: Human-readable error description
        context: Additional contextual information (e.g., resource IDs, file paths)
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        """Initialize InfraGraphError.

        Args:
            message: Human-readable error description
            context: Optional dict with additional context (resource IDs, paths, etc.)
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigError(InfraGraphError):
    """Raised when the stack definition is invalid.

    Examples:
        - Unknown resource type
        - Duplicate resource id
        - dependsOn naming an undeclared resource
        - Required variable without a value
    """

    pass


class MissingRequiredProperty(ConfigError):
    """Raised when a resource omits a property its type requires."""

    def __init__(self, resource_id: str, property_name: str):
        super().__init__(
            f"Resource '{resource_id}' is missing required property '{property_name}'",
            context={"resource": resource_id, "property": property_name},
        )
        self.resource_id = resource_id
        self.property_name = property_name


class CredentialMissing(ConfigError):
    """Raised when a declared secret is absent from the environment.

    Always raised while the graph is being built, so no provisioner has been
    called when it surfaces.
    """

    def __init__(self, secret_name: str, env_var: str):
        super().__init__(
            f"{env_var} environment variable is required",
            context={"secret": secret_name},
        )
        self.secret_name = secret_name
        self.env_var = env_var


class TemplateError(ConfigError):
    """Raised when a ${...} interpolation cannot be parsed or points nowhere.

    Examples:
        - Unterminated "${"
        - Empty expression "${}"
        - Reference to an unknown variable, secret or resource
    """

    pass


class CycleError(ConfigError):
    """Raised when dependency edges form a cycle.

    Attributes:
        cycle: Resource ids along the cycle, first id repeated at the end
    """

    def __init__(self, cycle: List[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class ProviderError(InfraGraphError):
    """Raised when a provisioner fails to apply or destroy a resource.

    Contained by the apply engine: it fails that resource and blocks its
    dependents, other branches keep going.
    """

    def __init__(
        self,
        message: str,
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        context = dict(context or {})
        if resource_id:
            context.setdefault("resource", resource_id)
        super().__init__(message, context)
        self.resource_id = resource_id


class StateError(InfraGraphError):
    """Raised when the state file is unreadable or malformed."""

    pass
