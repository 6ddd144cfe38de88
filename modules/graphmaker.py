"""Graph maker module for infragraph.

This module turns a parsed stack definition into a ResourceGraph. It resolves
variables and secrets, validates every resource against its type schema,
converts ${resource.output} interpolations into deferred references and
records explicit dependencies. Any problem raises a ConfigError subclass and
no graph is returned.
"""

import logging
import os
from typing import Any, Dict, List, Mapping, Optional, Tuple

import modules.config_loader as config_loader
from modules.exceptions import (
    ConfigError,
    CredentialMissing,
    MissingRequiredProperty,
    TemplateError,
)
from modules.references import (
    PathPart,
    collect_references,
    get_path,
    interpolate,
)
from modules.resource_graph import ResourceGraph, ResourceNode

logger = logging.getLogger(__name__)

TRUE_STRINGS = ["true", "yes", "on", "1"]
FALSE_STRINGS = ["false", "no", "off", "0", ""]


def _declaration(decl: Any, key: str) -> Dict[str, Any]:
    """Normalise shorthand declarations: a bare scalar means {key: scalar}."""
    if isinstance(decl, dict):
        return decl
    return {key: decl}


def resolve_secrets(
    secrets: Dict[str, Any], environ: Mapping[str, str]
) -> Dict[str, str]:
    """Read every declared secret from the environment.

    Args:
        secrets: Secret declarations, name -> {"env": VAR} or name -> "VAR"
        environ: Environment mapping to read from

    Returns:
        Mapping of secret name to value

    Raises:
        CredentialMissing: If any secret is unset or empty
    """
    values: Dict[str, str] = {}
    for name, decl in (secrets or {}).items():
        env_var = _declaration(decl, "env").get("env") or name
        value = environ.get(env_var)
        if not value:
            raise CredentialMissing(name, env_var)
        values[name] = value
    return values


def resolve_variables(
    variables: Dict[str, Any],
    overrides: Mapping[str, Any],
    environ: Mapping[str, str],
) -> Dict[str, Any]:
    """Work out the value of every stack variable.

    Precedence: --config override, then the declared environment variable,
    then the default.

    Raises:
        ConfigError: If a required variable ends up without a value
    """
    values: Dict[str, Any] = {}
    for name, decl in (variables or {}).items():
        decl = _declaration(decl, "default")
        env_var = decl.get("env")
        if name in overrides:
            value = overrides[name]
        elif env_var and environ.get(env_var):
            value = environ[env_var]
        else:
            value = decl.get("default")
        if value is None and decl.get("required"):
            hint = f" (set {env_var} or --config {name}=...)" if env_var else ""
            raise ConfigError(
                f"Required configuration value '{name}' is missing{hint}",
                context={"variable": name},
            )
        values[name] = value
    for name in overrides:
        if name not in values:
            logger.warning(f"Ignoring --config value for undeclared variable '{name}'")
    return values


def _make_lookup(variables: Dict[str, Any], secrets: Dict[str, str]):
    """Build the callback interpolate() uses for ${var.x} and ${secret.x}."""

    def lookup(head: str, path: Tuple[PathPart, ...]) -> Any:
        source = variables if head == "var" else secrets
        if not path or not isinstance(path[0], str):
            raise TemplateError(f"'{head}' must be followed by a name")
        name = path[0]
        if name not in source:
            kind = "variable" if head == "var" else "secret"
            raise TemplateError(f"Unknown {kind} '{name}'", context={head: name})
        try:
            return get_path(source[name], path[1:])
        except LookupError:
            raise TemplateError(
                f"Path not found in {head} '{name}'", context={head: name}
            )

    return lookup


def coerce_bool(value: Any, resource_id: str) -> bool:
    """Interpret an 'enabled' flag that may have come from a string variable."""
    if isinstance(value, bool):
        return value
    if value is None:
        return True
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise ConfigError(
        f"Cannot interpret enabled value '{value}' as a boolean",
        context={"resource": resource_id},
    )


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _validate_type(resource_id: str, decl: Dict[str, Any]) -> Dict[str, Any]:
    resource_type = decl.get("type")
    if not resource_type or not isinstance(resource_type, str):
        raise ConfigError(
            f"Resource '{resource_id}' has no type", context={"resource": resource_id}
        )
    try:
        return config_loader.get_type_schema(resource_type)
    except (ValueError, KeyError):
        raise ConfigError(
            f"Unknown resource type '{resource_type}'",
            context={"resource": resource_id},
        )


def check_required(resource_id: str, properties: Dict[str, Any], required: List[str]):
    """Raise MissingRequiredProperty for the first absent required path."""
    for prop in required:
        path = tuple(prop.split("."))
        try:
            value = get_path(properties, path)
        except LookupError:
            raise MissingRequiredProperty(resource_id, prop)
        if value is None or value == "":
            raise MissingRequiredProperty(resource_id, prop)


def _build_options(
    resource_id: str, decl: Dict[str, Any], lookup
) -> Dict[str, Any]:
    raw = interpolate(decl.get("options") or {}, lookup)
    if not isinstance(raw, dict):
        raise ConfigError(
            f"options of '{resource_id}' must be a mapping",
            context={"resource": resource_id},
        )
    replace_on = raw.get("replaceOnChanges", raw.get("replace_on_changes", []))
    return {
        "provider": raw.get("provider"),
        "replace_on_changes": _as_list(replace_on),
        "delete_before_replace": coerce_bool(
            raw.get("deleteBeforeReplace", raw.get("delete_before_replace", False)),
            resource_id,
        ),
    }


def check_relationship(
    owner: str,
    value: Any,
    nodes: Dict[str, ResourceNode],
    disabled: List[str],
) -> None:
    """Validate every deferred reference found in value.

    Args:
        owner: Resource id (or "output <name>") holding the value
        value: Interpolated property value
        nodes: Enabled resource nodes by id
        disabled: Ids declared but switched off

    Raises:
        TemplateError: For references to unknown or disabled resources,
            or to outputs the target type does not expose
    """
    for ref in collect_references(value):
        target = ref.resource_id
        if target in disabled:
            raise TemplateError(
                f"{owner} references disabled resource '{target}'",
                context={"reference": ref.expression()},
            )
        if target not in nodes:
            raise TemplateError(
                f"{owner} references unknown resource '{target}'",
                context={"reference": ref.expression()},
            )
        if ref.path and isinstance(ref.path[0], str):
            target_node = nodes[target]
            known = config_loader.get_type_schema(target_node.type)["outputs"]
            if ref.path[0] not in known and ref.path[0] not in target_node.properties:
                raise TemplateError(
                    f"{owner} references unknown output '{ref.path[0]}' of '{target}'",
                    context={"reference": ref.expression()},
                )


def build(
    stack: Dict[str, Any],
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ResourceGraph:
    """Build a ResourceGraph from a parsed stack definition.

    Args:
        stack: Stack dict with name, variables, secrets, resources, outputs
        overrides: Variable values given on the command line
        environ: Environment to read secrets and variables from (default os.environ)

    Returns:
        Validated ResourceGraph with deferred references

    Raises:
        CredentialMissing: A declared secret is not in the environment
        MissingRequiredProperty: A resource lacks a required property
        TemplateError: A malformed or dangling interpolation
        ConfigError: Any other invalid declaration
    """
    environ = os.environ if environ is None else environ
    overrides = overrides or {}
    resources = stack.get("resources") or {}
    if not isinstance(resources, dict):
        raise ConfigError("'resources' must be a mapping of id to declaration")

    # Secrets first: a missing credential aborts before anything else is looked at
    secrets = resolve_secrets(stack.get("secrets") or {}, environ)
    variables = resolve_variables(stack.get("variables") or {}, overrides, environ)
    lookup = _make_lookup(variables, secrets)

    nodes: Dict[str, ResourceNode] = {}
    disabled: List[str] = []
    pending_deps: Dict[str, Tuple[List[Any], Optional[str]]] = {}

    for resource_id, decl in resources.items():
        if not isinstance(decl, dict):
            raise ConfigError(
                f"Resource '{resource_id}' must be a mapping",
                context={"resource": resource_id},
            )
        enabled = coerce_bool(interpolate(decl.get("enabled", True), lookup), resource_id)
        if not enabled:
            logger.info(f"Resource '{resource_id}' is disabled, skipping")
            disabled.append(resource_id)
            continue
        schema = _validate_type(resource_id, decl)
        properties = interpolate(decl.get("properties") or {}, lookup)
        if not isinstance(properties, dict):
            raise ConfigError(
                f"properties of '{resource_id}' must be a mapping",
                context={"resource": resource_id},
            )
        check_required(resource_id, properties, schema["required"])
        options = _build_options(resource_id, decl, lookup)
        nodes[resource_id] = ResourceNode(
            id=resource_id,
            type=decl["type"],
            properties=properties,
            options=options,
        )
        pending_deps[resource_id] = (
            _as_list(decl.get("dependsOn", decl.get("depends_on"))),
            options["provider"],
        )

    # Explicit edges, now that every enabled id is known
    for resource_id, (depends_on, provider) in pending_deps.items():
        node = nodes[resource_id]
        for dep in depends_on:
            if dep in disabled:
                logger.warning(
                    f"'{resource_id}' depends on disabled resource '{dep}', dropping edge"
                )
                continue
            if dep not in nodes:
                raise ConfigError(
                    f"'{resource_id}' depends on unknown resource '{dep}'",
                    context={"resource": resource_id},
                )
            if dep not in node.depends_on:
                node.depends_on.append(dep)
        if provider:
            if provider not in nodes:
                raise ConfigError(
                    f"'{resource_id}' uses unknown or disabled provider '{provider}'",
                    context={"resource": resource_id},
                )
            if provider not in node.depends_on:
                node.depends_on.append(provider)
        check_relationship(f"Resource '{resource_id}'", node.properties, nodes, disabled)

    outputs: Dict[str, Any] = {}
    for name, expr in (stack.get("outputs") or {}).items():
        value = interpolate(expr, lookup)
        switched_off = [
            ref.resource_id for ref in collect_references(value) if ref.resource_id in disabled
        ]
        if switched_off:
            logger.warning(
                f"Dropping output '{name}': resource '{switched_off[0]}' is disabled"
            )
            continue
        check_relationship(f"Output '{name}'", value, nodes, disabled)
        outputs[name] = value

    graph = ResourceGraph(
        name=stack.get("name") or "stack",
        nodes=list(nodes.values()),
        outputs=outputs,
        secrets=list(secrets.values()),
    )
    logger.info(
        f"Built graph '{graph.name}' with {len(graph)} resources "
        f"({len(disabled)} disabled) and {len(outputs)} outputs"
    )
    return graph
