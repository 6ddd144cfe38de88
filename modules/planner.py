"""Change planning module for infragraph.

Compares resolved resource properties with the last recorded state and decides
what the apply engine has to do for each resource:

    create   - not in state
    same     - resolved properties and type unchanged, no provisioner call
    update   - changed in place
    replace  - type changed, or a key listed in replaceOnChanges changed
    delete   - in state but no longer declared

preview() runs the same decision ahead of time. Where a property depends on
an upstream resource that is itself about to change, the value is not known
yet and the resource is reported with computed=True.
"""

from typing import Any, Dict, List, Optional

import modules.resolver as resolver
from modules.references import Reference, get_path, resolve
from modules.resource_graph import ResourceGraph, ResourceNode, ResourceStatus

CREATE = "create"
SAME = "same"
UPDATE = "update"
REPLACE = "replace"
DELETE = "delete"

ACTION_SYMBOLS = {
    CREATE: "+",
    SAME: " ",
    UPDATE: "~",
    REPLACE: "+-",
    DELETE: "-",
}


class _Computed(LookupError):
    """Raised during preview when an upstream output is not known yet."""


def changed_keys(old: Dict[str, Any], new: Dict[str, Any]) -> List[str]:
    """Top-level property names whose values differ."""
    keys = list(old.keys()) + [k for k in new.keys() if k not in old]
    return [k for k in keys if old.get(k) != new.get(k) or (k in old) != (k in new)]


def diff_action(
    node: ResourceNode,
    resolved: Dict[str, Any],
    prior: Optional[Dict[str, Any]],
) -> str:
    """Decide the action for one resource.

    Args:
        node: Resource node being applied
        resolved: Fully resolved properties
        prior: State entry from the last apply, or None

    Returns:
        One of create, same, update, replace
    """
    if prior is None:
        return CREATE
    if prior.get("type") != node.type:
        return REPLACE
    old = prior.get("properties") or {}
    if old == resolved:
        return SAME
    replace_on = node.options.get("replace_on_changes") or []
    changed = changed_keys(old, resolved)
    if "*" in replace_on or any(key in replace_on for key in changed):
        return REPLACE
    return UPDATE


def preview(graph: ResourceGraph, state: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Predict the action of every resource without provisioning anything.

    Args:
        graph: Built graph
        state: Loaded state dict

    Returns:
        List of {"id", "type", "action", "computed", "changed"} in apply order,
        followed by deletions of undeclared resources in destroy order
    """
    prior_resources = state.get("resources", {})
    known_outputs: Dict[str, Optional[Dict[str, Any]]] = {}
    steps: List[Dict[str, Any]] = []

    def lookup(ref: Reference) -> Any:
        outputs = known_outputs.get(ref.resource_id)
        if outputs is None:
            raise _Computed(ref.expression())
        return get_path(outputs, ref.path)

    for node in resolver.resolve(graph):
        prior = prior_resources.get(node.id)
        computed = False
        changed: List[str] = []
        if node.status == ResourceStatus.APPLIED:
            action = SAME
            known_outputs[node.id] = node.outputs
        else:
            try:
                resolved = resolve(node.properties, lookup)
            except _Computed:
                computed = True
                action = CREATE if prior is None else UPDATE
                if prior is not None and prior.get("type") != node.type:
                    action = REPLACE
            except LookupError:
                # Surfaced as a node failure at apply time
                computed = True
                action = CREATE if prior is None else UPDATE
            else:
                action = diff_action(node, resolved, prior)
                if prior is not None:
                    changed = changed_keys(prior.get("properties") or {}, resolved)
            known_outputs[node.id] = prior.get("outputs") if action == SAME else None
        steps.append(
            {
                "id": node.id,
                "type": node.type,
                "action": action,
                "computed": computed,
                "changed": changed,
            }
        )

    undeclared = [rid for rid in prior_resources if rid not in graph]
    if undeclared:
        deps = {
            rid: [d for d in prior_resources[rid].get("dependencies", []) if d in undeclared]
            for rid in undeclared
        }
        for rid in reversed(resolver.topological_sort(undeclared, deps)):
            steps.append(
                {
                    "id": rid,
                    "type": prior_resources[rid].get("type"),
                    "action": DELETE,
                    "computed": False,
                    "changed": [],
                }
            )
    return steps


def summarize(steps: List[Dict[str, Any]]) -> Dict[str, int]:
    """Count steps per action."""
    counts: Dict[str, int] = {}
    for step in steps:
        counts[step["action"]] = counts.get(step["action"], 0) + 1
    return counts
