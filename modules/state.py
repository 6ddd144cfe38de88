"""State file module for infragraph.

The state file records what the last apply produced: for every resource its
type, the resolved properties it was applied with, the outputs the
provisioner returned (including the physical "id") and its dependencies.
It lets a re-run skip unchanged resources, find resources that were removed
from the stack, and destroy everything later without rebuilding the graph.

Layout:
    {
        "version": 1,
        "stack": "gcp-infra",
        "resources": {
            "gcp-infra-network": {
                "type": "gcp:compute:Network",
                "properties": {...},
                "outputs": {"id": "...", ...},
                "dependencies": []
            }
        },
        "outputs": {"clusterEndpoint": "..."}
    }
"""

import json
import logging
import os
import tempfile
from typing import Any, Dict, List, Optional

from modules.exceptions import StateError

logger = logging.getLogger(__name__)

STATE_VERSION = 1
DEFAULT_STATE_FILE = ".infragraph/state.json"


def empty_state(stack_name: Optional[str] = None) -> Dict[str, Any]:
    """Return a state dict with no resources."""
    return {
        "version": STATE_VERSION,
        "stack": stack_name,
        "resources": {},
        "outputs": {},
    }


def load_state(path: str, stack_name: Optional[str] = None) -> Dict[str, Any]:
    """Read a state file, or return an empty state if it does not exist.

    Args:
        path: Path to the JSON state file
        stack_name: Expected stack name; a mismatch is an error

    Returns:
        State dictionary

    Raises:
        StateError: If the file is not valid state JSON or belongs to another stack
    """
    if not os.path.exists(path):
        logger.debug(f"No state file at {path}, starting empty")
        return empty_state(stack_name)
    try:
        with open(path, "r") as file:
            state = json.load(file)
    except (OSError, json.JSONDecodeError) as e:
        raise StateError(f"Cannot read state file: {e}", context={"path": path}) from e

    if not isinstance(state, dict) or not isinstance(state.get("resources"), dict):
        raise StateError("State file is malformed", context={"path": path})
    if state.get("version") != STATE_VERSION:
        raise StateError(
            f"Unsupported state version {state.get('version')}",
            context={"path": path},
        )
    if stack_name and state.get("stack") and state["stack"] != stack_name:
        raise StateError(
            f"State belongs to stack '{state['stack']}', not '{stack_name}'",
            context={"path": path},
        )
    state.setdefault("outputs", {})
    if stack_name:
        state["stack"] = stack_name
    return state


def save_state(path: str, state: Dict[str, Any]) -> None:
    """Write state atomically: a temp file in the same directory, then rename."""
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".state-", suffix=".json")
    try:
        with os.fdopen(fd, "w") as file:
            json.dump(state, file, indent=4, sort_keys=True, default=str)
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise StateError(f"Cannot write state file: {e}", context={"path": path}) from e
    logger.debug(f"Saved state with {len(state['resources'])} resources to {path}")


def record_resource(
    state: Dict[str, Any],
    resource_id: str,
    resource_type: str,
    properties: Dict[str, Any],
    outputs: Dict[str, Any],
    dependencies: List[str],
) -> None:
    """Store the result of a successful create/update/replace."""
    state["resources"][resource_id] = {
        "type": resource_type,
        "properties": properties,
        "outputs": outputs,
        "dependencies": list(dependencies),
    }


def forget_resource(state: Dict[str, Any], resource_id: str) -> None:
    """Drop a destroyed resource from state."""
    state["resources"].pop(resource_id, None)


def physical_id(entry: Dict[str, Any], resource_id: str) -> str:
    """The provisioner's id for a state entry, falling back to the logical id."""
    return (entry.get("outputs") or {}).get("id") or resource_id
