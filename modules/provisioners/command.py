"""
External command provisioner for infragraph.

Dispatches each resource type to a user supplied command, so any CLI
(gcloud, kubectl, helm, a wrapper script) can act as the provisioning
backend. The mapping comes from a YAML file:

    gcp:container:Cluster:
      apply: ["./bin/gke.sh", "apply", "{name}"]
      destroy: ["./bin/gke.sh", "delete", "{id}"]
    "*":
      apply: ["./bin/generic.sh", "{type}", "{name}"]
      destroy: ["./bin/generic.sh", "delete", "{id}"]

apply receives a JSON document on stdin:
    {"type": ..., "name": ..., "properties": {...}, "current_id": ... | null}
and must print a JSON object of outputs on stdout. A non-zero exit status,
a timeout or unparseable output raises ProviderError.
"""

import json
import logging
import subprocess
from typing import Any, Dict, List, Optional

from modules.exceptions import ProviderError
from modules.provisioners.base import Provisioner

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 1800
WILDCARD = "*"


class CommandProvisioner(Provisioner):
    """Provisioner that shells out to one command per resource type."""

    name = "command"

    def __init__(
        self,
        commands: Dict[str, Dict[str, List[str]]],
        cwd: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.commands = commands or {}
        self.cwd = cwd
        self.timeout = timeout

    def _command_for(self, resource_type: Optional[str], action: str, name: str) -> List[str]:
        entry = self.commands.get(resource_type or "", self.commands.get(WILDCARD))
        if not entry or not entry.get(action):
            raise ProviderError(
                f"No {action} command configured for type '{resource_type}'", name
            )
        return list(entry[action])

    def _run(self, argv: List[str], payload: Optional[str], name: str) -> str:
        logger.debug(f"Running {' '.join(argv)}")
        try:
            result = subprocess.run(
                argv,
                input=payload,
                capture_output=True,
                text=True,
                cwd=self.cwd,
                timeout=self.timeout,
            )
        except FileNotFoundError as e:
            raise ProviderError(f"Command not found: {argv[0]}", name) from e
        except subprocess.TimeoutExpired as e:
            raise ProviderError(
                f"Command timed out after {self.timeout}s: {argv[0]}", name
            ) from e
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise ProviderError(
                message or f"{argv[0]} exited with status {result.returncode}",
                name,
                context={"exit_code": result.returncode},
            )
        return result.stdout

    def apply_resource(
        self,
        resource_type: str,
        properties: Dict[str, Any],
        name: str,
        current_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        fields = {"type": resource_type, "name": name, "id": current_id or ""}
        argv = [arg.format(**fields) for arg in self._command_for(resource_type, "apply", name)]
        payload = json.dumps(
            {
                "type": resource_type,
                "name": name,
                "properties": properties,
                "current_id": current_id,
            }
        )
        stdout = self._run(argv, payload, name)
        try:
            outputs = json.loads(stdout) if stdout.strip() else {}
        except json.JSONDecodeError as e:
            raise ProviderError(f"Command output is not JSON: {e}", name) from e
        if not isinstance(outputs, dict):
            raise ProviderError("Command output must be a JSON object", name)
        outputs.setdefault("id", current_id or name)
        return outputs

    def destroy_resource(
        self, resource_id: str, resource_type: Optional[str] = None
    ) -> None:
        fields = {"type": resource_type or "", "name": resource_id, "id": resource_id}
        argv = [
            arg.format(**fields)
            for arg in self._command_for(resource_type, "destroy", resource_id)
        ]
        self._run(argv, None, resource_id)


def create_provisioner(options: Optional[Dict[str, Any]] = None) -> CommandProvisioner:
    options = dict(options or {})
    cwd = options.pop("cwd", None)
    timeout = options.pop("timeout", DEFAULT_TIMEOUT)
    commands = options.pop("commands", options)
    return CommandProvisioner(commands, cwd=cwd, timeout=timeout)
