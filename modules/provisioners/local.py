"""
Local simulated provisioner for infragraph.

Produces realistic, deterministic outputs for every known resource type
without calling any cloud API: a cluster gets an endpoint and a CA
certificate, a subnetwork a gateway address, a Helm release a deployed
status. Useful for previews, demos and tests of stack files.

Failures can be injected per logical resource id:

    fail: [gcp-infra-cluster]      # apply_resource raises ProviderError
    fail_destroy: [databases]      # destroy_resource raises ProviderError
    delay: 0.5                     # seconds each call takes
"""

import base64
import copy
import hashlib
import ipaddress
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from modules.exceptions import ProviderError
from modules.provisioners.base import Provisioner

logger = logging.getLogger(__name__)

GCP_API = "https://www.googleapis.com/compute/v1"
GKE_API = "https://container.googleapis.com/v1"
DEFAULT_GKE_VERSION = "1.30.5-gke.1014001"


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode()).hexdigest()


def _cluster_endpoint(name: str) -> str:
    raw = bytes.fromhex(_digest(name)[:6])
    return f"34.{raw[0]}.{raw[1]}.{raw[2]}"


def _ca_certificate(name: str) -> str:
    body = base64.b64encode(bytes.fromhex(_digest("ca:" + name))).decode()
    pem = f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"
    return base64.b64encode(pem.encode()).decode()


def _network_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    return {
        "selfLink": f"{GCP_API}/projects/{props.get('project')}/global/networks/{name}",
        "gatewayIpv4": "",
    }


def _subnetwork_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    gateway = ""
    try:
        network = ipaddress.ip_network(str(props.get("ipCidrRange")), strict=False)
        gateway = str(next(network.hosts()))
    except (ValueError, StopIteration):
        logger.debug(f"Cannot derive gateway from {props.get('ipCidrRange')}")
    return {
        "selfLink": f"{GCP_API}/projects/{props.get('project')}/regions/"
        f"{props.get('region')}/subnetworks/{name}",
        "gatewayAddress": gateway,
    }


def _firewall_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    return {
        "selfLink": f"{GCP_API}/projects/{props.get('project')}/global/firewalls/{name}"
    }


def _cluster_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    return {
        "endpoint": _cluster_endpoint(name),
        "masterAuth": {"clusterCaCertificate": _ca_certificate(name)},
        "location": props.get("location"),
        "project": props.get("project"),
        "masterVersion": DEFAULT_GKE_VERSION,
        "selfLink": f"{GKE_API}/projects/{props.get('project')}/locations/"
        f"{props.get('location')}/clusters/{name}",
    }


def _node_pool_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    return {
        "instanceGroupUrls": [
            f"{GCP_API}/projects/{props.get('project')}/zones/{props.get('location')}"
            f"/instanceGroupManagers/gke-{props.get('cluster')}-{name}-grp"
        ],
        "version": DEFAULT_GKE_VERSION,
    }


def _namespace_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    metadata = dict(props.get("metadata") or {})
    metadata.setdefault("name", name)
    metadata["uid"] = _digest("ns:" + metadata["name"])[:32]
    return {"metadata": metadata}


def _release_outputs(props: Dict[str, Any], name: str) -> Dict[str, Any]:
    return {
        "namespace": props.get("namespace") or "default",
        "chart": props.get("chart"),
        "version": props.get("version") or "",
        "status": {
            "status": "deployed",
            "chart": props.get("chart"),
            "version": props.get("version") or "",
        },
    }


COMPUTED_OUTPUTS: Dict[str, Callable[[Dict[str, Any], str], Dict[str, Any]]] = {
    "gcp:compute:Network": _network_outputs,
    "gcp:compute:Subnetwork": _subnetwork_outputs,
    "gcp:compute:Firewall": _firewall_outputs,
    "gcp:container:Cluster": _cluster_outputs,
    "gcp:container:NodePool": _node_pool_outputs,
    "kubernetes:core/v1:Namespace": _namespace_outputs,
    "kubernetes:helm.sh/v3:Release": _release_outputs,
}


class LocalProvisioner(Provisioner):
    """In-memory provisioner with deterministic computed outputs."""

    name = "local"

    def __init__(
        self,
        fail: Optional[List[str]] = None,
        fail_destroy: Optional[List[str]] = None,
        delay: float = 0.0,
    ):
        self.fail = set(fail or [])
        self.fail_destroy = set(fail_destroy or [])
        self.delay = float(delay or 0)
        self.resources: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _new_id(self, name: str) -> str:
        with self._lock:
            generation = self._generations.get(name, 0) + 1
            self._generations[name] = generation
        return f"{name}-{_digest(f'{name}:{generation}')[:7]}"

    def apply_resource(
        self,
        resource_type: str,
        properties: Dict[str, Any],
        name: str,
        current_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        with self._lock:
            self.calls.append(("apply", name, current_id))
        if self.delay:
            time.sleep(self.delay)
        if name in self.fail:
            raise ProviderError(f"simulated failure applying {resource_type}", name)

        physical_id = current_id or self._new_id(name)
        outputs = copy.deepcopy(properties)
        display_name = properties.get("name") or name
        outputs["name"] = display_name
        computed = COMPUTED_OUTPUTS.get(resource_type)
        if computed:
            outputs.update(computed(properties, display_name))
        outputs["id"] = physical_id
        with self._lock:
            self.resources[physical_id] = {"type": resource_type, "outputs": outputs}
        logger.debug(f"{'Updated' if current_id else 'Created'} {resource_type} {physical_id}")
        return outputs

    def destroy_resource(
        self, resource_id: str, resource_type: Optional[str] = None
    ) -> None:
        with self._lock:
            self.calls.append(("destroy", resource_id, None))
        if self.delay:
            time.sleep(self.delay)
        logical = resource_id.rsplit("-", 1)[0]
        if resource_id in self.fail_destroy or logical in self.fail_destroy:
            raise ProviderError(f"simulated failure deleting {resource_id}", logical)
        with self._lock:
            self.resources.pop(resource_id, None)
        logger.debug(f"Deleted {resource_type or 'resource'} {resource_id}")


def create_provisioner(options: Optional[Dict[str, Any]] = None) -> LocalProvisioner:
    options = options or {}
    return LocalProvisioner(
        fail=options.get("fail"),
        fail_destroy=options.get("fail_destroy"),
        delay=options.get("delay", 0.0),
    )
