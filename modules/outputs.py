"""Output projector module for infragraph.

Evaluates the stack's named outputs against the node outputs recorded by the
apply engine. A failing branch never aborts the projection: every output that
depends on a resource that did not reach 'applied', or on an output path the
provisioner did not return, comes back as UNAVAILABLE.
"""

import logging
from typing import Any, Dict, Optional

from modules.references import UNAVAILABLE, Reference, get_path, resolve
from modules.resource_graph import ResourceGraph, ResourceStatus

logger = logging.getLogger(__name__)

KUBECONFIG_TEMPLATE = """apiVersion: v1
clusters:
- cluster:
    certificate-authority-data: {ca}
    server: https://{endpoint}
  name: {context}
contexts:
- context:
    cluster: {context}
    user: {context}
  name: {context}
current-context: {context}
kind: Config
preferences: {{}}
users:
- name: {context}
  user:
    exec:
      apiVersion: client.authentication.k8s.io/v1beta1
      command: gke-gcloud-auth-plugin
      installHint: Install gke-gcloud-auth-plugin for use with kubectl by following
        https://cloud.google.com/kubernetes-engine/docs/how-to/cluster-access-for-kubectl#install_plugin
      provideClusterInfo: true
"""


class _Unresolvable(LookupError):
    pass


def project(
    graph: ResourceGraph, output_exprs: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Evaluate named outputs.

    Args:
        graph: Graph after engine.apply()
        output_exprs: name -> Reference, Template or literal. Defaults to the
            outputs declared in the stack.

    Returns:
        name -> concrete value, or UNAVAILABLE

    Examples:
        >>> project(graph)["clusterEndpoint"]
        '34.87.12.3'
    """
    if output_exprs is None:
        output_exprs = graph.outputs

    def lookup(ref: Reference) -> Any:
        if ref.resource_id not in graph:
            raise _Unresolvable(ref.expression())
        node = graph.get(ref.resource_id)
        if node.status != ResourceStatus.APPLIED:
            raise _Unresolvable(ref.expression())
        return get_path(node.outputs, ref.path)

    values: Dict[str, Any] = {}
    for name, expr in output_exprs.items():
        try:
            values[name] = resolve(expr, lookup)
        except LookupError:
            logger.debug(f"Output '{name}' is unavailable")
            values[name] = UNAVAILABLE
    return values


def render_kubeconfig(
    name: str, endpoint: str, ca: str, project: str, location: str
) -> str:
    """Build a kubeconfig for a GKE cluster using the gcloud auth plugin.

    Args:
        name: Cluster name
        endpoint: Cluster API endpoint (IP or host, no scheme)
        ca: Base64 encoded cluster CA certificate
        project: GCP project id
        location: Cluster zone or region

    Returns:
        kubeconfig YAML document
    """
    context = f"{project}_{location}_{name}"
    return KUBECONFIG_TEMPLATE.format(ca=ca, endpoint=endpoint, context=context)


def kubeconfig_for(outputs: Dict[str, Any]) -> str:
    """Shortcut for render_kubeconfig() from a gcp:container:Cluster output dict."""
    return render_kubeconfig(
        outputs["name"],
        outputs["endpoint"],
        outputs["masterAuth"]["clusterCaCertificate"],
        outputs["project"],
        outputs["location"],
    )


def serializable(values: Dict[str, Any]) -> Dict[str, Any]:
    """Replace UNAVAILABLE markers with None for JSON output and state."""
    return {k: (None if v is UNAVAILABLE else v) for k, v in values.items()}
