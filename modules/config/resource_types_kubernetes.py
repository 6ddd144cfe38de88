# Kubernetes Resource Type Schemas for infragraph
# Provider: Kubernetes API and Helm (kubernetes:<group/version>:<Kind>)

# Provider metadata
PROVIDER_NAME = "Kubernetes"
PROVIDER_PREFIX = ["kubernetes:"]

KUBERNETES_RESOURCE_TYPES = {
    # Connection to a cluster; other kubernetes resources point at it through
    # options.provider
    "kubernetes:Provider": {
        "required": ["kubeconfig"],
        "outputs": ["id"],
    },
    "kubernetes:core/v1:Namespace": {
        "required": ["metadata.name"],
        "outputs": ["id", "metadata"],
    },
    "kubernetes:helm.sh/v3:Release": {
        "required": ["chart"],
        "outputs": ["id", "name", "namespace", "chart", "version", "status"],
    },
}

KUBERNETES_NODE_STYLE = {
    "shape": "box",
    "style": "rounded,filled",
    "fillcolor": "#e3ecfc",
    "color": "#326ce5",
}

# Resource types drawn inside a nested box of the Kubernetes cluster
KUBERNETES_GROUP_TYPES = [
    "kubernetes:core/v1:Namespace",
]

KUBERNETES_GROUP_LABEL = "Namespaces"
