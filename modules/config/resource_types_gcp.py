# GCP Resource Type Schemas for infragraph
# Provider: Google Cloud Platform (gcp:<module>:<Kind>)
# Hierarchy: Project > VPC Network (Global) > Subnetwork (Regional) > GKE Cluster (Zonal) > Node Pool

# Provider metadata
PROVIDER_NAME = "GCP"
PROVIDER_PREFIX = ["gcp:"]

# Every declared resource type with the properties it requires and the
# outputs it exposes once applied. Required entries may be dotted paths.
GCP_RESOURCE_TYPES = {
    "gcp:compute:Network": {
        "required": ["project"],
        "outputs": ["id", "name", "selfLink", "gatewayIpv4"],
    },
    "gcp:compute:Subnetwork": {
        "required": ["project", "ipCidrRange", "region", "network"],
        "outputs": ["id", "name", "selfLink", "gatewayAddress"],
    },
    "gcp:compute:Firewall": {
        "required": ["project", "network", "allows"],
        "outputs": ["id", "name", "selfLink"],
    },
    "gcp:container:Cluster": {
        "required": ["project", "location"],
        "outputs": [
            "id",
            "name",
            "endpoint",
            "masterAuth",
            "location",
            "project",
            "selfLink",
            "masterVersion",
        ],
    },
    "gcp:container:NodePool": {
        "required": ["project", "cluster", "location", "nodeConfig.machineType"],
        "outputs": ["id", "name", "instanceGroupUrls", "version"],
    },
}

# Node styling when rendering the resource graph
GCP_NODE_STYLE = {
    "shape": "box",
    "style": "rounded,filled",
    "fillcolor": "#e8f0fe",
    "color": "#4285f4",
}

# Resource types drawn inside a nested box of the GCP cluster
GCP_GROUP_TYPES = [
    "gcp:compute:Network",
    "gcp:compute:Subnetwork",
    "gcp:compute:Firewall",
]

GCP_GROUP_LABEL = "VPC"
