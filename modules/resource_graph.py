"""
Resource graph data model for infragraph.

A ResourceGraph is the value handed from the graph builder to the resolver,
the apply engine and the output projector. It owns its nodes in declaration
order plus the output expressions of the stack. The apply engine is the only
writer of node status and outputs, and writes go through set_status() /
set_outputs() which hold the graph lock.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from modules.references import collect_references


class ResourceStatus(Enum):
    """Lifecycle of a node during one run."""

    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    BLOCKED = "blocked"


@dataclass
class ResourceNode:
    """
    A single declared unit of desired infrastructure state.

    Args:
        id: Unique resource id from the stack file
        type: Provider-qualified kind (e.g., "gcp:container:Cluster")
        properties: Property bag, may hold deferred References/Templates
        depends_on: Explicit dependencies (dependsOn and options.provider)
        options: replace_on_changes, delete_before_replace, provider
        index: Declaration position, used to break ordering ties
    """

    id: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)
    index: int = 0
    status: ResourceStatus = ResourceStatus.PENDING
    outputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def implicit_dependencies(self) -> List[str]:
        """Resource ids referenced from property values, in first-seen order."""
        seen: List[str] = []
        for ref in collect_references(self.properties):
            if ref.resource_id not in seen:
                seen.append(ref.resource_id)
        return seen

    @property
    def dependencies(self) -> List[str]:
        """All resource ids that must be applied before this node."""
        deps = list(self.depends_on)
        for dep in self.implicit_dependencies:
            if dep not in deps:
                deps.append(dep)
        return deps


class ResourceGraph:
    """Directed graph of resource nodes plus the stack's output expressions."""

    def __init__(
        self,
        name: str = "stack",
        nodes: Optional[List[ResourceNode]] = None,
        outputs: Optional[Dict[str, Any]] = None,
        secrets: Optional[List[str]] = None,
        reindex: bool = True,
    ):
        self.name = name
        self.nodes: Dict[str, ResourceNode] = {}
        self.outputs: Dict[str, Any] = dict(outputs or {})
        # Secret values, masked when printing
        self.secrets: List[str] = list(secrets or [])
        self._lock = threading.Lock()
        for node in nodes or []:
            self.add_node(node, reindex)

    def add_node(self, node: ResourceNode, reindex: bool = True) -> None:
        """Add a node; reindex=False keeps the node's existing declaration index."""
        if reindex:
            node.index = len(self.nodes)
        self.nodes[node.id] = node

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self.nodes

    def __iter__(self) -> Iterator[ResourceNode]:
        return iter(sorted(self.nodes.values(), key=lambda n: n.index))

    def __len__(self) -> int:
        return len(self.nodes)

    def get(self, resource_id: str) -> ResourceNode:
        return self.nodes[resource_id]

    def edges(self) -> List[tuple]:
        """Return (before, after) pairs in declaration order of 'after'."""
        pairs = []
        for node in self:
            for dep in node.dependencies:
                pairs.append((dep, node.id))
        return pairs

    def dependents(self, resource_id: str) -> List[str]:
        """Direct dependents of resource_id, in declaration order."""
        return [n.id for n in self if resource_id in n.dependencies]

    def set_status(
        self, resource_id: str, status: ResourceStatus, error: Optional[str] = None
    ) -> None:
        with self._lock:
            node = self.nodes[resource_id]
            node.status = status
            node.error = error

    def set_outputs(self, resource_id: str, outputs: Dict[str, Any]) -> None:
        with self._lock:
            self.nodes[resource_id].outputs = dict(outputs)

    def status_of(self, resource_id: str) -> ResourceStatus:
        with self._lock:
            return self.nodes[resource_id].status

    def to_graphdict(self) -> Dict[str, List[str]]:
        """Adjacency list in apply direction: node -> nodes that depend on it."""
        graphdict: Dict[str, List[str]] = {n.id: [] for n in self}
        for before, after in self.edges():
            graphdict[before].append(after)
        return graphdict
