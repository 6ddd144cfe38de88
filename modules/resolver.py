"""Dependency resolver module for infragraph.

Orders resource nodes so that every node comes after everything it depends
on. Ties are broken by declaration order, so an unchanged stack always applies
in the same sequence. A cycle is reported as the shortest cycle found in the
part of the graph that could not be ordered.
"""

import heapq
import logging
from collections import deque
from typing import Dict, List, Optional, Sequence, Set

from modules.exceptions import CycleError
from modules.resource_graph import ResourceGraph, ResourceNode

logger = logging.getLogger(__name__)


def topological_sort(ids: Sequence[str], deps: Dict[str, List[str]]) -> List[str]:
    """Kahn's algorithm with declaration-order tie breaking.

    Args:
        ids: Node ids in declaration order
        deps: node id -> ids it depends on (all must be in ids)

    Returns:
        Ordered list of ids

    Raises:
        CycleError: If the dependency edges are not acyclic
    """
    rank = {node_id: i for i, node_id in enumerate(ids)}
    indegree = {node_id: 0 for node_id in ids}
    dependents: Dict[str, List[str]] = {node_id: [] for node_id in ids}
    for node_id in ids:
        for dep in deps.get(node_id, []):
            if dep == node_id:
                raise CycleError([node_id, node_id])
            indegree[node_id] += 1
            dependents[dep].append(node_id)

    ready = [(rank[n], n) for n in ids if indegree[n] == 0]
    heapq.heapify(ready)
    order: List[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for child in dependents[node_id]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (rank[child], child))

    if len(order) != len(ids):
        remaining = [n for n in ids if n not in set(order)]
        raise CycleError(find_minimal_cycle(remaining, deps))
    return order


def find_minimal_cycle(remaining: List[str], deps: Dict[str, List[str]]) -> List[str]:
    """Find the shortest cycle among nodes that Kahn's algorithm left over.

    Breadth-first search from every remaining node along dependency edges,
    keeping the shortest path that returns to its start.

    Args:
        remaining: Unordered node ids in declaration order
        deps: node id -> ids it depends on

    Returns:
        Cycle in apply direction, first id repeated at the end
    """
    members: Set[str] = set(remaining)
    # Apply direction: dependency -> dependent
    forward: Dict[str, List[str]] = {n: [] for n in remaining}
    for node_id in remaining:
        for dep in deps.get(node_id, []):
            if dep in members:
                forward[dep].append(node_id)

    best: Optional[List[str]] = None
    for start in remaining:
        parents: Dict[str, Optional[str]] = {start: None}
        queue = deque([start])
        found = None
        while queue and found is None:
            current = queue.popleft()
            for nxt in forward[current]:
                if nxt == start:
                    found = current
                    break
                if nxt not in parents:
                    parents[nxt] = current
                    queue.append(nxt)
        if found is None:
            continue
        path = [found]
        while parents[path[-1]] is not None:
            path.append(parents[path[-1]])
        path.reverse()
        cycle = path + [start]
        if best is None or len(cycle) < len(best):
            best = cycle
    return best or list(remaining)


def resolve(graph: ResourceGraph) -> List[ResourceNode]:
    """Produce the deterministic apply order of a graph.

    Args:
        graph: Graph from graphmaker.build()

    Returns:
        Nodes in dependency order

    Raises:
        CycleError: Naming the minimal cycle when the edges are cyclic
    """
    ids = [node.id for node in graph]
    deps = {node.id: node.dependencies for node in graph}
    order = topological_sort(ids, deps)
    logger.debug(f"Resolved apply order: {', '.join(order)}")
    return [graph.get(node_id) for node_id in order]


def reverse_order(graph: ResourceGraph) -> List[ResourceNode]:
    """Destroy order: every node before the nodes it depends on."""
    return list(reversed(resolve(graph)))


def transitive_dependents(
    resource_id: str, dependents: Dict[str, List[str]]
) -> List[str]:
    """All nodes reachable from resource_id along dependent edges."""
    seen: List[str] = []
    queue = deque(dependents.get(resource_id, []))
    while queue:
        node_id = queue.popleft()
        if node_id in seen:
            continue
        seen.append(node_id)
        queue.extend(dependents.get(node_id, []))
    return seen


def dependents(graph: ResourceGraph, resource_id: str) -> List[str]:
    """Transitive dependents of a node within a graph."""
    direct = {node.id: graph.dependents(node.id) for node in graph}
    return transitive_dependents(resource_id, direct)
