"""Graph analysis utilities for infragraph.

This module provides helpers that work on the plain adjacency dict returned by
ResourceGraph.to_graphdict() (node -> nodes that depend on it).
"""

from typing import Dict, List


def roots(graphdict: Dict[str, List[str]]) -> List[str]:
    """Nodes nothing points at, i.e. resources without dependencies."""
    pointed_at = {child for children in graphdict.values() for child in children}
    return [node for node in graphdict if node not in pointed_at]


def leaves(graphdict: Dict[str, List[str]]) -> List[str]:
    """Nodes no other node depends on."""
    return [node for node, children in graphdict.items() if not children]


def depth_levels(graphdict: Dict[str, List[str]], order: List[str]) -> Dict[str, int]:
    """Longest-path depth of every node.

    Args:
        graphdict: Adjacency dict in apply direction
        order: A topological order of the nodes

    Returns:
        node -> level, roots are level 0. Nodes on the same level can be
        applied concurrently.
    """
    levels = {node: 0 for node in order}
    for node in order:
        for child in graphdict.get(node, []):
            levels[child] = max(levels[child], levels[node] + 1)
    return levels


def group_by_level(levels: Dict[str, int]) -> List[List[str]]:
    """Turn depth_levels() output into waves, preserving dict order within a wave."""
    waves: List[List[str]] = [[] for _ in range(max(levels.values(), default=-1) + 1)]
    for node, level in levels.items():
        waves[level].append(node)
    return waves
