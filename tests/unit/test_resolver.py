"""Unit tests for dependency ordering and cycle detection."""

import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from modules.exceptions import CycleError
from modules.graphmaker import build
from modules.resolver import (
    dependents,
    find_minimal_cycle,
    resolve,
    reverse_order,
    topological_sort,
    transitive_dependents,
)
from tests.fixtures.stack_samples import (
    ENVIRON,
    chain_stack,
    cycle_stack,
    gke_stack,
)


class TestTopologicalSort(unittest.TestCase):
    def test_respects_dependencies(self):
        order = topological_sort(["c", "b", "a"], {"c": ["b"], "b": ["a"]})
        self.assertEqual(order, ["a", "b", "c"])

    def test_declaration_order_breaks_ties(self):
        order = topological_sort(["z", "y", "x"], {})
        self.assertEqual(order, ["z", "y", "x"])

    def test_ready_node_declared_earlier_goes_first(self):
        # b becomes ready after a, but c (declared later) is ready from the start
        order = topological_sort(["a", "b", "c"], {"b": ["a"]})
        self.assertEqual(order, ["a", "b", "c"])

    def test_self_dependency(self):
        with self.assertRaises(CycleError) as ctx:
            topological_sort(["a"], {"a": ["a"]})
        self.assertEqual(ctx.exception.cycle, ["a", "a"])

    def test_is_deterministic(self):
        deps = {"d": ["a", "b"], "c": ["a"]}
        first = topological_sort(["a", "b", "c", "d"], deps)
        for _ in range(5):
            self.assertEqual(topological_sort(["a", "b", "c", "d"], deps), first)


class TestMinimalCycle(unittest.TestCase):
    def test_picks_shortest_cycle(self):
        # long cycle a -> b -> c -> d -> a plus short cycle c <-> d
        deps = {"a": ["d"], "b": ["a"], "c": ["b", "d"], "d": ["c"]}
        cycle = find_minimal_cycle(["a", "b", "c", "d"], deps)
        self.assertEqual(cycle, ["c", "d", "c"])

    def test_ignores_nodes_outside_cycle(self):
        deps = {"a": ["c"], "b": ["a"], "c": ["b"], "d": ["a"]}
        cycle = find_minimal_cycle(["a", "b", "c", "d"], deps)
        self.assertEqual(cycle, ["a", "b", "c", "a"])


class TestResolveGraph(unittest.TestCase):
    def test_gke_order(self):
        graph = build(gke_stack(), environ=ENVIRON)
        self.assertEqual([n.id for n in resolve(graph)], ["N", "X", "P", "I"])

    def test_chain_order(self):
        graph = build(chain_stack(), environ={})
        self.assertEqual([n.id for n in resolve(graph)], ["A", "B", "C", "D"])

    def test_reverse_order(self):
        graph = build(gke_stack(), environ=ENVIRON)
        self.assertEqual([n.id for n in reverse_order(graph)], ["I", "P", "X", "N"])

    def test_cycle_in_stack(self):
        graph = build(cycle_stack(), environ={})
        with self.assertRaises(CycleError) as ctx:
            resolve(graph)
        self.assertEqual(ctx.exception.cycle, ["a", "b", "c", "a"])
        self.assertIn("a -> b -> c -> a", str(ctx.exception))

    def test_cycle_through_reference(self):
        stack = gke_stack()
        stack["resources"]["N"]["properties"]["description"] = "${X.name}"
        graph = build(stack, environ=ENVIRON)
        with self.assertRaises(CycleError) as ctx:
            resolve(graph)
        self.assertEqual(ctx.exception.cycle, ["N", "X", "N"])


class TestDependents(unittest.TestCase):
    def test_transitive_dependents(self):
        graph = build(gke_stack(), environ=ENVIRON)
        self.assertEqual(dependents(graph, "X"), ["P", "I"])
        self.assertEqual(dependents(graph, "I"), [])

    def test_transitive_dependents_from_map(self):
        direct = {"A": ["B"], "B": ["C"], "C": [], "D": []}
        self.assertEqual(transitive_dependents("A", direct), ["B", "C"])
        self.assertEqual(transitive_dependents("D", direct), [])


if __name__ == "__main__":
    unittest.main()
