"""Unit tests for Graphviz rendering of the resource graph."""

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import graphviz

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import modules.engine as engine
from modules.drawing import build_diagram, node_label, node_status, render_graph
from modules.graphmaker import build
from modules.provisioners.local import LocalProvisioner
from modules.resolver import resolve
from modules.state import empty_state, record_resource
from tests.fixtures.stack_samples import ENVIRON, gke_stack


class TestBuildDiagram(unittest.TestCase):
    def setUp(self):
        self.graph = build(gke_stack(), environ=ENVIRON)

    def test_provider_clusters(self):
        source = build_diagram(self.graph).source

        self.assertIn("subgraph cluster_gcp {", source)
        self.assertIn("subgraph cluster_kubernetes {", source)
        self.assertIn("subgraph cluster_gcp_group {", source)
        self.assertIn("label=GCP", source)
        self.assertIn("label=VPC", source)

    def test_edges_by_kind(self):
        source = build_diagram(self.graph).source

        self.assertIn("N -> X [style=dashed]", source)
        self.assertIn("P -> I [style=solid]", source)

    def test_direction(self):
        self.assertIn("rankdir=LR", build_diagram(self.graph, direction="LR").source)

    def test_failed_node_coloured(self):
        engine.apply(resolve(self.graph), LocalProvisioner(fail=["X"]), self.graph)
        source = build_diagram(self.graph).source
        self.assertIn("#ffcdd2", source)
        self.assertIn("#fff9c4", source)


class TestNodeHelpers(unittest.TestCase):
    def test_node_label(self):
        self.assertEqual(node_label("X", "gcp:container:Cluster"), "X\\n(Cluster)")

    def test_status_from_state(self):
        graph = build(gke_stack(), environ=ENVIRON)
        state = empty_state()
        record_resource(state, "N", "gcp:compute:Network", {}, {"id": "n-1"}, [])

        self.assertEqual(node_status(graph, state, "N"), "applied")
        self.assertEqual(node_status(graph, state, "X"), "pending")
        self.assertEqual(node_status(graph, None, "N"), "pending")


class TestRenderGraph(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.outfile = os.path.join(self.tmpdir.name, "diagram")
        self.graph = build(gke_stack(), environ=ENVIRON)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_writes_dot_and_image(self):
        with patch.object(graphviz.Digraph, "pipe", return_value=b"PNGDATA") as pipe:
            written = render_graph(self.graph, outfile=self.outfile, format="png")

        pipe.assert_called_once_with(format="png")
        self.assertEqual(written, [self.outfile + ".dot", self.outfile + ".png"])
        with open(self.outfile + ".png", "rb") as file:
            self.assertEqual(file.read(), b"PNGDATA")

    def test_missing_graphviz_keeps_dot(self):
        error = graphviz.ExecutableNotFound(["dot"])
        with patch.object(graphviz.Digraph, "pipe", side_effect=error):
            written = render_graph(self.graph, outfile=self.outfile, format="svg")

        self.assertEqual(written, [self.outfile + ".dot"])
        with open(self.outfile + ".dot") as file:
            self.assertIn("digraph gke", file.read())


if __name__ == "__main__":
    unittest.main()
