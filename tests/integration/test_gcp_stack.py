"""Integration tests for the shipped GKE stacks.

Loads each stack under stacks/ from disk and runs it through the full
build, resolve, apply and project pipeline with the local provisioner.
"""

import os
import sys
import tempfile
import unittest
from pathlib import Path

import yaml

# Add modules directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

import modules.engine as engine
import modules.fileparser as fileparser
import modules.graphmaker as graphmaker
import modules.planner as planner
import modules.resolver as resolver
import modules.state as state_module
from modules.exceptions import CredentialMissing
from modules.outputs import kubeconfig_for, project
from modules.provisioners.local import LocalProvisioner
from modules.references import UNAVAILABLE
from tests.fixtures.stack_samples import ENVIRON, FULL_ENVIRON, PROJECT, sample_stack_path


class TestGcpInfraStack(unittest.TestCase):
    """The full stack: network, cluster, node pool, ingress and three databases."""

    def setUp(self):
        self.stack = fileparser.load_stack(sample_stack_path("gcp-infra"))

    def build(self, overrides=None, environ=FULL_ENVIRON):
        graph = graphmaker.build(self.stack, overrides, environ=environ)
        return graph, resolver.resolve(graph)

    def test_apply_order(self):
        _, order = self.build()
        ids = [node.id for node in order]

        self.assertEqual(ids[:3], ["gcp-infra-network", "gcp-infra-subnet", "allow-database-nodeports"])
        for before, after in [
            ("gcp-infra-cluster", "gcp-infra-nodes"),
            ("gcp-infra-cluster", "gke-k8s"),
            ("gcp-infra-nodes", "ingress-nginx-ns"),
            ("ingress-nginx-ns", "ingress-nginx"),
            ("databases", "postgresql"),
            ("databases", "redis"),
            ("databases", "mongodb"),
        ]:
            self.assertLess(ids.index(before), ids.index(after), f"{before} -> {after}")

    def test_full_apply(self):
        graph, order = self.build()
        state = state_module.empty_state(graph.name)
        report = engine.apply(order, LocalProvisioner(), graph, state)

        self.assertTrue(report.ok, report.as_dict())
        self.assertEqual(len(report.applied), 12)
        values = project(graph)
        self.assertNotIn(UNAVAILABLE, values.values())
        self.assertEqual(values["clusterNameOutput"], "gcp-infra")
        self.assertEqual(values["clusterLocation"], "asia-southeast1-a")
        self.assertEqual(values["ingressNginxStatus"]["status"], "deployed")
        self.assertEqual(values["clusterProject"], PROJECT)
        self.assertEqual(values["ingressNginxNamespace"], "ingress-nginx")
        self.assertEqual(values["ingressNginxServiceName"], "ingress-nginx-controller")

        # The provider's kubeconfig template renders the same document the
        # cluster outputs produce through render_kubeconfig()
        rendered = yaml.safe_load(values["kubeconfigOutput"])
        expected = yaml.safe_load(kubeconfig_for(graph.get("gcp-infra-cluster").outputs))
        self.assertEqual(rendered, expected)
        self.assertEqual(rendered["current-context"], f"{PROJECT}_asia-southeast1-a_gcp-infra")

        release = state["resources"]["postgresql"]
        self.assertEqual(release["properties"]["values"]["auth"]["password"], "pg-s3cret")
        self.assertEqual(release["properties"]["namespace"], "databases")

    def test_cluster_failure_keeps_network(self):
        graph, order = self.build()
        report = engine.apply(order, LocalProvisioner(fail=["gcp-infra-cluster"]), graph)

        self.assertEqual(
            report.applied,
            ["gcp-infra-network", "gcp-infra-subnet", "allow-database-nodeports"],
        )
        self.assertEqual(list(report.failed), ["gcp-infra-cluster"])
        self.assertEqual(len(report.blocked), 8)
        values = project(graph)
        self.assertEqual(values["networkName"], "gcp-infra-network")
        self.assertIs(values["kubeconfigOutput"], UNAVAILABLE)
        self.assertIs(values["clusterEndpoint"], UNAVAILABLE)

    def test_disable_optional_releases(self):
        graph, _ = self.build(
            {"enableIngress": False, "enableRedis": "false", "enableMongodb": False}
        )
        ids = {node.id for node in graph}

        self.assertNotIn("ingress-nginx", ids)
        self.assertNotIn("redis", ids)
        self.assertIn("postgresql", ids)
        self.assertNotIn("ingressNginxStatus", graph.outputs)
        self.assertNotIn("ingressNginxServiceName", graph.outputs)
        self.assertIn("clusterProject", graph.outputs)

    def test_missing_secret_aborts_before_provisioning(self):
        environ = dict(FULL_ENVIRON)
        del environ["MONGODB_PASSWORD"]
        with self.assertRaises(CredentialMissing) as ctx:
            self.build(environ=environ)
        self.assertEqual(ctx.exception.env_var, "MONGODB_PASSWORD")

    def test_node_count_change_is_in_place(self):
        provisioner = LocalProvisioner()
        graph, order = self.build()
        state = state_module.empty_state(graph.name)
        engine.apply(order, provisioner, graph, state)
        provisioner.calls.clear()

        graph, order = self.build({"nodeCount": 3})
        self.assertEqual(
            {s["id"]: s["action"] for s in planner.preview(graph, state)}["gcp-infra-nodes"],
            planner.UPDATE,
        )
        report = engine.apply(order, provisioner, graph, state)
        self.assertEqual(report.provisioned(), ["gcp-infra-nodes"])


class TestSmallerStacks(unittest.TestCase):
    def test_gke_minimal_round_trip(self):
        stack = fileparser.load_stack(sample_stack_path("gke-minimal"))
        graph = graphmaker.build(stack, environ=ENVIRON)
        provisioner = LocalProvisioner()
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "state.json")
            state = state_module.load_state(path, graph.name)
            engine.apply(resolver.resolve(graph), provisioner, graph, state)
            state_module.save_state(path, state)

            state = state_module.load_state(path, graph.name)
            report = engine.destroy(state, provisioner)

        self.assertEqual(
            report.destroyed,
            ["gcp-infra-nodes", "gcp-infra-cluster", "gcp-infra-subnet", "gcp-infra-network"],
        )
        self.assertEqual(provisioner.resources, {})

    def test_hcl_stack_matches_yaml_semantics(self):
        stack = fileparser.load_stack(sample_stack_path("gke-hcl"))
        graph = graphmaker.build(stack, environ=FULL_ENVIRON)
        order = [node.id for node in resolver.resolve(graph)]

        self.assertEqual(order, ["network", "cluster", "nodes", "databases", "postgresql"])
        report = engine.apply(resolver.resolve(graph), LocalProvisioner(), graph)
        self.assertTrue(report.ok)
        self.assertTrue(project(graph)["clusterEndpoint"].startswith("34."))


if __name__ == "__main__":
    unittest.main()
