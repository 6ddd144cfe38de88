"""Unit tests for the provisioner plugins."""

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from modules.config_loader import ConfigurationError
from modules.exceptions import ProviderError
from modules.provisioners import (
    DEFAULT_PROVISIONER,
    load_provisioner,
    load_provisioner_options,
)
from modules.provisioners.command import CommandProvisioner
from modules.provisioners.local import LocalProvisioner

ECHO_SCRIPT = """
import json, sys
request = json.load(sys.stdin)
props = request["properties"]
print(json.dumps({"id": request["current_id"] or "phys-" + request["name"],
                  "seen": props, "arg": sys.argv[1]}))
"""

FAIL_SCRIPT = """
import sys
sys.stderr.write("quota exceeded\\n")
sys.exit(3)
"""


class TestLocalProvisioner(unittest.TestCase):
    def test_network_outputs(self):
        provisioner = LocalProvisioner()
        outputs = provisioner.apply_resource(
            "gcp:compute:Network", {"project": "demo"}, "gcp-infra-network"
        )
        self.assertTrue(outputs["id"].startswith("gcp-infra-network-"))
        self.assertEqual(outputs["name"], "gcp-infra-network")
        self.assertIn("/projects/demo/global/networks/", outputs["selfLink"])
        self.assertIn(outputs["id"], provisioner.resources)

    def test_subnetwork_gateway(self):
        outputs = LocalProvisioner().apply_resource(
            "gcp:compute:Subnetwork",
            {"project": "demo", "ipCidrRange": "10.0.0.0/20", "region": "asia-southeast1"},
            "subnet",
        )
        self.assertEqual(outputs["gatewayAddress"], "10.0.0.1")

    def test_cluster_outputs_deterministic(self):
        props = {"name": "gcp-infra", "project": "demo", "location": "asia-southeast1-a"}
        first = LocalProvisioner().apply_resource("gcp:container:Cluster", props, "X")
        second = LocalProvisioner().apply_resource("gcp:container:Cluster", props, "X")
        self.assertEqual(first, second)
        self.assertEqual(len(first["endpoint"].split(".")), 4)
        self.assertIn("clusterCaCertificate", first["masterAuth"])

    def test_update_keeps_id(self):
        provisioner = LocalProvisioner()
        created = provisioner.apply_resource("gcp:compute:Network", {"project": "a"}, "n")
        updated = provisioner.apply_resource(
            "gcp:compute:Network", {"project": "b"}, "n", current_id=created["id"]
        )
        self.assertEqual(updated["id"], created["id"])
        self.assertEqual(provisioner.calls[-1], ("apply", "n", created["id"]))

    def test_new_generation_gets_new_id(self):
        provisioner = LocalProvisioner()
        first = provisioner.apply_resource("gcp:compute:Network", {"project": "a"}, "n")
        second = provisioner.apply_resource("gcp:compute:Network", {"project": "a"}, "n")
        self.assertNotEqual(first["id"], second["id"])

    def test_injected_failures(self):
        provisioner = LocalProvisioner(fail=["X"], fail_destroy=["N"])
        with self.assertRaises(ProviderError) as ctx:
            provisioner.apply_resource("gcp:container:Cluster", {}, "X")
        self.assertEqual(ctx.exception.resource_id, "X")

        network = provisioner.apply_resource("gcp:compute:Network", {"project": "a"}, "N")
        with self.assertRaises(ProviderError):
            provisioner.destroy_resource(network["id"], "gcp:compute:Network")
        self.assertIn(network["id"], provisioner.resources)

    def test_destroy_removes_resource(self):
        provisioner = LocalProvisioner()
        outputs = provisioner.apply_resource("gcp:compute:Network", {"project": "a"}, "n")
        provisioner.destroy_resource(outputs["id"])
        self.assertEqual(provisioner.resources, {})


class TestCommandProvisioner(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.echo = self._script("echo.py", ECHO_SCRIPT)
        self.fail = self._script("fail.py", FAIL_SCRIPT)

    def tearDown(self):
        self.tmpdir.cleanup()

    def _script(self, name, body):
        path = os.path.join(self.tmpdir.name, name)
        with open(path, "w") as file:
            file.write(body)
        return path

    def test_apply_sends_properties_and_reads_outputs(self):
        provisioner = CommandProvisioner(
            {"*": {"apply": [sys.executable, self.echo, "{type}"]}}
        )
        outputs = provisioner.apply_resource(
            "gcp:compute:Network", {"project": "demo"}, "net"
        )
        self.assertEqual(outputs["id"], "phys-net")
        self.assertEqual(outputs["seen"], {"project": "demo"})
        self.assertEqual(outputs["arg"], "gcp:compute:Network")

    def test_type_specific_command_wins(self):
        provisioner = CommandProvisioner(
            {
                "gcp:compute:Network": {"apply": [sys.executable, self.echo, "network"]},
                "*": {"apply": [sys.executable, self.fail]},
            }
        )
        outputs = provisioner.apply_resource("gcp:compute:Network", {}, "net", "id-9")
        self.assertEqual(outputs["id"], "id-9")
        self.assertEqual(outputs["arg"], "network")

    def test_non_zero_exit(self):
        provisioner = CommandProvisioner({"*": {"apply": [sys.executable, self.fail]}})
        with self.assertRaises(ProviderError) as ctx:
            provisioner.apply_resource("gcp:compute:Network", {}, "net")
        self.assertIn("quota exceeded", str(ctx.exception))
        self.assertEqual(ctx.exception.context["exit_code"], 3)

    def test_missing_command(self):
        provisioner = CommandProvisioner({})
        with self.assertRaises(ProviderError):
            provisioner.destroy_resource("net-1", "gcp:compute:Network")

    def test_destroy_formats_id(self):
        marker = os.path.join(self.tmpdir.name, "deleted")
        script = self._script(
            "delete.py", f"import sys\nopen({marker!r}, 'w').write(sys.argv[1])\n"
        )
        provisioner = CommandProvisioner({"*": {"destroy": [sys.executable, script, "{id}"]}})
        provisioner.destroy_resource("net-1", "gcp:compute:Network")
        with open(marker) as file:
            self.assertEqual(file.read(), "net-1")

    def test_command_not_found(self):
        provisioner = CommandProvisioner({"*": {"apply": ["/nonexistent/infragraph-cmd"]}})
        with self.assertRaises(ProviderError):
            provisioner.apply_resource("gcp:compute:Network", {}, "net")


class TestLoadProvisioner(unittest.TestCase):
    def test_default_is_local(self):
        self.assertIsInstance(load_provisioner(DEFAULT_PROVISIONER), LocalProvisioner)

    def test_options_passed_through(self):
        provisioner = load_provisioner("LOCAL", {"fail": ["X"], "delay": 0})
        self.assertEqual(provisioner.fail, {"X"})

    def test_command_from_options(self):
        provisioner = load_provisioner(
            "command", {"commands": {"*": {"apply": ["true"]}}, "timeout": 5}
        )
        self.assertIsInstance(provisioner, CommandProvisioner)
        self.assertEqual(provisioner.timeout, 5)

    def test_unknown_name(self):
        with self.assertRaises(ValueError):
            load_provisioner("terraform")

    def test_options_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "provisioner.yaml")
            with open(path, "w") as file:
                file.write("fail:\n  - gcp-infra-cluster\n")
            self.assertEqual(
                load_provisioner_options(path), {"fail": ["gcp-infra-cluster"]}
            )
            with open(path, "w") as file:
                file.write("- just\n- a list\n")
            with self.assertRaises(ConfigurationError):
                load_provisioner_options(path)
        self.assertEqual(load_provisioner_options(None), {})


if __name__ == "__main__":
    unittest.main()
