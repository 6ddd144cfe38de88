"""Unit tests for modules/utils/string_utils.py"""

import unittest
import sys
from pathlib import Path

# Add modules directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from modules.utils.string_utils import plural, shorten


class TestShorten(unittest.TestCase):
    """Test shorten() used for one-line console values."""

    def test_short_text_unchanged(self):
        self.assertEqual(shorten("34.1.2.3"), "34.1.2.3")

    def test_long_text_cut(self):
        self.assertEqual(shorten("a" * 10, width=4), "aaaa...")

    def test_newlines_flattened(self):
        self.assertEqual(shorten("apiVersion: v1\nkind: Config"), "apiVersion: v1\\nkind: Config")

    def test_zero_width_disables_cut(self):
        self.assertEqual(shorten("a" * 100, width=0), "a" * 100)


class TestPlural(unittest.TestCase):
    def test_singular(self):
        self.assertEqual(plural(1, "resource"), "1 resource")

    def test_plural(self):
        self.assertEqual(plural(0, "resource"), "0 resources")
        self.assertEqual(plural(3, "output"), "3 outputs")


if __name__ == "__main__":
    unittest.main()
