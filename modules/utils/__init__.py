"""Utility modules for infragraph.

This package contains utility modules for string manipulation and analysis of
resource graph adjacency dicts.
"""

from .string_utils import plural, shorten
from .graph_utils import (
    roots,
    leaves,
    depth_levels,
    group_by_level,
)

__all__ = [
    # String utilities
    "plural",
    "shorten",
    # Graph utilities
    "roots",
    "leaves",
    "depth_levels",
    "group_by_level",
]
