"""String manipulation utilities for infragraph.

This module provides small text helpers used when printing plans, reports and
outputs to the console.
"""


def shorten(text: str, width: int = 60) -> str:
    """Flatten newlines and cut text to width characters plus an ellipsis."""
    text = text.replace("\n", "\\n")
    if width and len(text) > width:
        return text[:width] + "..."
    return text


def plural(count: int, noun: str) -> str:
    """'1 resource', '3 resources'."""
    return f"{count} {noun}" if count == 1 else f"{count} {noun}s"
