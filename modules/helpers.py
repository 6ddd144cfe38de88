"""Helper functions module for infragraph.

This module provides utility functions for source URL handling, command line
value parsing, secret masking and console output of plans, reports and graph
data.
"""

import json
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

import click
import yaml

from modules.planner import ACTION_SYMBOLS
from modules.references import UNAVAILABLE, render
from modules.resource_graph import ResourceGraph
from modules.utils import plural, shorten

MASK = "[secret]"

STATUS_COLOURS = {
    "applied": "green",
    "failed": "red",
    "blocked": "yellow",
    "pending": "white",
    "destroyed": "magenta",
}

ACTION_COLOURS = {
    "create": "green",
    "same": "white",
    "update": "yellow",
    "replace": "magenta",
    "delete": "red",
}


def check_for_domain(string: str) -> bool:
    """Check if string contains a domain extension.

    Args:
        string: String to check for domain extensions

    Returns:
        True if domain extension found
    """
    exts = [".com", ".net", ".org", ".io", ".biz", ".dev"]
    for dot in exts:
        if dot in string and not string.startswith("."):
            return True
    return False


def extract_subfolder_from_repo(source_url: str) -> Tuple[str, str]:
    """Extract repo URL and subfolder from a string.

    Handles URLs like 'https://github.com/user/repo.git//stacks/gcp'.

    Args:
        source_url: Git repository URL potentially with subfolder

    Returns:
        Tuple of (repo_url, subfolder) - subfolder is empty string if none exists
    """
    protocol_end = source_url.find("://")
    start = protocol_end + 3 if protocol_end != -1 else 0
    remaining = source_url[start:]
    if "//" in remaining:
        repo_part, subfolder = remaining.split("//", 1)
        return source_url[:start] + repo_part, subfolder.rstrip("/")
    return source_url, ""


def safe_dirname(url: str) -> str:
    """Turn a URL into a name usable as a directory on every platform."""
    return re.sub(r"[^0-9A-Za-z._-]+", "_", url).strip("_")


def parse_config_pairs(pairs: Iterable[str]) -> Dict[str, Any]:
    """Parse repeated --config key=value options.

    Values are read as YAML scalars so numbers and booleans keep their type.

    Examples:
        >>> parse_config_pairs(["nodeCount=3", "region=europe-west1"])
        {'nodeCount': 3, 'region': 'europe-west1'}

    Raises:
        click.BadParameter: If an item is not key=value
    """
    values: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"'{pair}' is not in key=value form")
        try:
            value = yaml.safe_load(raw) if raw else ""
        except yaml.YAMLError:
            value = raw
        values[key.strip()] = value if value is not None else raw
    return values


def mask_secrets(value: Any, secrets: List[str]) -> Any:
    """Replace secret values, also inside longer strings, with a mask."""
    if not secrets:
        return value
    if isinstance(value, dict):
        return {k: mask_secrets(v, secrets) for k, v in value.items()}
    if isinstance(value, list):
        return [mask_secrets(v, secrets) for v in value]
    if isinstance(value, str):
        for secret in sorted(secrets, key=len, reverse=True):
            if secret:
                value = value.replace(secret, MASK)
    return value


def printable(value: Any, width: int = 60) -> str:
    """Single line rendering of an output or property value."""
    if value is UNAVAILABLE:
        return click.style(str(UNAVAILABLE), fg="yellow")
    if isinstance(value, (dict, list)):
        text = json.dumps(render(value), sort_keys=True, default=str)
    else:
        text = str(render(value))
    return shorten(text, width)


def print_plan(steps: List[Dict[str, Any]], counts: Dict[str, int]) -> None:
    """Echo a preview the way 'plan' shows it."""
    click.echo(click.style("\nPlanned changes:", fg="white", bold=True))
    for step in steps:
        colour = ACTION_COLOURS.get(step["action"], "white")
        symbol = ACTION_SYMBOLS[step["action"]]
        line = f"  {symbol:>2} {step['id']} ({step['type']}) {step['action']}"
        if step["changed"]:
            line += f" [{', '.join(step['changed'])}]"
        if step["computed"]:
            line += " (depends on computed values)"
        click.echo(click.style(line, fg=colour))
    summary = ", ".join(f"{n} to {action}" for action, n in sorted(counts.items()))
    click.echo(f"\n  {summary or 'nothing to do'}")


def print_report(report: Any, graph: Optional[ResourceGraph] = None) -> None:
    """Echo an ApplyReport grouped by outcome."""
    for rid in report.applied:
        action = report.actions.get(rid, "")
        click.echo(click.style(f"  applied   {rid} ({action})", fg="green"))
    for rid in report.destroyed:
        click.echo(click.style(f"  destroyed {rid}", fg="magenta"))
    for rid, message in report.failed.items():
        if graph is not None:
            message = mask_secrets(message, graph.secrets)
        click.echo(click.style(f"  failed    {rid}: {message}", fg="red", bold=True))
    for rid in report.blocked:
        click.echo(click.style(f"  blocked   {rid}", fg="yellow"))
    for rid in report.pending:
        click.echo(click.style(f"  pending   {rid} (not started)", fg="white"))
    click.echo(f"\n  {plural(len(report.provisioned()), 'resource')} changed")


def print_outputs(values: Dict[str, Any], secrets: List[str], show_secrets: bool) -> None:
    click.echo(click.style("\nOutputs:", fg="white", bold=True))
    if not values:
        click.echo("  (none)")
    for name, value in values.items():
        if not show_secrets:
            value = mask_secrets(value, secrets)
        click.echo(f"  {name} = {printable(value)}")


def export_graph(graph: ResourceGraph, filename: str = "infragraph.debug.json") -> None:
    """Export the built graph to a JSON file for debugging.

    Args:
        graph: Graph to export
        filename: Output file
    """
    data = {
        "name": graph.name,
        "resources": {
            node.id: {
                "type": node.type,
                "properties": mask_secrets(render(node.properties), graph.secrets),
                "dependencies": node.dependencies,
                "options": node.options,
                "status": node.status.value,
            }
            for node in graph
        },
        "outputs": mask_secrets(render(graph.outputs), graph.secrets),
        "graphdict": graph.to_graphdict(),
    }
    with open(filename, "w") as file:
        json.dump(data, file, indent=4, default=str)
    click.echo(
        click.style(
            f"\nINFO: Debug flag used. Current graph has been written to {filename}\n",
            fg="yellow",
            bold=True,
        )
    )
