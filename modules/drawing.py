"""Drawing module for infragraph.

This module renders the resource graph with Graphviz. Resources are grouped
in one box per provider, container-like resources (the VPC pieces, namespaces)
in a nested box, and coloured by the status the last run recorded. Edges
point in apply direction.
"""

import logging
from typing import Any, Dict, List, Optional

import click
import graphviz

import modules.config_loader as config_loader
from modules.resource_graph import ResourceGraph, ResourceStatus

logger = logging.getLogger(__name__)

STATUS_FILL = {
    "applied": "#c8e6c9",
    "failed": "#ffcdd2",
    "blocked": "#fff9c4",
    "pending": None,
    "applying": "#bbdefb",
}

DEFAULT_NODE_STYLE = {"shape": "box", "style": "rounded,filled", "fillcolor": "white"}


def node_status(graph: ResourceGraph, state: Optional[Dict[str, Any]], resource_id: str) -> str:
    """Status to colour by: the in-memory status if set, else whether state knows it."""
    node = graph.get(resource_id)
    if node.status != ResourceStatus.PENDING:
        return node.status.value
    if state and resource_id in state.get("resources", {}):
        return ResourceStatus.APPLIED.value
    return ResourceStatus.PENDING.value


def node_label(resource_id: str, resource_type: str) -> str:
    kind = resource_type.split(":")[-1]
    return f"{resource_id}\\n({kind})"


def build_diagram(
    graph: ResourceGraph, state: Optional[Dict[str, Any]] = None, direction: str = "TB"
) -> graphviz.Digraph:
    """Create the Graphviz digraph for a resource graph.

    Args:
        graph: Built resource graph
        state: Optional state dict used to colour applied resources
        direction: Graphviz rankdir

    Returns:
        graphviz.Digraph ready to render
    """
    diagram = graphviz.Digraph(name=graph.name, comment=f"infragraph stack {graph.name}")
    diagram.attr(rankdir=direction, label=graph.name, labelloc="t", fontsize="20")

    providers: Dict[str, List[str]] = {}
    for node in graph:
        providers.setdefault(config_loader.provider_of(node.type), []).append(node.id)

    for provider, ids in providers.items():
        sample_type = graph.get(ids[0]).type
        style = dict(
            config_loader.get_provider_constant(sample_type, "NODE_STYLE", DEFAULT_NODE_STYLE)
        )
        group_types = config_loader.get_provider_constant(sample_type, "GROUP_TYPES", [])
        group_label = config_loader.get_provider_constant(sample_type, "GROUP_LABEL", "")
        provider_name = getattr(
            config_loader.load_config(provider), "PROVIDER_NAME", provider.upper()
        )
        # Graphviz only draws boxes for subgraphs named cluster_*
        with diagram.subgraph(name=f"cluster_{provider}") as outer:
            outer.attr(label=provider_name, style="dashed", color="grey50")
            grouped = [rid for rid in ids if graph.get(rid).type in group_types]
            if grouped:
                with outer.subgraph(name=f"cluster_{provider}_group") as inner:
                    inner.attr(label=group_label, style="rounded", color="grey70")
                    for rid in grouped:
                        _add_node(inner, graph, state, rid, style)
            for rid in ids:
                if rid not in grouped:
                    _add_node(outer, graph, state, rid, style)

    for before, after in graph.edges():
        explicit = before in graph.get(after).depends_on
        diagram.edge(before, after, style="solid" if explicit else "dashed")
    return diagram


def _add_node(container, graph, state, resource_id: str, style: Dict[str, str]) -> None:
    node = graph.get(resource_id)
    attrs = dict(style)
    fill = STATUS_FILL.get(node_status(graph, state, resource_id))
    if fill:
        attrs["fillcolor"] = fill
    container.node(resource_id, label=node_label(resource_id, node.type), **attrs)


def render_graph(
    graph: ResourceGraph,
    state: Optional[Dict[str, Any]] = None,
    outfile: str = "infragraph",
    format: str = "png",
    direction: str = "TB",
) -> List[str]:
    """Write DOT source and, when Graphviz is installed, a rendered image.

    Args:
        graph: Built resource graph
        state: Optional state dict used to colour applied resources
        outfile: Output filename without extension
        format: Image format (png, svg, pdf)
        direction: Graphviz rankdir

    Returns:
        Paths of the files written
    """
    diagram = build_diagram(graph, state, direction)
    dot_path = f"{outfile}.dot"
    with open(dot_path, "w") as file:
        file.write(diagram.source)
    written = [dot_path]
    click.echo(f"  DOT source: {dot_path}")
    image = f"{outfile}.{format}"
    try:
        data = diagram.pipe(format=format)
    except graphviz.ExecutableNotFound:
        click.echo(
            click.style(
                "  WARNING: Graphviz 'dot' not found on PATH, only DOT source written",
                fg="yellow",
            )
        )
    else:
        with open(image, "wb") as file:
            file.write(data)
        written.append(image)
        click.echo(f"  Output file: {image}")
    logger.debug(f"Rendered {len(graph)} resources to {written}")
    return written
