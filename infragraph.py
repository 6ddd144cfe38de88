#!/usr/bin/env python
import json
import logging
import sys

import click

import modules.drawing as drawing
import modules.engine as engine
import modules.fileparser as fileparser
import modules.graphmaker as graphmaker
import modules.helpers as helpers
import modules.outputs as outputs
import modules.planner as planner
import modules.provisioners as provisioners
import modules.resolver as resolver
import modules.state as state_module
from modules.config_loader import ConfigurationError
from modules.exceptions import InfraGraphError
from modules.references import UNAVAILABLE
from modules.utils import depth_levels, group_by_level, leaves, plural, roots


__version__ = "0.3"

# Errors that abort a command before (or instead of) provisioning
FATAL_ERRORS = (InfraGraphError, ConfigurationError, ValueError)


def my_excepthook(exc_type, exc_value, exc_traceback):
    print(f"Unhandled error: {exc_type.__name__}: {exc_value} (use --debug for a traceback)")


def _setup(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not debug:
        sys.excepthook = my_excepthook


def _fail(error: Exception) -> None:
    click.echo(click.style(f"\nERROR: {error}\n", fg="red", bold=True), err=True)
    sys.exit(1)


def _load_graph(source, config, debug):
    """Read the stack and build its validated graph plus apply order."""
    stack = fileparser.load_stack(source)
    overrides = helpers.parse_config_pairs(config)
    graph = graphmaker.build(stack, overrides)
    order = resolver.resolve(graph)
    if debug:
        helpers.export_graph(graph)
    return graph, order


def _load_provisioner(provisioner, provisioner_config):
    options = provisioners.load_provisioner_options(provisioner_config)
    return provisioners.load_provisioner(provisioner, options)


def stack_options(func):
    """Options shared by every command that reads a stack."""
    func = click.option(
        "--config",
        "config",
        multiple=True,
        default=[],
        metavar="KEY=VALUE",
        help="Set a stack variable, may be repeated",
    )(func)
    func = click.option(
        "--source",
        default=".",
        help="Stack location (folder, stack file, https URL or git URL)",
    )(func)
    return common_options(func)


def common_options(func):
    func = click.option(
        "--state",
        "state_path",
        default=state_module.DEFAULT_STATE_FILE,
        envvar="INFRAGRAPH_STATE",
        show_default=True,
        help="Path of the JSON state file",
    )(func)
    func = click.option(
        "--debug", is_flag=True, default=False, help="Verbose logging and tracebacks"
    )(func)
    return func


def provisioner_options(func):
    func = click.option(
        "--timeout",
        type=click.FloatRange(min=0, min_open=True),
        default=None,
        help="Seconds after which no new resource is started",
    )(func)
    func = click.option(
        "--parallel",
        type=click.IntRange(min=1),
        default=None,
        envvar="INFRAGRAPH_PARALLEL",
        help="Maximum concurrent provisioning calls (default: unbounded)",
    )(func)
    func = click.option(
        "--provisioner-config",
        default=None,
        type=click.Path(exists=True, dir_okay=False),
        help="YAML options for the provisioner",
    )(func)
    func = click.option(
        "--provisioner",
        type=click.Choice(sorted(provisioners.PROVISIONER_MODULES)),
        default=provisioners.DEFAULT_PROVISIONER,
        envvar="INFRAGRAPH_PROVISIONER",
        show_default=True,
        help="Provisioning backend",
    )(func)
    return func


@click.version_option(version=__version__, prog_name="infragraph")
@click.group()
def cli():
    """
    infragraph builds a dependency graph from a declarative stack file and
    applies it through a provisioner, in dependency order.

    For help with a specific command type:

    infragraph [COMMAND] --help

    """
    pass


@cli.command()
@stack_options
def validate(debug, state_path, source, config):
    """Check the stack and show its apply order"""
    _setup(debug)
    try:
        graph, order = _load_graph(source, config, debug)
    except FATAL_ERRORS as e:
        _fail(e)
    graphdict = graph.to_graphdict()
    waves = group_by_level(depth_levels(graphdict, [n.id for n in order]))
    click.echo(
        click.style(
            f"\nStack '{graph.name}' is valid: {plural(len(graph), 'resource')}, "
            f"{plural(len(graph.outputs), 'output')}",
            fg="green",
            bold=True,
        )
    )
    click.echo("\nApply order:")
    for position, node in enumerate(order, start=1):
        click.echo(f"  {position:>3}. {node.id} ({node.type})")
    click.echo(f"\nConcurrent waves: {len(waves)}")
    for level, wave in enumerate(waves):
        click.echo(f"  {level}: {', '.join(wave)}")
    click.echo(f"\nStarts from: {', '.join(roots(graphdict))}")
    click.echo(f"Nothing depends on: {', '.join(leaves(graphdict))}")


@cli.command()
@stack_options
def plan(debug, state_path, source, config):
    """Preview what apply would change"""
    _setup(debug)
    try:
        graph, _ = _load_graph(source, config, debug)
        state = state_module.load_state(state_path, graph.name)
    except FATAL_ERRORS as e:
        _fail(e)
    steps = planner.preview(graph, state)
    helpers.print_plan(steps, planner.summarize(steps))


@cli.command()
@stack_options
@provisioner_options
@click.option(
    "--show-secrets", is_flag=True, default=False, help="Print secret values unmasked"
)
def apply(
    debug,
    state_path,
    source,
    config,
    provisioner,
    provisioner_config,
    parallel,
    timeout,
    show_secrets,
):
    """Create or update every resource in the stack"""
    _setup(debug)
    try:
        graph, order = _load_graph(source, config, debug)
        state = state_module.load_state(state_path, graph.name)
        backend = _load_provisioner(provisioner, provisioner_config)
    except FATAL_ERRORS as e:
        _fail(e)

    click.echo(
        click.style(
            f"\nApplying stack '{graph.name}' with the {provisioner} provisioner..",
            fg="white",
            bold=True,
        )
    )
    try:
        report = engine.apply(
            order,
            backend,
            graph,
            state=state,
            parallelism=parallel,
            timeout=timeout,
            show_progress=True,
        )
    finally:
        # Whatever got provisioned must be remembered, even if the run aborted
        state_module.save_state(state_path, state)

    values = outputs.project(graph)
    state["outputs"] = outputs.serializable(values)
    state["sensitive"] = sorted(
        name
        for name, value in values.items()
        if helpers.mask_secrets(value, graph.secrets) != value
    )
    state_module.save_state(state_path, state)

    helpers.print_report(report, graph)
    helpers.print_outputs(values, graph.secrets, show_secrets)
    if report.partial:
        click.echo(
            click.style(
                f"\nApply incomplete: {len(report.failed)} failed, "
                f"{len(report.blocked)} blocked, {len(report.pending)} not started",
                fg="red",
                bold=True,
            )
        )
        sys.exit(1)
    click.echo(click.style("\nApply complete!", fg="green", bold=True))


@cli.command()
@common_options
@provisioner_options
@click.option("--yes", is_flag=True, default=False, help="Do not ask for confirmation")
def destroy(debug, state_path, provisioner, provisioner_config, parallel, timeout, yes):
    """Delete every resource recorded in the state file"""
    _setup(debug)
    try:
        state = state_module.load_state(state_path)
        backend = _load_provisioner(provisioner, provisioner_config)
    except FATAL_ERRORS as e:
        _fail(e)
    if not state["resources"]:
        click.echo("Nothing to destroy, the state file records no resources.")
        return
    if not yes:
        click.confirm(
            f"Destroy {plural(len(state['resources']), 'resource')} of stack "
            f"'{state.get('stack')}'?",
            abort=True,
        )
    try:
        report = engine.destroy(state, backend, parallelism=parallel, timeout=timeout)
    finally:
        state_module.save_state(state_path, state)
    helpers.print_report(report)
    if report.partial:
        click.echo(click.style("\nDestroy incomplete", fg="red", bold=True))
        sys.exit(1)
    click.echo(click.style("\nDestroy complete!", fg="green", bold=True))


@cli.command(name="outputs")
@common_options
@click.argument("name", required=False)
@click.option("--json", "as_json", is_flag=True, default=False, help="Print as JSON")
@click.option(
    "--show-secrets", is_flag=True, default=False, help="Print secret values unmasked"
)
@click.option(
    "--kubeconfig",
    "cluster_id",
    default=None,
    metavar="RESOURCE",
    help="Print a kubeconfig for an applied GKE cluster resource",
)
def outputs_command(debug, state_path, name, as_json, show_secrets, cluster_id):
    """Show outputs recorded by the last apply (NAME prints one raw value)"""
    _setup(debug)
    try:
        state = state_module.load_state(state_path)
    except FATAL_ERRORS as e:
        _fail(e)
    if cluster_id:
        entry = state["resources"].get(cluster_id)
        if not entry or entry.get("type") != "gcp:container:Cluster":
            _fail(InfraGraphError(f"No applied GKE cluster named '{cluster_id}'"))
        try:
            click.echo(outputs.kubeconfig_for(entry["outputs"]), nl=False)
        except KeyError as e:
            _fail(InfraGraphError(f"Cluster '{cluster_id}' has no {e} output"))
        return
    values = dict(state.get("outputs", {}))
    if not show_secrets:
        for key in state.get("sensitive", []):
            if key in values:
                values[key] = helpers.MASK
    if name:
        if name not in values:
            _fail(InfraGraphError(f"No output named '{name}'"))
        value = values[name]
        if value is None:
            _fail(InfraGraphError(f"Output '{name}' is unavailable"))
        click.echo(value if isinstance(value, str) else json.dumps(value, indent=4))
        return
    if as_json:
        click.echo(json.dumps(values, indent=4, sort_keys=True))
        return
    helpers.print_outputs(
        {k: (UNAVAILABLE if v is None else v) for k, v in values.items()},
        [],
        True,
    )


@cli.command()
@stack_options
@click.option(
    "--outfile", default="infragraph", help="Filename for output (without extension)"
)
@click.option("--format", default="png", help="Image format (png/pdf/svg)")
def graph(debug, state_path, source, config, outfile, format):
    """Draw the resource graph coloured by last known status"""
    _setup(debug)
    try:
        resource_graph, _ = _load_graph(source, config, debug)
        state = state_module.load_state(state_path, resource_graph.name)
    except FATAL_ERRORS as e:
        _fail(e)
    click.echo(click.style("\nRendering Resource Graph..", fg="white", bold=True))
    drawing.render_graph(resource_graph, state, outfile, format)
    click.echo("  Completed!")


if __name__ == "__main__":
    cli()
