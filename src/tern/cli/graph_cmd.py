"""
tern.cli.graph_cmd — tern graph command.

Prints the resources in deploy order, then the dependency edges.
"""

import sys

import click

from tern.cli.loader import LoadError, load_stack
from tern.errors import TernError


@click.command("graph")
@click.argument("target")
@click.pass_obj
def graph_cmd(cfg, target):
    """Show the stack's resources in order and their dependencies."""
    try:
        graph = load_stack(target, cfg.stack_name).build()
    except (LoadError, TernError, ValueError, TypeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Stack: {graph.stack_name} ({len(graph)} resources)")
    for i, record in enumerate(graph, 1):
        owner = f"  [{graph.records[record.owner].name}]" if record.owner else ""
        click.echo(f"{i:>3}. {record.logical_id:<50} {record.kind:<13} {record.name}{owner}")

    edges = graph.edges
    if edges:
        click.echo("")
        click.echo("Dependencies:")
        for consumer, producer in edges:
            click.echo(f"  {graph.records[consumer].name} → {graph.records[producer].name}")
