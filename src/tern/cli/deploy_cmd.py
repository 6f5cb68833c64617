"""
tern.cli.deploy_cmd — tern deploy command.

Runs one stack transition locally: every custom provisioning step is
invoked in dependency order, then the discovery snapshot is written.

  tern deploy myapp.stack --kind create --snapshot-out snapshot.json
"""

import sys

import click

from tern.cli.loader import LoadError, load_stack
from tern.core.values import parse_set_values
from tern.errors import TernError
from tern.provision.engine import ProvisioningEngine
from tern.provision.orchestrator import LocalOrchestrator
from tern.provision.protocol import TransitionKind


@click.command("deploy")
@click.argument("target")
@click.option("--kind", default="create",
              type=click.Choice(["create", "update", "delete"]),
              help="Stack transition to run")
@click.option("--snapshot-out", default=None,
              help="Write the discovery snapshot (JSON) to this file")
@click.option("--timeout", type=float, default=None,
              help="Per-step timeout in seconds (overrides config)")
@click.option("--set", "set_args", multiple=True,
              help="Step property override (step.key=value)")
@click.pass_obj
def deploy_cmd(cfg, target, kind, snapshot_out, timeout, set_args):
    """Run custom provisioning steps locally for one transition."""
    try:
        stack = load_stack(target, cfg.stack_name)
        stack.override(parse_set_values(list(set_args)))
        graph = stack.build()
    except (LoadError, TernError, ValueError, TypeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    transition = TransitionKind(kind.capitalize())
    click.echo(f"Running {transition.value} for {graph.stack_name}...", err=True)

    with ProvisioningEngine(
        graph,
        timeout=timeout or cfg.provision_timeout,
        max_workers=cfg.max_workers,
    ) as engine:
        result = LocalOrchestrator(graph, engine).run(transition)

    for lid, response in result.responses.items():
        name = graph.records[lid].name
        mark = "✓" if response.succeeded else "✗"
        line = f"{mark} {name} ({response.state.value})"
        if response.reason:
            line += f": {response.reason}"
        click.echo(line, err=True)
    for lid in result.skipped:
        click.echo(f"- {graph.records[lid].name} (skipped)", err=True)

    if snapshot_out:
        with open(snapshot_out, "w") as f:
            f.write(result.snapshot().to_json())
        click.echo(f"Snapshot written to {snapshot_out}", err=True)

    if not result.succeeded:
        sys.exit(1)
    click.echo(f"✓ {graph.stack_name} {transition.value} complete.", err=True)
