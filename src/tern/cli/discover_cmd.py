"""
tern.cli.discover_cmd — tern discover command.

Reads a snapshot written by `tern deploy` and prints one resource's
metadata, the way a deployed function would see it.
"""

import json
import sys

import click

from tern.discovery import DiscoverySnapshot, resolve
from tern.errors import ResourceNotFoundError


@click.command("discover")
@click.argument("logical_id")
@click.option("-s", "--snapshot", "snapshot_file", required=True,
              help="Snapshot JSON file")
def discover_cmd(logical_id, snapshot_file):
    """Print the discovery metadata of LOGICAL_ID."""
    try:
        with open(snapshot_file) as f:
            snapshot = DiscoverySnapshot.from_json(f.read())
    except (OSError, ValueError) as e:
        click.echo(f"Error: cannot read snapshot: {e}", err=True)
        sys.exit(1)

    try:
        result = resolve(logical_id, snapshot)
    except ResourceNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(json.dumps(result.metadata, indent=2))
