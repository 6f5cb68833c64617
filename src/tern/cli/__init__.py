"""
tern.cli — CLI entry point.

Commands:
  tern template TARGET [flags]   — Synthesize the stack template
  tern graph TARGET              — Show resource order and edges
  tern deploy TARGET [flags]     — Run custom steps locally, write snapshot
  tern discover ID -s FILE       — Show a resource's discovery metadata
"""

import sys

import click

from tern.config import load_config
from tern.errors import ConfigError
from tern.log import configure_logging
from tern.cli.template_cmd import template_cmd
from tern.cli.graph_cmd import graph_cmd
from tern.cli.deploy_cmd import deploy_cmd
from tern.cli.discover_cmd import discover_cmd


@click.group()
@click.version_option(package_name="tern-stack")
@click.option("-c", "--config", "config_file", default=None,
              help="Config file (default: ./tern.yaml)")
@click.option("--log-level", default=None,
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
              help="Log level (overrides config)")
@click.option("--log-format", default=None, type=click.Choice(["console", "json"]),
              help="Log format (overrides config)")
@click.pass_context
def main(ctx, config_file, log_level, log_format):
    """tern — Pythonic serverless stack DSL."""
    try:
        cfg = load_config(config_file)
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if log_level:
        cfg.log_level = log_level.upper()
    if log_format:
        cfg.log_format = log_format
    configure_logging(cfg.log_level, cfg.log_format, force=True)
    ctx.obj = cfg


main.add_command(template_cmd, "template")
main.add_command(graph_cmd, "graph")
main.add_command(deploy_cmd, "deploy")
main.add_command(discover_cmd, "discover")
