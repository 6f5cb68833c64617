"""
tern.cli.template_cmd — tern template command.

  tern template myapp.stack:stack            — YAML to stdout
  tern template myapp.stack -o out.json --format json
  tern template myapp.stack --set cfgStep.Mode=reseed
"""

import sys

import click

from tern.cli.loader import LoadError, load_stack
from tern.core.values import parse_set_values
from tern.errors import TernError
from tern.template.synth import synthesize


@click.command("template")
@click.argument("target")
@click.option("-o", "--output", default=None,
              help="Output file (default: stdout)")
@click.option("--format", "output_format", default=None,
              type=click.Choice(["yaml", "json"]),
              help="Output format (default: config output_format)")
@click.option("--set", "set_args", multiple=True,
              help="Step property override (step.key=value)")
@click.pass_obj
def template_cmd(cfg, target, output, output_format, set_args):
    """Build the stack graph and synthesize its template."""
    output_format = output_format or cfg.output_format

    try:
        stack = load_stack(target, cfg.stack_name)
        stack.override(parse_set_values(list(set_args)))
        template = synthesize(stack.build())
    except (LoadError, TernError, ValueError, TypeError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    text = template.to_json() if output_format == "json" else template.to_yaml()
    write_output(text, output)


def write_output(text, output):
    if output:
        with open(output, "w") as f:
            f.write(text)
        click.echo(f"Written to {output}", err=True)
    else:
        click.echo(text)
