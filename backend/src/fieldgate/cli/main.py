"""fieldgate CLI entry point."""

import click


@click.group()
def cli():
    """fieldgate: schema registry and field-level access control CLI."""
    pass


# Register subcommand groups
from fieldgate.cli.definitions_cmd import definitions  # noqa: E402

cli.add_command(definitions)
