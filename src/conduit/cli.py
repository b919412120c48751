"""Root CLI group and version flag."""

import click

from conduit import __version__
from conduit.commands.run import run


@click.group()
@click.version_option(version=__version__, prog_name="conduit")
def cli() -> None:
    """Conduit — stream events from external agent CLIs and sessions."""


cli.add_command(run)
