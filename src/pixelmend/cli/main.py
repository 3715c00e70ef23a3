"""Click CLI entry point for pixelmend."""

from __future__ import annotations

import click

from pixelmend._version import __version__
from pixelmend.core.output import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="pixelmend")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """pixelmend - find the code behind a visual regression and fix it.

    Localize pixel differences to source lines, try candidate fixes, and
    keep only the ones that make the screenshots match again.
    """
    setup_logging(verbose)


# Import and register subcommands
from pixelmend.cli.heal_cmd import heal  # noqa: E402
from pixelmend.cli.localize_cmd import localize  # noqa: E402
from pixelmend.cli.undo_cmd import undo  # noqa: E402
from pixelmend.cli.kb_cmd import kb  # noqa: E402

cli.add_command(heal)
cli.add_command(localize)
cli.add_command(undo)
cli.add_command(kb)


if __name__ == "__main__":
    cli()
