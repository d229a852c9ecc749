from __future__ import annotations

"""Top-level CLI for syncing requirements baselines into MMS."""

import click

from dngSync import __version__
from dngSync.cli.delta_cmd import delta
from dngSync.cli.sync_cmd import baselines, export, sync


@click.group()
@click.version_option(__version__)
def cli() -> None:  # pragma: no cover - simple wrapper
    """dngSync command line."""


cli.add_command(sync)
cli.add_command(baselines)
cli.add_command(export)
cli.add_command(delta)


if __name__ == "__main__":  # pragma: no cover
    cli()
