from __future__ import annotations

"""Offline diff of two element snapshot files."""

import json
from pathlib import Path

import click

from dngSync.core.errors import DataFormatError
from dngSync.kg.delta import compute_delta, index_records, stream_delta
from dngSync.monitor.snapshot_store import read_records


@click.command()
@click.argument("old", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("new", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--root-id", default=None, help="Synthetic project root id to leave out of the diff.")
@click.option(
    "--streaming",
    is_flag=True,
    default=False,
    help="Consume NEW record by record instead of loading it whole.",
)
def delta(old: Path, new: Path, root_id: str | None, streaming: bool) -> None:
    """Print the added records and deleted ids between OLD and NEW JSONL snapshots."""

    exclude = (root_id,) if root_id else ()
    try:
        old_map = index_records(read_records(old), source=str(old))
        if streaming:
            result = stream_delta(old_map, read_records(new), exclude=exclude)
        else:
            result = compute_delta(old_map, index_records(read_records(new), source=str(new)), exclude=exclude)
    except DataFormatError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps({"added": result.added, "deleted": result.deleted}, indent=2, sort_keys=True))


__all__ = ["delta"]
