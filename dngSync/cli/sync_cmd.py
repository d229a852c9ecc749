from __future__ import annotations

"""Commands talking to the requirements server: sync, baselines and export."""

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import click

from api_clients.mms_client import MmsClient
from api_clients.oslc_client import OslcClient
from dngSync.config import SyncConfig, load_config
from dngSync.core.errors import (
    ConfigError,
    DataFormatError,
    HttpError,
    LineageError,
    NetworkError,
    TargetError,
)
from dngSync.core.project import DngProject
from dngSync.kg.sink import NTriplesSink
from dngSync.monitor.snapshot_store import SnapshotStore, atomic_text
from dngSync.security.cred_store import get_secret
from dngSync.sync.orchestrator import SyncOrchestrator
from dngSync.transforms.elements import ElementTranslator

T = TypeVar("T")

_FAILURES = (ConfigError, DataFormatError, HttpError, LineageError, NetworkError, TargetError)

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with sync settings.",
)
_project_option = click.option("--project", "project_name", default=None, help="Source project title.")
_folder_option = click.option(
    "--folder",
    "folders",
    multiple=True,
    help="Seed the crawl from this folder (id or URI) and its subfolders. Repeatable.",
)
_use_folders_option = click.option(
    "--use-folders/--no-use-folders",
    default=None,
    help="Seed the crawl by walking the project's folder tree.",
)


def _source_client(cfg: SyncConfig) -> OslcClient:
    return OslcClient(
        cfg.dng_origin,
        username=get_secret("DNG_USER", required=True),
        password=get_secret("DNG_PASS", required=True),
        timeout=cfg.http_timeout,
        max_connections=cfg.requests,
    )


def _project(client: OslcClient, cfg: SyncConfig) -> DngProject:
    if not cfg.project_name:
        raise ConfigError("A source project name is required (--project or DNG_PROJECT)")
    return DngProject(
        client,
        cfg.project_name,
        modules=cfg.modules,
        depth=cfg.crawl_depth,
        concurrency=cfg.requests,
        retry=cfg.retry_policy(),
        blacklist=cfg.blacklist(),
        folders=cfg.folders,
        use_folders=cfg.use_folders,
        page_size=cfg.folder_page_size,
    )


def _with_project(cfg: SyncConfig, action: Callable[[DngProject], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with _source_client(cfg) as client:
            await client.authenticate()
            return await action(_project(client, cfg))

    try:
        return asyncio.run(runner())
    except _FAILURES as exc:
        raise click.ClickException(str(exc)) from exc


@click.command()
@click.argument("target")
@_project_option
@click.option("--requests", "requests_", type=int, default=None, help="Maximum concurrent source requests.")
@click.option("--depth", type=int, default=None, help="Crawl depth for optional links.")
@click.option("--reset", is_flag=True, default=False, help="Delete and recreate the target project first.")
@click.option("--head/--no-head", "head_sync", default=None, help="Sync the live stream head after baselines.")
@_folder_option
@_use_folders_option
@_config_option
def sync(
    target: str,
    project_name: str | None,
    requests_: int | None,
    depth: int | None,
    reset: bool,
    head_sync: bool | None,
    folders: tuple[str, ...],
    use_folders: bool | None,
    config_path: Path | None,
) -> None:
    """Replay every baseline of a project into TARGET (ORG/PROJECT)."""

    org, sep, mms_project = target.partition("/")
    if not sep or not org or not mms_project or "/" in mms_project:
        raise click.BadParameter("expected ORG/PROJECT", param_hint="TARGET")
    try:
        cfg = load_config(
            config_path,
            project_name=project_name,
            requests=requests_,
            crawl_depth=depth,
            head_sync=head_sync,
            folders=list(folders) or None,
            use_folders=use_folders,
            mms_org=org,
            mms_project=mms_project,
        )
        mms = MmsClient(
            cfg.mms_origin,
            cfg.mms_org,
            cfg.mms_project,
            username=get_secret("MMS_USER", required=True),
            password=get_secret("MMS_PASS", required=True),
            project_name=cfg.project_name,
            batch_size=cfg.batch_size,
            safety=cfg.safety,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    async def run(project: DngProject) -> Any:
        translator = ElementTranslator(mms.project_id, cfg.project_name, cfg.dng_origin)
        store = SnapshotStore(cfg.project_dir())
        orchestrator = SyncOrchestrator(project, mms, store, translator, ref=cfg.mms_ref, head_sync=cfg.head_sync)
        return await orchestrator.run(reset=reset)

    report = _with_project(cfg, run)
    click.echo(
        json.dumps(
            {
                "run_id": report.run_id,
                "created": report.created,
                "applied": report.applied,
                "skipped": report.skipped,
                "head": report.head,
            },
            indent=2,
        )
    )


@click.command()
@_project_option
@_config_option
def baselines(project_name: str | None, config_path: Path | None) -> None:
    """Print the reconstructed baseline lineage of a project."""

    try:
        cfg = load_config(config_path, project_name=project_name)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    async def run(project: DngProject) -> Any:
        return await project.fetch_baselines()

    history = _with_project(cfg, run)
    if history is None:
        click.echo(json.dumps({"histories": {}, "map": {}}, indent=2))
        return
    payload = {
        "histories": history.histories,
        "map": {uri: record.to_dict() for uri, record in history.baselines.items()},
    }
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


@click.command()
@_project_option
@click.option("--context", default=None, help="Configuration context (baseline or stream URI).")
@click.option(
    "--out",
    "out_path",
    type=click.Path(dir_okay=False, path_type=Path),
    required=True,
    help="N-Triples output file.",
)
@_folder_option
@_use_folders_option
@_config_option
def export(
    project_name: str | None,
    context: str | None,
    out_path: Path,
    folders: tuple[str, ...],
    use_folders: bool | None,
    config_path: Path | None,
) -> None:
    """Crawl a project into an N-Triples file."""

    try:
        cfg = load_config(
            config_path,
            project_name=project_name,
            folders=list(folders) or None,
            use_folders=use_folders,
        )
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    async def run(project: DngProject) -> Any:
        with atomic_text(out_path) as fh:
            sink = NTriplesSink(fh)
            stats = await project.export(sink, context=context)
        return {**stats, "written": sink.count, "triples": sink.triples}

    stats = _with_project(cfg, run)
    click.echo(json.dumps(stats, sort_keys=True))


__all__ = ["sync", "baselines", "export"]
