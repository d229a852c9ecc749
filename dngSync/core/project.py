from __future__ import annotations

"""Source-side project access: discovery, requirement seeds, export and baselines."""

import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

from rdflib import Graph, URIRef
from rdflib.namespace import RDF, RDFS

from api_clients.oslc_client import OslcClient
from dngSync.core.context import BlacklistFilter
from dngSync.core.crawler import ResourceCrawler, RetryPolicy
from dngSync.core.errors import ConfigError, DataFormatError, HttpError
from dngSync.kg.lineage import (
    BaselineRecord,
    StreamRecord,
    baseline_from_graph,
    reconstruct_lineage,
    stream_from_graph,
)
from dngSync.kg.namespaces import DCT, IBM_NAV, OSLC, OSLC_CONFIG, OSLC_RM
from dngSync.kg.sink import GraphSink
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("project")

_SERVICES_RE = re.compile(r"^(.+)/rm/oslc_rm/([^/]+)/services\.xml$")
_REQUIREMENT_TYPES = (OSLC_RM.Requirement, OSLC_RM.RequirementCollection)
DEFAULT_FOLDER_PAGE_SIZE = 50_000


@dataclass
class ProjectInfo:
    id: str
    name: str
    services_uri: str
    components: List[str] = field(default_factory=list)
    query_base: Optional[str] = None


@dataclass
class BaselineHistory:
    """Ordered lineage plus the records it was built from."""

    histories: Dict[str, List[str]]
    baselines: Dict[str, BaselineRecord]
    streams: Dict[str, StreamRecord] = field(default_factory=dict)
    deleted_streams: int = 0

    def ordered(self) -> List[BaselineRecord]:
        return [self.baselines[uri] for uris in self.histories.values() for uri in uris]

    @property
    def stream_uri(self) -> Optional[str]:
        for uri in self.histories:
            return uri or None
        return None


def project_id_from_services(uri: str) -> str:
    match = _SERVICES_RE.match(uri)
    if not match:
        raise ConfigError(f"Unable to parse the project id from the service URI <{uri}>")
    return match.group(2)


def _query_base(graph: Graph) -> Optional[str]:
    for capability in sorted(graph.subjects(RDF.type, OSLC.QueryCapability)):
        types = set(graph.objects(capability, OSLC.resourceType))
        if any(t in types for t in _REQUIREMENT_TYPES):
            for base in sorted(graph.objects(capability, OSLC.queryBase)):
                return str(base)
    return None


def _grid_rows(body: Any) -> List[str]:
    """Artifact URIs from one page of a grid-view query response."""

    feed = body.get("feed") if isinstance(body, dict) else None
    if not isinstance(feed, dict):
        raise DataFormatError(f"Folder query response has no feed: {str(body)[:500]!r}")
    rows: List[str] = []
    for key, entries in feed.items():
        if not key.startswith("entry"):
            continue
        if isinstance(entries, dict):
            entries = [entries]
        for entry in entries or ():
            results = ((entry or {}).get("content") or {}).get("result") or []
            if isinstance(results, dict):
                results = [results]
            for binding in results:
                if binding.get("xmlAttributes", {}).get("name") != "R1":
                    continue
                uri = (binding.get("uri") or {}).get("value")
                if uri:
                    rows.append(uri)
    return rows


class DngProject:
    """A named project on the requirements server."""

    def __init__(
        self,
        client: OslcClient,
        name: str,
        *,
        modules: Sequence[str] = (),
        depth: float = 3,
        concurrency: int = 64,
        retry: RetryPolicy | None = None,
        blacklist: BlacklistFilter | None = None,
        folders: Sequence[str] = (),
        use_folders: bool = False,
        page_size: int = DEFAULT_FOLDER_PAGE_SIZE,
    ) -> None:
        self.client = client
        self.name = name
        self.modules = list(modules)
        self.folders = list(folders)
        self.use_folders = use_folders or bool(self.folders)
        self.page_size = page_size
        self.depth = depth if depth is not None else math.inf
        self.concurrency = concurrency
        self.retry = retry
        self.blacklist = blacklist
        self._info: ProjectInfo | None = None

    async def info(self) -> ProjectInfo:
        if self._info is not None:
            return self._info

        projects: Dict[str, str] = {}
        for catalog in await self.client.root_services():
            graph = await self.client.load(catalog)
            for subject, title in graph.subject_objects(DCT.title):
                if isinstance(subject, URIRef):
                    projects[str(title)] = str(subject)

        services_uri = projects.get(self.name)
        if services_uri is None:
            raise ConfigError(f"No such project named '{self.name}'. Projects found: {sorted(projects)}")
        _logger.info("project.resolved", project=self.name, uri=services_uri)

        graph = await self.client.load(services_uri)
        self._info = ProjectInfo(
            id=project_id_from_services(services_uri),
            name=self.name,
            services_uri=services_uri,
            components=sorted({str(o) for o in graph.objects(None, OSLC_CONFIG.component)}),
            query_base=_query_base(graph),
        )
        return self._info

    async def gather_requirements(self, client: OslcClient | None = None) -> List[str]:
        """Seed URIs for an export.

        Configured modules win, then folder traversal when enabled, and
        finally the project's requirement query base.
        """

        client = client or self.client
        found: Dict[str, None] = {}
        if self.modules:
            for module in self.modules:
                graph = await client.load(module)
                for artifact in graph.objects(URIRef(module), OSLC_RM.uses):
                    found[str(artifact)] = None
            _logger.info("project.requirements", source="modules", modules=len(self.modules), count=len(found))
            return list(found)

        if self.use_folders:
            info = await self.info()
            roots = [self._folder_uri(folder) for folder in (self.folders or [info.id])]
            visited: Set[str] = set()
            for root in roots:
                await self._walk_folders(client, info.id, root, visited, found)
            _logger.info("project.requirements", source="folders", folders=len(visited), count=len(found))
            return list(found)

        info = await self.info()
        if not info.query_base:
            raise ConfigError(f"Project '{self.name}' exposes no requirement query capability")
        graph = await client.load(info.query_base)
        for subject in sorted(graph.subjects(RDF.type, OSLC_RM.Requirement)):
            found[str(subject)] = None
        _logger.info("project.requirements", source="query", count=len(found))
        return list(found)

    def _folder_uri(self, folder: str) -> str:
        if folder.startswith(("http://", "https://")):
            return folder
        return f"{self.client.server}/rm/folders/{folder}"

    async def _folder_artifacts(self, client: OslcClient, project_id: str, folder: str) -> List[str]:
        rows: List[str] = []
        page = 1
        while True:
            batch = _grid_rows(await client.grid_page(project_id, folder, page=page, size=self.page_size))
            rows.extend(batch)
            if len(batch) < self.page_size:
                return rows
            page += 1

    async def _walk_folders(
        self,
        client: OslcClient,
        project_id: str,
        root: str,
        visited: Set[str],
        found: Dict[str, None],
    ) -> None:
        pending = [root]
        while pending:
            folder = pending.pop()
            if folder in visited:
                continue
            visited.add(folder)

            graph = await client.load(f"{folder}?childFolders=1")
            children = sorted(str(s) for s in graph.subjects(IBM_NAV.parent, URIRef(folder)))
            title = next((str(t) for t in graph.objects(URIRef(folder), DCT.title)), "(unlabeled)")
            artifacts = await self._folder_artifacts(client, project_id, folder)
            for artifact in artifacts:
                found[artifact] = None
            _logger.info("project.folder", folder=folder, title=title, children=len(children), artifacts=len(artifacts))
            pending.extend(child for child in reversed(children) if child not in visited)

    async def export(self, sink: GraphSink, context: str | None = None) -> Dict[str, int]:
        """Crawl the project (optionally within a configuration context) into ``sink``."""

        client = self.client.bind(context) if context else self.client
        seeds = await self.gather_requirements(client)
        crawler = ResourceCrawler(
            client.fetch,
            sink,
            self.client.server,
            concurrency=self.concurrency,
            retry=self.retry,
            blacklist=self.blacklist,
        )
        _logger.info("project.export.start", project=self.name, context=context, seeds=len(seeds))
        return await crawler.crawl(seeds, self.depth)

    async def fetch_baselines(self) -> Optional[BaselineHistory]:
        info = await self.info()
        if not info.components:
            raise ConfigError(f"Project {info.id} has no components")
        if len(info.components) > 1:
            raise ConfigError(f"Project {info.id} has multiple components")

        component = info.components[0]
        component_graph = await self.client.load(component)
        configurations = sorted(component_graph.objects(None, OSLC_CONFIG.configurations))
        if not configurations:
            raise ConfigError(f"Component <{component}> lists no configurations")
        configs_uri = str(configurations[0])
        configs = await self.client.load(configs_uri)

        baselines: Dict[str, BaselineRecord] = {}
        streams: Dict[str, StreamRecord] = {}
        deleted = 0
        for member in sorted(configs.objects(URIRef(configs_uri), RDFS.member)):
            uri = str(member)
            if uri in baselines or uri in streams:
                continue
            try:
                graph = await self.client.load(uri)
            except HttpError as exc:
                if exc.status != 404:
                    raise
                _logger.warning("project.config.missing", uri=uri)
                deleted += 1
                continue
            types = set(graph.objects(URIRef(uri), RDF.type))
            if OSLC_CONFIG.Baseline in types:
                baselines[uri] = baseline_from_graph(graph, uri)
            elif OSLC_CONFIG.Stream in types:
                streams[uri] = stream_from_graph(graph, uri)

        _logger.info(
            "project.configurations",
            baselines=len(baselines),
            streams=len(streams),
            deleted_streams=deleted,
        )
        if not baselines:
            return None
        return BaselineHistory(
            histories=reconstruct_lineage(baselines, streams),
            baselines=baselines,
            streams=streams,
            deleted_streams=deleted,
        )


__all__ = ["DngProject", "ProjectInfo", "BaselineHistory", "project_id_from_services"]
