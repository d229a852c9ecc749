from __future__ import annotations

"""Admission-controlled crawler for the source server's resource graph."""

import asyncio
import math
from contextlib import aclosing
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection, Dict, Iterable, Optional, Set

from rdflib.term import BNode, Node, URIRef

from dngSync.core.context import BlacklistFilter, CrawlContext
from dngSync.core.errors import HttpError, NetworkError, SkipError
from dngSync.core.pool import AdmissionPool
from dngSync.kg.namespaces import MANDATORY_FOLLOW
from dngSync.kg.sink import GraphSink
from dngSync.kg.triples import Subgraph, Triple, TripleStream
from dngSync.utils.log_json import JsonLogger

Fetch = Callable[[str], Awaitable[TripleStream]]

_logger = JsonLogger("crawler")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry schedule for transient network failures.

    ``delay`` is the wait before the first retry; each further retry waits
    ``multiplier`` times longer, capped at ``max_delay``.
    """

    attempts: int = 5
    delay: float = 1.5
    multiplier: float = 1.0
    max_delay: float = 60.0

    def wait(self, attempt: int) -> float:
        return min(self.max_delay, self.delay * (self.multiplier ** max(0, attempt - 1)))


def _first_error(group: BaseExceptionGroup) -> BaseException:
    exc: BaseException = group
    while isinstance(exc, BaseExceptionGroup):
        exc = exc.exceptions[0]
    return exc


class ResourceCrawler:
    """Discover and download the resource graph reachable from seed URIs.

    Parameters
    ----------
    fetch:
        Coroutine returning a :class:`TripleStream` for a URI, or raising
        :class:`SkipError`, :class:`HttpError` or :class:`NetworkError`.
        Any other exception is fatal and aborts the crawl.
    sink:
        Receives one :class:`Subgraph` per successfully fetched resource.
    origin:
        Crawl origin; relative URIs resolve against it and resources on any
        other origin are never fetched.
    concurrency:
        Maximum number of fetches in flight.
    """

    def __init__(
        self,
        fetch: Fetch,
        sink: GraphSink,
        origin: str,
        *,
        concurrency: int = 64,
        retry: RetryPolicy | None = None,
        blacklist: BlacklistFilter | None = None,
        mandatory_predicates: Collection[URIRef] = MANDATORY_FOLLOW,
        follow_predicates: bool = True,
        logger: JsonLogger | None = None,
    ) -> None:
        self._fetch = fetch
        self._sink = sink
        self.context = CrawlContext(origin, blacklist=blacklist or BlacklistFilter())
        self.pool = AdmissionPool(concurrency)
        self.retry = retry or RetryPolicy()
        self._mandatory = frozenset(mandatory_predicates)
        self._follow_predicates = follow_predicates
        self._log = logger or _logger

    async def crawl(self, seeds: Iterable[str], depth_max: float = math.inf) -> Dict[str, int]:
        """Crawl every seed concurrently and return the crawl counters.

        Cancelling the awaiting task cancels every in-flight branch; permits
        are released on the way out.
        """

        seeds = list(seeds)
        self._log.info("crawl.start", seeds=len(seeds), depth_max=depth_max, pool=self.pool.size)
        await self._join(seeds, depth_max, 0)
        stats = self.context.stats()
        self._log.info("crawl.done", **stats)
        return stats

    async def spawn(
        self,
        uri: str,
        depth_max: float = math.inf,
        depth_current: int = 0,
        is_retry: bool = False,
        attempt: int = 1,
    ) -> None:
        ctx = self.context
        try:
            url = ctx.normalize(uri)
        except ValueError:
            self._log.warning("crawl.skip.invalid_uri", uri=uri)
            return

        if not is_retry:
            if not ctx.claim(url):
                return
            if ctx.is_foreign(url):
                if ctx.first_warning_for(url):
                    self._log.warning("crawl.skip.foreign_origin", uri=url)
                return
            if ctx.blacklist.matches(url):
                self._log.warning("crawl.skip.blacklisted", uri=url)
                return

        try:
            subgraph = await self._download(url)
        except NetworkError as exc:
            if attempt >= self.retry.attempts:
                ctx.failed += 1
                self._log.error("crawl.retry_exhausted", uri=url, code=exc.code, attempts=attempt)
                return
            ctx.retried += 1
            wait = self.retry.wait(attempt)
            self._log.warning("crawl.retry", uri=url, code=exc.code, attempt=attempt, wait_seconds=wait)
            await asyncio.sleep(wait)
            await self.spawn(uri, depth_max, depth_current, True, attempt + 1)
            return

        if subgraph is None:
            return

        self._sink.write(subgraph)

        if depth_current < depth_max:
            targets = subgraph.links
        else:
            # depth exhausted; resources needed to interpret this one still go
            targets = subgraph.mandatory
        if targets:
            await self._join(sorted(targets), depth_max, depth_current + 1)

    async def _join(self, links: Iterable[str], depth_max: float, depth: int) -> None:
        try:
            async with asyncio.TaskGroup() as group:
                for link in links:
                    group.create_task(self.spawn(link, depth_max, depth))
        except BaseExceptionGroup as errors:
            raise _first_error(errors) from None

    async def _download(self, url: str) -> Optional[Subgraph]:
        ctx = self.context
        async with self.pool.permit(url):
            try:
                stream = await self._fetch(url)
            except SkipError:
                ctx.skipped += 1
                self._log.debug("crawl.skip.non_rdf", uri=url)
                return None
            except HttpError as exc:
                ctx.failed += 1
                self._log.error(
                    "crawl.http_error",
                    uri=url,
                    status=exc.status,
                    headers=exc.headers,
                    body=exc.body[:2000],
                )
                return None

            subgraph = Subgraph(url)
            remap: Dict[BNode, BNode] = {}
            async with aclosing(stream):
                async for triple in stream:
                    subgraph.triples.append(self._absorb(triple, subgraph, remap))

        ctx.fetched += 1
        self._log.info("crawl.fetch.ok", uri=url, triples=len(subgraph), links=len(subgraph.links))
        return subgraph

    def _absorb(self, triple: Triple, subgraph: Subgraph, remap: Dict[BNode, BNode]) -> Triple:
        subject, predicate, obj = triple
        subject = self._visit(subject, subgraph.links, remap)
        if self._follow_predicates and isinstance(predicate, URIRef):
            subgraph.links.add(str(predicate))
        if predicate in self._mandatory:
            self._visit(obj, subgraph.mandatory, remap)
        obj = self._visit(obj, subgraph.links, remap)
        return subject, predicate, obj

    @staticmethod
    def _visit(node: Node, links: Set[str], remap: Dict[BNode, BNode]) -> Node:
        if isinstance(node, URIRef):
            links.add(str(node))
            return node
        if isinstance(node, BNode):
            # server blank labels are only unique within one response
            if node not in remap:
                remap[node] = BNode()
            return remap[node]
        return node


__all__ = ["ResourceCrawler", "RetryPolicy", "Fetch"]
