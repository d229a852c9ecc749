"""OSLC client for the requirements server: login, RDF fetch and parsing."""
from __future__ import annotations

import socket
from html import escape
from typing import Any, Dict, List

import httpx
from rdflib import Graph, URIRef
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from dngSync.core.errors import ConfigError, DataFormatError, HttpError, NetworkError, SkipError
from dngSync.kg.namespaces import OSLC_RM_1
from dngSync.kg.triples import TripleStream
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("oslc-client")

ACCEPT_RDF = "application/rdf+xml, application/ld+json"
AUTH_MSG_HEADER = "x-com-ibm-team-repository-web-auth-msg"
MAX_REDIRECTS = 10

GRID_VIEW_TEMPLATE = """<rdf:RDF
    xmlns:dcterms="http://purl.org/dc/terms/"
    xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
    xmlns:rrmNav="http://com.ibm.rdm/navigation#"
    xmlns:rm="http://www.ibm.com/xmlns/rdm/rdf/"
    xmlns:rql="http://www.ibm.com/xmlns/rdm/rql/">
  <rm:View rdf:about="">
    <rm:rowquery rdf:parseType="Resource">
      <rql:select rdf:parseType="Resource">
        <rdf:_1 rdf:parseType="Resource"><rql:object>R1</rql:object></rdf:_1>
      </rql:select>
      <rql:where rdf:parseType="Resource">
        <rdf:_1 rdf:parseType="Resource">
          <rql:e1 rdf:parseType="Resource">
            <rql:field rdf:resource="http://com.ibm.rdm/navigation#parent"/>
            <rql:object>R1</rql:object>
          </rql:e1>
          <rql:e2><rdf:Seq><rdf:li rdf:resource="{folder}"/></rdf:Seq></rql:e2>
          <rql:op>in</rql:op>
        </rdf:_1>
      </rql:where>
      <rql:sort rdf:parseType="Resource">
        <rdf:_1 rdf:parseType="Resource">
          <rql:objField rdf:parseType="Resource">
            <rql:field rdf:resource="http://purl.org/dc/terms/identifier"/>
            <rql:object>R1</rql:object>
          </rql:objField>
          <rql:order>desc</rql:order>
        </rdf:_1>
      </rql:sort>
    </rm:rowquery>
    <rm:displayBaseProperties rdf:datatype="http://www.w3.org/2001/XMLSchema#boolean">true</rm:displayBaseProperties>
    <rrmNav:scope>public</rrmNav:scope>
    <rm:ofType>GridView</rm:ofType>
    <dcterms:title>Grid View 1</dcterms:title>
  </rm:View>
</rdf:RDF>
"""

_RDF_FORMATS = {
    "application/rdf+xml": "xml",
    "application/ld+json": "json-ld",
}


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait_time = getattr(retry_state.next_action, "sleep", None) if retry_state.next_action else None
    _logger.warning(
        "oslc.auth.retry",
        attempt=retry_state.attempt_number,
        wait_seconds=wait_time,
        error=str(exc) if exc else None,
    )


def classify_transport_error(exc: httpx.TransportError) -> str | None:
    """Map a transient httpx transport failure onto a socket-style error code.

    Returns ``None`` for failures that retrying cannot fix (bad scheme,
    proxy or local protocol errors); callers re-raise those.
    """

    if isinstance(exc, httpx.TimeoutException):
        return "ETIMEDOUT"
    if isinstance(exc, httpx.WriteError):
        return "EPIPE"
    if isinstance(exc, httpx.ConnectError):
        cause = exc.__context__ or exc.__cause__
        if isinstance(cause, socket.gaierror) or "name or service not known" in str(exc).lower():
            return "ENOTFOUND"
        return "ECONNRESET"
    if isinstance(exc, (httpx.ReadError, httpx.CloseError, httpx.RemoteProtocolError)):
        return "ECONNRESET"
    return None


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, httpx.TransportError) and classify_transport_error(exc) is not None


def _grid_view_query(folder: str) -> str:
    """RDF body of the private grid-view query listing artifacts parented by ``folder``."""

    return GRID_VIEW_TEMPLATE.replace("{folder}", escape(folder, quote=True))


def _media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";", 1)[0].strip().lower()


class OslcClient:
    """Session-holding client for one requirements server.

    A client bound to a configuration context (a baseline or stream URI)
    sends it with every request; :meth:`bind` returns such a client sharing
    this client's connection pool and session cookies.
    """

    def __init__(
        self,
        server: str,
        *,
        username: str | None = None,
        password: str | None = None,
        timeout: float = 12.0,
        max_connections: int = 64,
        transport: httpx.AsyncBaseTransport | None = None,
        configuration_context: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.server = server.rstrip("/")
        self.username = username
        self.password = password
        self.configuration_context = configuration_context
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            max_redirects=MAX_REDIRECTS,
            timeout=timeout,
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            transport=transport,
            headers={"OSLC-Core-Version": "2.0"},
        )

    async def __aenter__(self) -> "OslcClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def bind(self, configuration_context: str | None) -> "OslcClient":
        return OslcClient(
            self.server,
            username=self.username,
            password=self.password,
            configuration_context=configuration_context,
            client=self._client,
        )

    def _url(self, uri: str) -> str:
        return str(httpx.URL(self.server + "/").join(uri))

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": ACCEPT_RDF}
        if self.configuration_context:
            headers["Configuration-Context"] = self.configuration_context
        return headers

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1),
        retry=retry_if_exception(_is_transient),
        before_sleep=_log_retry,
    )
    async def authenticate(self) -> str:
        """Start a form-login session; raises :class:`ConfigError` on rejection."""

        if not self.username or not self.password:
            raise ConfigError("Missing source server credentials (DNG_USER / DNG_PASS)")
        await self._client.get(
            self._url("/rm/loginRedirect"),
            params={"redirect": f"{self.server}/rm"},
            headers={"Accept": "text/html"},
        )
        response = await self._client.post(
            self._url("/jts/auth/j_security_check"),
            data={"j_username": self.username, "j_password": self.password},
            headers={"Accept": "text/html"},
        )
        if response.headers.get(AUTH_MSG_HEADER) == "authfailed":
            _logger.error("oslc.auth.failed", status=response.status_code)
            raise ConfigError("Authentication failed; the server rejected the supplied credentials")
        if not response.is_success:
            raise HttpError(str(response.url), response.status_code, response.headers, response.text)
        _logger.info("oslc.auth.ok", server=self.server)
        return response.text

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            code = classify_transport_error(exc)
            if code is None:
                raise
            raise NetworkError(code, url) from exc

    async def _parse(self, uri: str) -> Graph:
        url = self._url(uri)
        response = await self._send("GET", url, headers=self._headers())

        media_type = _media_type(response)
        if not response.is_success or not media_type:
            raise HttpError(url, response.status_code, response.headers, response.text)
        fmt = _RDF_FORMATS.get(media_type)
        if fmt is None:
            if media_type == "text/html":
                _logger.warning("oslc.fetch.html", uri=url, status=response.status_code, body=response.text[:2000])
            raise SkipError(url)

        graph = Graph()
        try:
            graph.parse(data=response.text, format=fmt, publicId=str(response.url))
        except Exception as exc:
            raise DataFormatError(f"Unparseable {media_type} body from '{url}': {exc}") from exc
        return graph

    async def fetch(self, uri: str) -> TripleStream:
        """Fetch ``uri`` and return its triples.

        Raises :class:`SkipError` for non-RDF content, :class:`HttpError` for
        non-2xx responses and :class:`NetworkError` for transport failures.
        """

        graph = await self._parse(uri)
        return TripleStream(graph.triples((None, None, None)), close=graph.close)

    async def load(self, uri: str) -> Graph:
        return await self._parse(uri)

    async def root_services(self) -> List[str]:
        graph = await self.load("/rm/rootservices")
        providers = sorted(str(o) for o in graph.objects(None, OSLC_RM_1.rmServiceProviders) if isinstance(o, URIRef))
        _logger.info("oslc.root_services", providers=len(providers))
        return providers

    async def grid_page(self, project_id: str, folder: str, *, page: int, size: int) -> Any:
        """POST one page of the grid-view query for ``folder`` and return the JSON body.

        Used to list folder contents on servers whose query capability
        returns only part of a large project.
        """

        url = self._url("/rm/views")
        headers = {
            "Accept": "text/json",
            "Content-Type": "text/plain",
            "DoorsRP-Request-Type": "private",
            "net.jazz.jfs.owning-context": f"{self.server}/rm/rm-projects/{project_id}",
        }
        if self.configuration_context:
            headers["Configuration-Context"] = self.configuration_context
        params = {
            "execute": "true",
            "fullObject": "false",
            "size": str(size),
            "count": "true",
            "page": str(page),
            "reuse": "false",
            "extrinsicReuse": "false",
        }
        response = await self._send("POST", url, params=params, headers=headers, content=_grid_view_query(folder))
        if not response.is_success:
            raise HttpError(url, response.status_code, response.headers, response.text)
        try:
            return response.json()
        except ValueError:
            raise DataFormatError(
                f"Folder query for <{folder}> did not return JSON: {response.text[:500]!r}"
            ) from None


__all__ = ["OslcClient", "classify_transport_error", "ACCEPT_RDF", "MAX_REDIRECTS", "GRID_VIEW_TEMPLATE"]
