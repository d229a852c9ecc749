from __future__ import annotations

import asyncio
import json
from typing import Callable, List

import httpx
import pytest
from rdflib import Literal, URIRef
from rdflib.namespace import DCTERMS

from api_clients.oslc_client import ACCEPT_RDF, OslcClient, classify_transport_error
from dngSync.core.errors import ConfigError, DataFormatError, HttpError, NetworkError, SkipError

SERVER = "https://dng.example"
RESOURCE = f"{SERVER}/rm/resources/R1"

RDF_XML = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns:dcterms="http://purl.org/dc/terms/">
  <rdf:Description rdf:about="https://dng.example/rm/resources/R1">
    <dcterms:title>Brakes</dcterms:title>
  </rdf:Description>
</rdf:RDF>
"""

ROOT_SERVICES = """<?xml version="1.0"?>
<rdf:Description rdf:about="https://dng.example/rm/rootservices"
    xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
    xmlns:oslc_rm="http://open-services.net/xmlns/rm/1.0/">
  <oslc_rm:rmServiceProviders rdf:resource="https://dng.example/rm/oslc_rm/catalog"/>
</rdf:Description>
"""


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> OslcClient:
    return OslcClient(SERVER, username="alice", password="secret", transport=httpx.MockTransport(handler), **kwargs)


async def collect(client: OslcClient, uri: str) -> list:
    stream = await client.fetch(uri)
    try:
        return [triple async for triple in stream]
    finally:
        await stream.aclose()


def test_fetch_parses_rdf_xml_and_sends_oslc_headers() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=RDF_XML, headers={"content-type": "application/rdf+xml;charset=UTF-8"})

    async def scenario() -> list:
        async with make_client(handler) as client:
            return await collect(client, RESOURCE)

    triples = asyncio.run(scenario())

    assert triples == [(URIRef(RESOURCE), DCTERMS.title, Literal("Brakes"))]
    assert seen[0].headers["accept"] == ACCEPT_RDF
    assert seen[0].headers["oslc-core-version"] == "2.0"
    assert "configuration-context" not in seen[0].headers


def test_bound_client_sends_configuration_context() -> None:
    contexts: List[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        contexts.append(request.headers.get("configuration-context"))
        return httpx.Response(200, text=RDF_XML, headers={"content-type": "application/rdf+xml"})

    baseline = f"{SERVER}/rm/cm/baseline/B1"

    async def scenario() -> None:
        async with make_client(handler) as client:
            await collect(client.bind(baseline), RESOURCE)
            await collect(client, RESOURCE)

    asyncio.run(scenario())
    assert contexts == [baseline, None]


def test_json_ld_bodies_are_parsed() -> None:
    document = {"@id": RESOURCE, "http://purl.org/dc/terms/title": "Wheels"}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=json.dumps(document), headers={"content-type": "application/ld+json"})

    async def scenario() -> list:
        async with make_client(handler) as client:
            return await collect(client, RESOURCE)

    assert asyncio.run(scenario()) == [(URIRef(RESOURCE), DCTERMS.title, Literal("Wheels"))]


@pytest.mark.parametrize("content_type", ["image/png", "text/html; charset=utf-8"])
def test_non_rdf_content_is_skipped(content_type: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html></html>", headers={"content-type": content_type})

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    with pytest.raises(SkipError):
        asyncio.run(scenario())


def test_error_status_raises_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="missing", headers={"content-type": "text/plain"})

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    with pytest.raises(HttpError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.status == 404
    assert excinfo.value.body == "missing"


def test_missing_content_type_raises_http_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    with pytest.raises(HttpError):
        asyncio.run(scenario())


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (httpx.ConnectError("connection reset by peer"), "ECONNRESET"),
        (httpx.ReadTimeout("timed out"), "ETIMEDOUT"),
        (httpx.WriteError("broken pipe"), "EPIPE"),
        (httpx.ConnectError("[Errno -2] Name or service not known"), "ENOTFOUND"),
        (httpx.ReadError("connection closed while reading"), "ECONNRESET"),
        (httpx.RemoteProtocolError("peer closed connection without sending complete message body"), "ECONNRESET"),
    ],
)
def test_transport_failures_become_network_errors(error: Exception, code: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise error

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    with pytest.raises(NetworkError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.code == code


@pytest.mark.parametrize(
    "error",
    [
        httpx.UnsupportedProtocol("Request URL has an unsupported protocol 'ftp://'"),
        httpx.LocalProtocolError("illegal header value"),
        httpx.ProxyError("proxy refused the tunnel"),
    ],
)
def test_non_retryable_transport_failures_propagate(error: Exception) -> None:
    calls: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        raise error

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    assert classify_transport_error(error) is None
    with pytest.raises(type(error)):
        asyncio.run(scenario())
    assert calls == [RESOURCE]


def test_unparseable_rdf_is_a_format_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<rdf:RDF", headers={"content-type": "application/rdf+xml"})

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.fetch(RESOURCE)

    with pytest.raises(DataFormatError):
        asyncio.run(scenario())


def test_redirects_are_followed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/rm/resources/R1":
            return httpx.Response(302, headers={"location": f"{SERVER}/rm/resources/R1-moved"})
        return httpx.Response(200, text=RDF_XML, headers={"content-type": "application/rdf+xml"})

    async def scenario() -> list:
        async with make_client(handler) as client:
            return await collect(client, RESOURCE)

    assert len(asyncio.run(scenario())) == 1


def test_authenticate_posts_form_credentials() -> None:
    posted: List[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            posted.append(request.content)
            return httpx.Response(200, text="welcome")
        return httpx.Response(200, text="login page")

    async def scenario() -> str:
        async with make_client(handler) as client:
            return await client.authenticate()

    assert asyncio.run(scenario()) == "welcome"
    assert b"j_username=alice" in posted[0]
    assert b"j_password=secret" in posted[0]


def test_rejected_credentials_raise_config_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"x-com-ibm-team-repository-web-auth-msg": "authfailed"})

    async def scenario() -> None:
        async with make_client(handler) as client:
            await client.authenticate()

    with pytest.raises(ConfigError):
        asyncio.run(scenario())


def test_missing_credentials_raise_config_error() -> None:
    async def scenario() -> None:
        async with OslcClient(SERVER, transport=httpx.MockTransport(lambda r: httpx.Response(200))) as client:
            await client.authenticate()

    with pytest.raises(ConfigError):
        asyncio.run(scenario())


def test_root_services_lists_catalogs() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/rm/rootservices"
        return httpx.Response(200, text=ROOT_SERVICES, headers={"content-type": "application/rdf+xml"})

    async def scenario() -> list:
        async with make_client(handler) as client:
            return await client.root_services()

    assert asyncio.run(scenario()) == [f"{SERVER}/rm/oslc_rm/catalog"]


def grid_body(*uris: str) -> dict:
    entries = [{"content": {"result": [{"xmlAttributes": {"name": "R1"}, "uri": {"value": uri}}]}} for uri in uris]
    return {"feed": {"entry": entries}}


def test_grid_page_posts_folder_view_query() -> None:
    folder = f"{SERVER}/rm/folders/F&1"
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=grid_body(RESOURCE))

    async def scenario() -> dict:
        async with make_client(handler) as client:
            return await client.bind(f"{SERVER}/rm/cm/stream/S1").grid_page("_P1", folder, page=3, size=500)

    assert asyncio.run(scenario()) == grid_body(RESOURCE)
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rm/views"
    assert request.url.params["page"] == "3"
    assert request.url.params["size"] == "500"
    assert request.url.params["execute"] == "true"
    assert request.headers["DoorsRP-Request-Type"] == "private"
    assert request.headers["net.jazz.jfs.owning-context"] == f"{SERVER}/rm/rm-projects/_P1"
    assert request.headers["Configuration-Context"] == f"{SERVER}/rm/cm/stream/S1"
    body = request.content.decode("utf-8")
    assert f'rdf:resource="{SERVER}/rm/folders/F&amp;1"' in body
    assert "http://purl.org/dc/terms/identifier" in body


def test_grid_page_rejects_non_json_and_error_status() -> None:
    responses = [
        httpx.Response(200, text="<html>login</html>", headers={"content-type": "text/html"}),
        httpx.Response(500, text="boom", headers={"content-type": "text/plain"}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async def scenario() -> None:
        async with make_client(handler) as client:
            with pytest.raises(DataFormatError):
                await client.grid_page("_P1", f"{SERVER}/rm/folders/F1", page=1, size=10)
            with pytest.raises(HttpError):
                await client.grid_page("_P1", f"{SERVER}/rm/folders/F1", page=1, size=10)

    asyncio.run(scenario())
