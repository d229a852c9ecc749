"""Client for the target model management server (MMS) REST API."""
from __future__ import annotations

import json
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Union

import requests
from tenacity import RetryCallState, retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from dngSync.core.errors import ConfigError, DataFormatError, TargetError
from dngSync.kg.delta import Delta, Record
from dngSync.kg.lineage import BaselineRecord
from dngSync.utils.log_json import JsonLogger

_logger = JsonLogger("mms-client")

_JSON_HEADERS = {"Accept": "application/json", "Content-Type": "application/json"}
_BIN_NAMES = frozenset({"Holding Bin", "View Instances Bin"})
_KEEP_META = "_appliedStereotypeIds"


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    wait_time = getattr(retry_state.next_action, "sleep", None) if retry_state.next_action else None
    url = str(retry_state.args[2]) if len(retry_state.args) >= 3 else ""
    _logger.warning(
        "mms.retry",
        url=url,
        attempt=retry_state.attempt_number,
        wait_seconds=wait_time,
        error=str(exc) if exc else None,
    )


@dataclass(frozen=True)
class JsonPayload:
    """An in-memory JSON document."""

    document: Any


@dataclass(frozen=True)
class FilePayload:
    """A JSON document already serialized on disk."""

    path: Path


@dataclass(frozen=True)
class ElementsPayload:
    """Element records sent as ``{"elements": [...]}``.

    ``elements`` must be re-iterable when the request may be retried.
    """

    elements: Iterable[Mapping[str, Any]]


UploadPayload = Union[JsonPayload, FilePayload, ElementsPayload]


def _elements_body(elements: Iterable[Mapping[str, Any]]) -> bytes:
    rows = ",\n".join(json.dumps(element, ensure_ascii=False) for element in elements)
    return ("{\"elements\":[\n" + rows + "\n]}").encode("utf-8")


def _body_factory(payload: UploadPayload) -> Callable[[], Any]:
    if isinstance(payload, JsonPayload):
        data = json.dumps(payload.document, ensure_ascii=False).encode("utf-8")
        return lambda: data
    if isinstance(payload, FilePayload):
        path = Path(payload.path)
        return lambda: path.read_bytes()
    if isinstance(payload, ElementsPayload):
        return lambda: _elements_body(payload.elements)
    raise TypeError(f"unsupported upload payload: {type(payload).__name__}")


def baseline_ref_id(baseline_id: str) -> str:
    """Tag id for a baseline; used both for tagging and resumability checks."""

    return sha256(f"baseline.{baseline_id}".encode("utf-8")).hexdigest()


def remove_meta(value: Any) -> Any:
    """Drop server-managed ``_`` keys (except applied stereotypes) in place."""

    if isinstance(value, dict):
        for key in [k for k in value if k.startswith("_") and k != _KEEP_META]:
            del value[key]
        for item in value.values():
            if isinstance(item, dict):
                remove_meta(item)
    return value


def _batches(items: List[Any], size: int) -> Iterator[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class MmsClient:
    """Project-scoped MMS client.

    Every non-2xx response raises :class:`TargetError`; connection failures
    and timeouts are retried with exponential backoff.
    """

    def __init__(
        self,
        server: str,
        org: str,
        project_id: str,
        *,
        username: str | None,
        password: str | None,
        project_name: str | None = None,
        session: requests.Session | None = None,
        batch_size: int = 100_000,
        safety: bool = False,
        timeout: float = 120.0,
    ) -> None:
        if not server:
            raise ConfigError("Must provide an MMS server URL via env var 'MMS_SERVER'")
        if not username or not password:
            raise ConfigError("Missing one of or both required credentials: 'MMS_USER', 'MMS_PASS'")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.server = server.rstrip("/")
        self.org = org
        self.project_id = project_id
        self.project_name = " ".join((project_name or project_id).split())
        self.batch_size = int(batch_size)
        self.safety = safety
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.auth = (username, password)
        self.session.headers.update(_JSON_HEADERS)

        self.service_url = f"{self.server}/alfresco/service"
        self.project_url = f"{self.service_url}/projects/{project_id}"
        self.refs_url = f"{self.project_url}/refs"

    def elements_url(self, ref: str) -> str:
        return f"{self.refs_url}/{ref}/elements"

    def element_ids_url(self, ref: str) -> str:
        return f"{self.refs_url}/{ref}/elementIds"

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        before_sleep=_log_retry,
    )
    def _request(
        self,
        method: str,
        url: str,
        *,
        body: Callable[[], Any] | None = None,
        params: Optional[Dict[str, str]] = None,
        allow: Iterable[int] = (),
    ) -> requests.Response:
        resp = self.session.request(
            method,
            url,
            data=body() if body is not None else None,
            params=params,
            timeout=self.timeout,
        )
        if not resp.ok and resp.status_code not in set(allow):
            _logger.error("mms.request_failed", method=method, url=url, status=resp.status_code, body=resp.text[:2000])
            raise TargetError(
                f"{method} {url} returned {resp.status_code}",
                status=resp.status_code,
                body=resp.text,
            )
        return resp

    def _json(self, method: str, url: str, **kwargs: Any) -> Any:
        resp = self._request(method, url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise DataFormatError(f"Invalid JSON response from {url}: {exc}") from None

    def mms_version(self) -> str:
        return str(self._json("GET", f"{self.service_url}/mmsversion").get("mmsVersion", ""))

    def create(self, reset: bool = False) -> bool:
        """Ensure the project exists; return ``True`` if it was (re)created."""

        resp = self._request("GET", self.project_url, allow=(404,))
        if resp.status_code == 404:
            _logger.warning("mms.project.missing", project=self.project_id, server=self.server)
        elif reset:
            _logger.warning("mms.project.reset", project=self.project_id)
            self._request("DELETE", self.project_url)
        else:
            return False
        document = {
            "projects": [
                {"type": "Project", "orgId": self.org, "id": self.project_id, "name": self.project_name}
            ]
        }
        self.upload(JsonPayload(document), f"{self.service_url}/orgs/{self.org}/projects")
        _logger.info("mms.project.created", project=self.project_id, org=self.org)
        return True

    def refs(self) -> Dict[str, Dict[str, Any]]:
        body = self._json("GET", self.refs_url)
        return {ref["id"]: ref for ref in body.get("refs", [])}

    def upload(self, payload: UploadPayload, url: str, method: str = "POST") -> requests.Response:
        return self._request(method, url, body=_body_factory(payload))

    def apply_deltas(self, delta: Delta, ref: str = "master") -> Dict[str, int]:
        """Delete then upsert the delta's elements on ``ref`` in batches."""

        url = self.elements_url(ref)
        _logger.info("mms.delta.apply", ref=ref, **delta.summary())
        for chunk in _batches(list(delta.deleted), self.batch_size):
            self._request(
                "DELETE",
                url,
                params={"overwrite": "true"},
                body=_body_factory(ElementsPayload([{"id": element_id} for element_id in chunk])),
            )
        for chunk in _batches(list(delta.added), self.batch_size):
            self._request("POST", url, params={"overwrite": "true"}, body=_body_factory(ElementsPayload(chunk)))
        return delta.summary()

    def upload_elements(self, records: Iterable[Record], ref: str = "master") -> int:
        """Post a full snapshot to ``ref``, batched; returns the element count."""

        batch: List[Record] = []
        total = 0
        for record in records:
            batch.append(record)
            if len(batch) >= self.batch_size:
                self._request("POST", self.elements_url(ref), params={"overwrite": "true"}, body=_body_factory(ElementsPayload(batch)))
                total += len(batch)
                batch = []
        if batch:
            self._request("POST", self.elements_url(ref), params={"overwrite": "true"}, body=_body_factory(ElementsPayload(batch)))
            total += len(batch)
        _logger.info("mms.snapshot.uploaded", ref=ref, elements=total)
        return total

    def tag_head_as_baseline(self, baseline: BaselineRecord, ref: str = "master") -> str:
        tag_id = baseline_ref_id(baseline.id)
        document = {
            "refs": [
                {
                    "id": tag_id,
                    "name": baseline.title,
                    "parentRefId": ref,
                    "type": "Tag",
                    "uri": baseline.uri,
                    "created": baseline.created.isoformat(),
                    "creator": baseline.creator,
                    "overrides": baseline.overrides,
                    "previous": baseline.previous,
                    "description": baseline.description,
                    "basedOnStream": baseline.stream_uri,
                }
            ]
        }
        self.upload(JsonPayload(document), self.refs_url)
        _logger.info("mms.baseline.tagged", baseline=baseline.id, tag=tag_id, ref=ref)
        return tag_id

    def _fetch_elements(self, ref: str) -> List[Dict[str, Any]]:
        if self.safety:
            preload = self._json("GET", self.element_ids_url(ref))
            ids = list(preload.get("elements", []))
            if len(ids) > self.batch_size:
                elements: List[Dict[str, Any]] = []
                for chunk in _batches(ids, self.batch_size):
                    wanted = [{"id": i} if isinstance(i, str) else i for i in chunk]
                    body = self._json("PUT", self.elements_url(ref), body=_body_factory(ElementsPayload(wanted)))
                    elements.extend(body.get("elements", []))
                _logger.info("mms.load.batched", ref=ref, elements=len(elements), batches=-(-len(ids) // self.batch_size))
                return elements
        return list(self._json("GET", self.elements_url(ref)).get("elements", []))

    def load(self, ref: str = "master") -> Dict[str, Record]:
        """Return ``{element_id: element}`` for ``ref`` without server metadata."""

        out: Dict[str, Record] = {}
        for element in self._fetch_elements(ref):
            if element.get("type") == "Project":
                continue
            if (
                element.get("type") == "Package"
                and element.get("ownerId") == self.project_id
                and element.get("name") in _BIN_NAMES
            ):
                continue
            out[element["id"]] = remove_meta(element)
        _logger.info("mms.load", ref=ref, elements=len(out))
        return out


__all__ = [
    "MmsClient",
    "UploadPayload",
    "JsonPayload",
    "FilePayload",
    "ElementsPayload",
    "baseline_ref_id",
    "remove_meta",
]
