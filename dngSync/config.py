from __future__ import annotations

"""Sync configuration: YAML file, then environment, then explicit overrides."""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping
from urllib.parse import urlsplit

import yaml

from dngSync.core.context import DEFAULT_BLACKLIST, BlacklistFilter
from dngSync.core.crawler import RetryPolicy
from dngSync.core.errors import ConfigError

_ENV_FIELDS = {
    "DNG_SERVER": "dng_server",
    "DNG_PROJECT": "project_name",
    "MMS_SERVER": "mms_server",
    "DNG_CRAWL_DEPTH": "crawl_depth",
    "DNG_REQUESTS": "requests",
    "DNG_RETRY_ATTEMPTS": "retry_attempts",
    "DNG_RETRY_DELAY": "retry_delay",
    "DNG_HTTP_TIMEOUT": "http_timeout",
    "DNG_FOLDERS": "folders",
}
_INT_FIELDS = frozenset({"crawl_depth", "requests", "retry_attempts", "batch_size", "folder_page_size"})
_FLOAT_FIELDS = frozenset({"retry_delay", "retry_multiplier", "http_timeout"})
_BOOL_FIELDS = frozenset({"safety", "head_sync", "use_folders"})
_LIST_FIELDS = frozenset({"modules", "folders", "blacklist_extra"})


@dataclass(slots=True)
class SyncConfig:
    """Settings for one project sync."""

    dng_server: str = ""
    project_name: str = ""
    modules: List[str] = field(default_factory=list)
    folders: List[str] = field(default_factory=list)
    use_folders: bool = False
    folder_page_size: int = 50_000
    mms_server: str = ""
    mms_org: str = ""
    mms_project: str = ""
    mms_ref: str = "master"
    crawl_depth: int = 3
    requests: int = 64
    retry_attempts: int = 5
    retry_delay: float = 1.5
    retry_multiplier: float = 1.0
    http_timeout: float = 12.0
    blacklist_extra: List[str] = field(default_factory=list)
    data_dir: Path = Path("data")
    batch_size: int = 100_000
    safety: bool = False
    head_sync: bool = True

    @property
    def dng_origin(self) -> str:
        return _origin(self.dng_server, "DNG_SERVER")

    @property
    def mms_origin(self) -> str:
        return _origin(self.mms_server, "MMS_SERVER")

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            multiplier=self.retry_multiplier,
        )

    def blacklist(self) -> BlacklistFilter:
        return BlacklistFilter((*DEFAULT_BLACKLIST, *self.blacklist_extra))

    def project_dir(self) -> Path:
        slug = "".join(ch if ch.isalnum() or ch in "-_." else "-" for ch in self.project_name.strip())
        return Path(self.data_dir) / (slug or "project")


def _origin(url: str, var: str) -> str:
    if not url:
        raise ConfigError(f"Must provide a server URL via env var '{var}'")
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ConfigError(f"Invalid server URL for {var}: {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


def _coerce(name: str, value: Any) -> Any:
    try:
        if name in _INT_FIELDS:
            return int(value)
        if name in _FLOAT_FIELDS:
            return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid value for {name}: {value!r}") from None
    if name in _BOOL_FIELDS:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if name in _LIST_FIELDS:
        if isinstance(value, str):
            return [v.strip() for v in value.split(",") if v.strip()]
        return [str(v) for v in value or ()]
    if name == "data_dir":
        return Path(value)
    return "" if value is None else str(value)


def load_config(
    path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> SyncConfig:
    """Build a :class:`SyncConfig`; ``None`` overrides are ignored."""

    env = os.environ if env is None else env
    values: Dict[str, Any] = {}
    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}") from None
        if not isinstance(data, Mapping):
            raise ConfigError(f"Config file {path} must contain a mapping")
        known = {f.name for f in fields(SyncConfig)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown config keys in {path}: {', '.join(unknown)}")
        values.update(data)
    for var, name in _ENV_FIELDS.items():
        if env.get(var):
            values[name] = env[var]
    values.update({k: v for k, v in overrides.items() if v is not None})

    config = replace(SyncConfig(), **{k: _coerce(k, v) for k, v in values.items()})
    if config.requests < 1:
        raise ConfigError("requests must be at least 1")
    if config.retry_attempts < 1:
        raise ConfigError("retry_attempts must be at least 1")
    if config.crawl_depth < 0:
        raise ConfigError("crawl_depth must not be negative")
    if config.folder_page_size < 1:
        raise ConfigError("folder_page_size must be at least 1")
    return config


__all__ = ["SyncConfig", "load_config"]
