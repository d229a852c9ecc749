from __future__ import annotations

"""Structured JSON logger with credential redaction."""

import json
import logging
import random
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, MutableMapping

BASIC_AUTH_RE = re.compile(r"\b(?:basic|bearer)\s+[A-Za-z0-9+/=._\-]{8,}", re.IGNORECASE)
COOKIE_RE = re.compile(r"\b(JSESSIONID|LtpaToken2?|JazzFormAuth|X-com-ibm-team[\w-]*)=[^;\s]+", re.IGNORECASE)
PASSWORD_QS_RE = re.compile(r"(j_password|password|pass)=[^&\s]+", re.IGNORECASE)

_SECRET_KEYS = {"authorization", "cookie", "set-cookie", "password", "j_password", "token", "secret"}

_LEVEL_MAP = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def _scrub(value: str) -> str:
    value = BASIC_AUTH_RE.sub("[redacted]", value)
    value = COOKIE_RE.sub(lambda m: f"{m.group(1)}=[redacted]", value)
    value = PASSWORD_QS_RE.sub(lambda m: f"{m.group(1)}=[redacted]", value)
    return value


def _sanitize(obj: Any) -> Any:
    if isinstance(obj, Mapping):
        clean: dict[str, Any] = {}
        for key, value in obj.items():
            if value is None:
                continue
            if str(key).lower() in _SECRET_KEYS:
                clean[str(key)] = "[redacted]"
            else:
                clean[str(key)] = _sanitize(value)
        return clean
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (int, float, bool)):
        return obj
    if obj is None:
        return None
    return _scrub(str(obj))


def _truncate(details: Mapping[str, Any] | Iterable[Any], max_bytes: int) -> Any:
    if max_bytes <= 0:
        return details
    serialized = json.dumps(details, ensure_ascii=False, sort_keys=True, separators=(",", ":"))
    blob = serialized.encode("utf-8")
    if len(blob) <= max_bytes:
        return details
    preview = blob[:max_bytes].decode("utf-8", errors="ignore")
    return {"note": "truncated", "preview": preview}


class JsonLogger:
    """Emit structured JSON events with consistent keys."""

    def __init__(
        self,
        service: str,
        *,
        logger: logging.Logger | None = None,
        max_details_bytes: int = 4096,
        sample_rate: float = 1.0,
    ) -> None:
        self._service = service
        self._logger = logger or logging.getLogger(f"dngsync.{service}")
        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)
            self._logger.propagate = False
            self._logger.setLevel(logging.INFO)
        self._max_details_bytes = max(0, int(max_details_bytes))
        self._sample_rate = max(0.0, min(1.0, float(sample_rate)))

    @property
    def service(self) -> str:
        return self._service

    def debug(self, event: str, **fields: Any) -> dict[str, Any] | None:
        return self._emit("DEBUG", event, fields)

    def info(self, event: str, **fields: Any) -> dict[str, Any] | None:
        return self._emit("INFO", event, fields)

    def warning(self, event: str, **fields: Any) -> dict[str, Any] | None:
        return self._emit("WARNING", event, fields)

    def error(self, event: str, **fields: Any) -> dict[str, Any] | None:
        return self._emit("ERROR", event, fields)

    def emit(self, level: str, event: str, **fields: Any) -> dict[str, Any] | None:
        return self._emit(level.upper(), event, dict(fields))

    def should_sample(self, level: str) -> bool:
        # warnings and errors are never sampled away
        if self._sample_rate >= 1.0 or level in {"WARNING", "ERROR", "CRITICAL"}:
            return True
        return random.random() <= self._sample_rate

    def _emit(self, level: str, event: str, fields: MutableMapping[str, Any]) -> dict[str, Any] | None:
        level = level.upper()
        numeric = _LEVEL_MAP.get(level, logging.INFO)
        if not self._logger.isEnabledFor(numeric) or not self.should_sample(level):
            return None
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "service": self._service,
            "event": event,
        }
        for key in ("run_id", "baseline", "uri", "status"):
            value = fields.pop(key, None)
            if value is not None:
                entry[key] = _sanitize(value)
        details = fields.pop("details", None)
        if details is not None:
            entry["details"] = _truncate(_sanitize(details), self._max_details_bytes)
        if fields:
            residual = _truncate(_sanitize(fields), self._max_details_bytes)
            if isinstance(entry.get("details"), dict) and isinstance(residual, dict):
                entry["details"].update(residual)
            else:
                entry["details"] = residual
        payload = json.dumps(entry, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
        self._logger.log(numeric, payload)
        return entry


__all__ = ["JsonLogger"]
