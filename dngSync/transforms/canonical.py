"""Canonical form for element records so structural equality ignores ordering."""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping

from dngSync.core.errors import DataFormatError


def _sort_key_dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


def _natural(values: Iterable[Any]) -> bool:
    """True when ``values`` are all strings or all (non-bool) numbers."""

    values = list(values)
    if all(isinstance(v, str) for v in values):
        return True
    return all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in values)


def canon(value: Any) -> Any:
    """Return ``value`` with object keys sorted and arrays in a stable order.

    Arrays of objects are ordered by each object's ``id`` (objects without
    an ``id`` fall back to their canonical JSON text). Arrays of strings or
    numbers are sorted directly; any other array (nulls, booleans, nested
    arrays, mixed types) is ordered by each item's canonical JSON text.
    Values that cannot be serialized raise :class:`DataFormatError`.
    """

    if isinstance(value, Mapping):
        try:
            keys = sorted(value)
        except TypeError:
            raise DataFormatError(f"Object keys are not comparable: {list(value)!r}") from None
        return {key: canon(value[key]) for key in keys}
    if isinstance(value, (list, tuple)):
        items = [canon(item) for item in value]
        try:
            if items and all(isinstance(item, Mapping) and "id" in item for item in items):
                if _natural(item["id"] for item in items):
                    return sorted(items, key=lambda item: (item["id"], _sort_key_dump(item)))
                return sorted(items, key=lambda item: (_sort_key_dump(item["id"]), _sort_key_dump(item)))
            if _natural(items):
                return sorted(items)
            return sorted(items, key=_sort_key_dump)
        except (TypeError, ValueError):
            raise DataFormatError(f"Array values are not serializable: {value!r}"[:500]) from None
    return value


def canonical_json(value: Any) -> str:
    """Serialize the canonical form; equal records produce identical text."""

    normalized = canon(value)
    try:
        return json.dumps(normalized, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise DataFormatError(f"Record is not JSON serializable: {exc}") from None


def canonical_equal(left: Any, right: Any) -> bool:
    return canonical_json(left) == canonical_json(right)


__all__ = ["canon", "canonical_json", "canonical_equal"]
