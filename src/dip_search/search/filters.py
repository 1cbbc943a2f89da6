"""
Metadata filter parsing and matching helpers.

A filter is a ``(key, value)`` pair. It matches a flattened metadata map
when any value recorded under ``key`` contains ``value`` as a
case-insensitive substring. Filters combine with AND.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ..errors import ProtocolError
from ..indexing.metadata import flatten_metadata


@dataclass(frozen=True)
class Filter:
    """Substring filter on one flattened metadata key."""

    key: str
    value: str

    def to_dict(self) -> dict[str, str]:
        return {"key": self.key, "value": self.value}


class FilterParseError(ProtocolError):
    """Raised when filter syntax is invalid."""


_KEY_RE = re.compile(r"^[A-Za-z_@][\w.@-]*$")


def supported_filter_syntax() -> str:
    """Return a short help text for filter syntax."""
    return (
        "Supported filter syntax: `key=value`, `key:value` or `key~value` "
        "(case-insensitive substring match); combine with comma or `and`."
    )


def is_active_filter(flt: Filter) -> bool:
    """Filters with an empty key or value never restrict."""
    return bool(flt.key) and bool(flt.value)


def has_active_filters(filters: Iterable[Filter]) -> bool:
    return any(is_active_filter(flt) for flt in filters)


def _as_text(value: Any) -> str:
    # Render leaves the way the archive viewer displays them.
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def matches_filters(flat_metadata: Mapping[str, Sequence[Any]], filters: Sequence[Filter]) -> bool:
    """Return True when every active filter matches *flat_metadata*."""
    for flt in filters:
        if not is_active_filter(flt):
            continue
        values = flat_metadata.get(flt.key)
        if not values:
            return False
        needle = flt.value.lower()
        if not any(needle in _as_text(value).lower() for value in values):
            return False
    return True


def filter_metadata_list(metadata_list: list[Any], filters: Sequence[Filter]) -> list[Any]:
    """Keep the metadata trees matching *filters*; identity when none is active."""
    if not has_active_filters(filters):
        return metadata_list
    return [
        metadata
        for metadata in metadata_list
        if matches_filters(flatten_metadata(metadata), filters)
    ]


def coerce_filters(raw: Iterable[Filter | Mapping[str, Any]]) -> list[Filter]:
    """Build filters from ``{"key": ..., "value": ...}`` payloads."""
    filters: list[Filter] = []
    for item in raw:
        if isinstance(item, Filter):
            filters.append(item)
            continue
        if not isinstance(item, Mapping):
            raise FilterParseError(f"Filter must be an object with key/value: {item!r}")
        key = item.get("key", "")
        value = item.get("value", "")
        filters.append(
            Filter(key=str(key or ""), value="" if value in (None, "") else _as_text(value))
        )
    return filters


def parse_filters(raw_filters: str | None) -> list[Filter]:
    """Parse a raw filter string into filters."""
    if raw_filters is None or not raw_filters.strip():
        return []
    return [_parse_condition(condition) for condition in _split_conditions(raw_filters)]


def _parse_condition(condition: str) -> Filter:
    text = condition.strip()
    match = re.match(r"^\s*([^\s=:~]+)\s*[=:~]\s*(.+?)\s*$", text)
    if not match:
        raise FilterParseError(f"Invalid filter syntax: {text!r}")

    key = match.group(1)
    if not _KEY_RE.match(key):
        raise FilterParseError(f"Invalid filter key: {key!r}")
    value = _unquote(match.group(2))
    if not value:
        raise FilterParseError(f"Missing filter value: {text!r}")
    return Filter(key=key, value=value)


def _unquote(raw_value: str) -> str:
    text = raw_value.strip()
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    return text


def _split_conditions(raw: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(raw):
        ch = raw[i]

        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in {"'", '"'}:
            quote = ch
            current.append(ch)
            i += 1
            continue

        if ch == ",":
            _flush_part(parts, current)
            i += 1
            continue

        if (
            raw[i : i + 3].lower() == "and"
            and (i == 0 or raw[i - 1].isspace())
            and (i + 3 == len(raw) or raw[i + 3].isspace())
        ):
            _flush_part(parts, current)
            i += 3
            continue

        current.append(ch)
        i += 1

    _flush_part(parts, current)
    return parts


def _flush_part(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()
