"""
Metadata flattening helpers for archived documents.

Archive metadata arrives as arbitrarily nested trees (parsed XML or JSON).
``flatten_metadata`` turns a tree into a multi-valued map where every
primitive leaf is recorded twice: under its bare key, so filters can match
a field wherever it appears, and under its full dotted path, so they can
also target one branch.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any


FlatMetadata = dict[str, list[Any]]

_ATTRIBUTE_PREFIX = "@_"
_DEFAULT_GROUP_LABEL = "Other"
_ROOT_SECTION = "root"


@dataclass(frozen=True)
class FilterOption:
    """A selectable filter key."""

    value: str
    label: str


@dataclass
class FilterOptionGroup:
    """Filter keys sharing the same parent path."""

    group_label: str
    group_path: str
    options: list[FilterOption] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "groupLabel": self.group_label,
            "groupPath": self.group_path,
            "options": [{"value": opt.value, "label": opt.label} for opt in self.options],
        }


def clean_key(key: str) -> str:
    """Strip the XML attribute marker (``@_isPrimary`` -> ``isPrimary``)."""
    if key.startswith(_ATTRIBUTE_PREFIX):
        return key[len(_ATTRIBUTE_PREFIX) :]
    return key


def _is_container(value: Any) -> bool:
    return isinstance(value, (Mapping, list, tuple))


def _append(flat: FlatMetadata, key: str, value: Any) -> None:
    flat.setdefault(key, []).append(value)


def flatten_metadata(metadata: Any) -> FlatMetadata:
    """Flatten a metadata tree into ``{key: [values...]}``.

    >>> flatten_metadata({"a": {"b": 1, "c": [1, 2]}})
    {'b': [1], 'a.b': [1], 'c': [1, 2], 'a.c': [1, 2]}
    """
    flat: FlatMetadata = {}
    _traverse(metadata, "", flat)
    return flat


def _traverse(node: Any, prefix: str, flat: FlatMetadata) -> None:
    if isinstance(node, (list, tuple)):
        for index, item in enumerate(node):
            if _is_container(item):
                _traverse(item, prefix, flat)
            else:
                _append(flat, prefix or f"item_{index}", item)
        return

    if not isinstance(node, Mapping):
        return

    for raw_key, value in node.items():
        key = clean_key(str(raw_key))
        path = f"{prefix}.{key}" if prefix else key

        if isinstance(value, (list, tuple)):
            # Array elements share the key's path; indexes never extend it.
            for item in value:
                if _is_container(item):
                    _traverse(item, path, flat)
                else:
                    _record_leaf(flat, key, path, item)
        elif isinstance(value, Mapping):
            _traverse(value, path, flat)
        else:
            _record_leaf(flat, key, path, value)


def _record_leaf(flat: FlatMetadata, key: str, path: str, value: Any) -> None:
    _append(flat, key, value)
    if path != key:
        _append(flat, path, value)


def extract_available_keys(metadata_list: Iterable[Any]) -> list[str]:
    """Return the sorted union of flattened keys across *metadata_list*."""
    keys: set[str] = set()
    for metadata in metadata_list:
        keys.update(flatten_metadata(metadata).keys())
    return sorted(keys)


def significant_name(full_path: str) -> str:
    return full_path.split(".")[-1]


def group_path(full_path: str) -> str:
    """Everything but the last segment.

    ``Document.DatiDiRegistrazione.TipoRegistro.NumeroRegistrazione``
    -> ``Document.DatiDiRegistrazione.TipoRegistro``
    """
    parts = full_path.split(".")
    if len(parts) <= 1:
        return ""
    return ".".join(parts[:-1])


def group_label(full_path: str) -> str:
    """Last segment of the group path, ``Other`` for top-level keys."""
    parent = group_path(full_path)
    if not parent:
        return _DEFAULT_GROUP_LABEL
    return parent.split(".")[-1]


def group_keys_for_select(keys: Iterable[str]) -> list[FilterOptionGroup]:
    """Group flat keys into labelled sections for a faceted picker."""
    consolidated: dict[tuple[str, str], dict[str, Any]] = {}
    for full_path in keys:
        label = group_label(full_path)
        name = significant_name(full_path)
        entry = consolidated.setdefault(
            (label, name),
            {
                "significant_name": name,
                "group_label": label,
                "group_path": group_path(full_path),
                "full_paths": [],
            },
        )
        if full_path not in entry["full_paths"]:
            entry["full_paths"].append(full_path)

    sections: dict[str, FilterOptionGroup] = {}
    for entry in consolidated.values():
        section_key = entry["group_path"] or _ROOT_SECTION
        section = sections.setdefault(
            section_key,
            FilterOptionGroup(
                group_label=entry["group_label"],
                group_path=entry["group_path"],
            ),
        )
        section.options.append(
            FilterOption(value=entry["significant_name"], label=entry["significant_name"])
        )

    return sorted(sections.values(), key=lambda section: section.group_label.casefold())


def build_filter_consolidation_map(keys: Iterable[str]) -> dict[str, list[str]]:
    """Map each significant name to every full path ending with it."""
    consolidation: dict[str, list[str]] = {}
    for full_path in keys:
        consolidation.setdefault(significant_name(full_path), []).append(full_path)
    return consolidation


def metadata_text_for_embedding(metadata: Any, file_name: str | None = None) -> str:
    """Compose ``key: value`` text from a metadata tree for embedding.

    Only the most specific key of each leaf is used, so values recorded under
    both a bare name and a dotted path are not repeated.
    """
    flat = flatten_metadata(metadata)
    dotted_by_name = build_filter_consolidation_map(key for key in flat if "." in key)
    parts: list[str] = []
    for key, values in flat.items():
        remaining = list(values)
        if "." not in key:
            for path in dotted_by_name.get(key, []):
                for value in flat[path]:
                    if value in remaining:
                        remaining.remove(value)
        for value in remaining:
            if value is None or value == "":
                continue
            parts.append(f"{key}: {value}")
    text = ". ".join(parts)
    if file_name:
        text = f"{text} File: {file_name}" if text else f"File: {file_name}"
    return text
