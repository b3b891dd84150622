from __future__ import annotations

from collections.abc import Mapping
from copy import deepcopy
from typing import Any, Optional


def deep_merge(base: Any, patch: Any) -> Any:
    """Merge ``patch`` into ``base`` without mutating either.

    Mappings merge key by key, recursively. Lists and every other value in the
    patch replace what is there, so a patched list is always the full list.
    """
    if not isinstance(base, Mapping) or not isinstance(patch, Mapping):
        return deepcopy(base) if patch is None else deepcopy(patch)
    merged = deepcopy(dict(base))
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _list_index(segment: str, container: list) -> Optional[int]:
    if not segment.isdigit():
        return None
    index = int(segment)
    if index > len(container):
        return None
    return index


def set_path(base: Mapping[str, Any], path: str, value: Any) -> dict[str, Any]:
    """Return a copy of ``base`` with ``value`` written at a dotted ``path``.

    Missing or non-container intermediates become dicts. Numeric segments index
    into an existing list (``len`` appends). Siblings along the path are kept.
    """
    parts = [part for part in path.split(".") if part]
    result = deepcopy(dict(base))
    if not parts:
        return result

    cursor: Any = result
    for position, part in enumerate(parts):
        last = position == len(parts) - 1
        if isinstance(cursor, list):
            index = _list_index(part, cursor)
            if index is None:
                raise ValueError(f"Path segment '{part}' is not a valid index in '{path}'")
            if last:
                if index == len(cursor):
                    cursor.append(deepcopy(value))
                else:
                    cursor[index] = deepcopy(value)
                break
            if index == len(cursor):
                cursor.append({})
            elif not isinstance(cursor[index], (dict, list)):
                cursor[index] = {}
            cursor = cursor[index]
            continue

        if last:
            cursor[part] = deepcopy(value)
            break
        existing = cursor.get(part)
        if not isinstance(existing, (dict, list)):
            existing = {}
            cursor[part] = existing
        cursor = existing
    return result


def normalize_links(value: Any) -> Optional[Any]:
    """Fold ``[{label, url|href}]`` into a ``{label: url}`` map."""
    if not value:
        return None
    if isinstance(value, list):
        pairs: dict[str, str] = {}
        for item in value:
            if not isinstance(item, Mapping):
                continue
            label = str(item.get("label") or "").strip()
            url = str(item.get("url") or item.get("href") or "").strip()
            if label and url:
                pairs[label] = url
        return pairs or None
    if isinstance(value, Mapping):
        return dict(value)
    return None
