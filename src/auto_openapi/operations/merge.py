"""Merge operation fragments by source priority.

Priority is override > explicit validation > inferred > base. Objects merge
key by key, arrays and primitives from the higher-priority side replace the
lower one. Only an override can delete: a ``None`` value removes the key,
while ``None`` anywhere else falls through to the next source.

Inputs are never mutated.
"""

import copy

from .models import OperationDescriptor


def _merge_into(target: dict, source: dict, delete: bool) -> dict:
    for key, value in source.items():
        if value is None:
            if delete:
                target.pop(key, None)
            continue
        existing = target.get(key)
        if isinstance(value, dict) and isinstance(existing, dict):
            target[key] = _merge_into(existing, value, delete)
        else:
            target[key] = copy.deepcopy(value)
    return target


def smart_merge(*sources: dict | None) -> dict:
    """Merge sources given highest priority first. ``None`` values never delete."""
    result: dict = {}
    for source in reversed(sources):
        if source:
            _merge_into(result, source, delete=False)
    return result


def destructive_merge(target: dict, override: dict | None) -> dict:
    """Apply an override on top of ``target``; ``None`` values delete keys."""
    result = copy.deepcopy(target)
    if override:
        _merge_into(result, override, delete=True)
    return result


def _dedupe_key(item):
    if item is None or isinstance(item, (str, int, float, bool)):
        return (type(item), item)
    if isinstance(item, dict) and "name" in item and "in" in item:
        return ("parameter", item["name"], item["in"])
    return None


def cleanup(value):
    """Strip ``None`` field values and duplicate array entries (first one wins).

    ``None`` items inside arrays are values, e.g. a nullable ``enum``, and stay.
    """
    if isinstance(value, dict):
        return {k: cleanup(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        seen = set()
        result = []
        for item in value:
            key = _dedupe_key(item)
            if key is not None:
                if key in seen:
                    continue
                seen.add(key)
            result.append(cleanup(item))
        return result
    return value


def merge_fragments(
    override: dict | None,
    explicit: dict | None,
    inferred: dict | None,
    base: dict | None,
) -> dict:
    merged = smart_merge(explicit, inferred, base)
    merged = destructive_merge(merged, override)
    return cleanup(merged)


def merge(
    override: dict | None,
    explicit: dict | None,
    inferred: dict | None,
    base: dict | None,
) -> OperationDescriptor:
    """Merge fragments into the final, immutable operation descriptor."""
    return OperationDescriptor.from_openapi(merge_fragments(override, explicit, inferred, base))
