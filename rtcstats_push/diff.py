"""Structural diff of nested JSON records.

The relay sends each conference's state as a delta against the previous
poll.  Only keys whose values changed (or that are new) appear in the
result; keys that disappeared are not represented.  Arrays are compared
as whole values.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

JSONValue = Any


def diff(baseline: Any, current: Any) -> dict[str, Any]:
    """Return the keys of *current* that differ from *baseline*, recursively.

    Non-mapping input on either side yields an empty dict.
    """
    if not isinstance(baseline, Mapping) or not isinstance(current, Mapping):
        return {}

    result: dict[str, Any] = {}
    for key, value in current.items():
        if key not in baseline:
            result[key] = copy.deepcopy(value)
            continue

        old = baseline[key]
        if isinstance(old, Mapping) and isinstance(value, Mapping):
            nested = diff(old, value)
            if nested:
                result[key] = nested
        elif not json_equal(old, value):
            result[key] = copy.deepcopy(value)
    return result


def json_equal(a: JSONValue, b: JSONValue) -> bool:
    """Deep equality over JSON values.

    Booleans never equal numbers, ints and floats compare numerically.
    """
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b

    if _is_number(a) or _is_number(b):
        return _is_number(a) and _is_number(b) and a == b

    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if a.keys() != b.keys():
            return False
        return all(json_equal(a[k], b[k]) for k in a)

    if isinstance(a, (list, tuple)) or isinstance(b, (list, tuple)):
        if not (isinstance(a, (list, tuple)) and isinstance(b, (list, tuple))):
            return False
        if len(a) != len(b):
            return False
        return all(json_equal(x, y) for x, y in zip(a, b))

    return type(a) is type(b) and a == b


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
