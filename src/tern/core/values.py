"""
tern.core.values — Property value model.

Property bags round-trip through the template, so only a fixed set of
value kinds is accepted:

  str, int, float, bool, mapping (str keys), list
  + placeholders (Ref, StepOutput and their graph-resolved forms)

Anything else raises PropertyError with the path of the bad value.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from tern.errors import PropertyError


class Placeholder:
    """Marker base for values resolved later (at build or deploy time)."""

    __slots__ = ()


_SCALARS = (str, bool, int, float)


def validate_value(value: Any, path: str = "value") -> None:
    """Check a single value against the supported kinds.

    >>> validate_value({"a": [1, "x", True]})
    >>> validate_value({"a": None})
    Traceback (most recent call last):
    ...
    tern.errors.PropertyError: value.a: unsupported value of type NoneType
    """
    if isinstance(value, (_SCALARS, Placeholder)):
        return
    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise PropertyError(f"{path}: mapping keys must be strings, got {key!r}")
            validate_value(item, f"{path}.{key}")
        return
    if isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            validate_value(item, f"{path}[{i}]")
        return
    raise PropertyError(f"{path}: unsupported value of type {type(value).__name__}")


def validate_properties(props: Mapping[str, Any] | None, path: str = "properties") -> dict[str, Any]:
    """Validate a property bag and return a plain-dict copy of it."""
    if props is None:
        return {}
    if not isinstance(props, Mapping):
        raise PropertyError(f"{path}: expected a mapping, got {type(props).__name__}")
    validate_value(props, path)
    return copy.deepcopy(dict(props))


def map_placeholders(value: Any, fn) -> Any:
    """Return a copy of value with every Placeholder replaced by fn(placeholder)."""
    if isinstance(value, Placeholder):
        return fn(value)
    if isinstance(value, Mapping):
        return {k: map_placeholders(v, fn) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [map_placeholders(v, fn) for v in value]
    return value


def iter_placeholders(value: Any):
    """Yield every Placeholder nested inside value."""
    if isinstance(value, Placeholder):
        yield value
    elif isinstance(value, Mapping):
        for v in value.values():
            yield from iter_placeholders(v)
    elif isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_placeholders(v)


def deep_merge(base: Mapping, override: Mapping) -> dict:
    """Deep merge two mappings. Override wins.

    >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": 99}})
    {'a': {'b': 99, 'c': 2}}
    """
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], Mapping)
            and isinstance(value, Mapping)
        ):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def parse_set_values(set_args: list[str]) -> dict:
    """Convert --set key=value arguments to a nested dict.

    >>> parse_set_values(["retries=3", "bucket.name=assets"])
    {'retries': 3, 'bucket': {'name': 'assets'}}
    """
    result: dict = {}
    for arg in set_args:
        if "=" not in arg:
            raise ValueError(f"Invalid --set format: '{arg}' (expected key=value)")
        key, value = arg.split("=", 1)
        parts = key.split(".")
        current = result
        for part in parts[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]
        current[parts[-1]] = _coerce_value(value)
    return result


def _coerce_value(value: str) -> Any:
    """Convert a string value to the appropriate Python type.

    >>> _coerce_value("3")
    3
    >>> _coerce_value("true")
    True
    >>> _coerce_value("arn:aws:s3:::bucket")
    'arn:aws:s3:::bucket'
    """
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value


def prune(value: Any, marker: object) -> Any:
    """Copy of value with every mapping entry or list item that is marker removed."""
    if isinstance(value, Mapping):
        return {k: prune(v, marker) for k, v in value.items() if v is not marker}
    if isinstance(value, (list, tuple)):
        return [prune(v, marker) for v in value if v is not marker]
    return value
