"""Canonicalizer: deterministic JSON serialization used as hash input.

Rules:
    - Object keys are sorted lexicographically, recursively
    - Arrays keep their order (observation order is collection order)
    - No whitespace; UTF-8 output; non-ASCII characters are kept verbatim
    - Integral floats below 2**53 are written as integers (97500.0 -> 97500),
      other floats in fixed decimal notation with the shortest round-trip
      digits, never in exponent form (4.1e-05 -> 0.000041)
    - NaN and infinities are rejected

Two implementations that follow these rules produce byte-identical output
for the same logical bundle.

.. code-block:: python

    >>> canonicalize({"b": 1, "a": [2.0, 0.5]})
    b'{"a":[2,0.5],"b":1}'
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from enum import Enum
from typing import Any

# Largest magnitude at which every integer is exactly representable as a float.
_MAX_SAFE_INTEGER = 2**53


class CanonicalizationError(TypeError):
    """Raised when a value cannot be represented canonically."""

    pass


def _normalize(value: Any, path: str) -> Any:
    """Convert a value into plain JSON types with canonical numbers."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return _normalize(value.value, path)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError(f"{path}: non-finite number {value!r}")
        if value.is_integer() and abs(value) < _MAX_SAFE_INTEGER:
            return int(value)
        return value
    if hasattr(value, "to_dict"):
        return _normalize(value.to_dict(), path)
    if isinstance(value, dict):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise CanonicalizationError(
                    f"{path}: object keys must be strings, got {type(key).__name__}"
                )
            normalized[key] = _normalize(item, f"{path}.{key}")
        return normalized
    if isinstance(value, (list, tuple)):
        return [_normalize(item, f"{path}[{i}]") for i, item in enumerate(value)]
    raise CanonicalizationError(f"{path}: unsupported type {type(value).__name__}")


def _format_float(value: float) -> str:
    """Shortest round-trip digits of ``value`` in fixed decimal notation."""
    return format(Decimal(repr(value)), "f")


def _encode(value: Any) -> str:
    """Write normalized data as JSON text with fixed-decimal numbers."""
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _format_float(value)
    if isinstance(value, dict):
        # sorted() on str compares code points, the order JSON canonical forms use
        items = (
            f"{json.dumps(key, ensure_ascii=False)}:{_encode(value[key])}"
            for key in sorted(value)
        )
        return "{" + ",".join(items) + "}"
    return "[" + ",".join(_encode(item) for item in value) + "]"


def canonicalize(value: Any) -> bytes:
    """Serialize a value into canonical JSON bytes.

    :param value: Plain JSON data, or objects exposing ``to_dict()``.
    :returns: Canonical UTF-8 encoded JSON.
    :raises CanonicalizationError: If the value holds unsupported types,
        non-string keys or non-finite numbers.
    """
    return _encode(_normalize(value, "$")).encode("utf-8")
