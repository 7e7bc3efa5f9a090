"""Canonical JSON form used as hashing input."""
import json
import math
from typing import Any

from .errors import CanonicalizationError

# Largest integer an IEEE-754 double holds exactly
_MAX_SAFE_INTEGER = 2 ** 53


def canonicalize(value: Any) -> str:
    """
    Return the canonical string form of a JSON-like value.

    Keys are sorted at every depth, arrays keep their order, None values in
    mappings are dropped and integral floats are written as integers. The
    result is compact JSON, so equal values always give identical bytes no
    matter how their keys were inserted.
    """
    normalized = _normalize(value, set())
    try:
        return json.dumps(
            normalized,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError) as e:
        raise CanonicalizationError(str(e)) from e


def _normalize(value: Any, active: set[int]) -> Any:
    if value is None or isinstance(value, (bool, str)):
        return value

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise CanonicalizationError(f"Non-finite number: {value!r}")
        if value.is_integer() and abs(value) < _MAX_SAFE_INTEGER:
            return int(value)
        return value

    if isinstance(value, dict):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("Circular structure")
        active.add(marker)
        try:
            result = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise CanonicalizationError(
                        f"Mapping keys must be strings, got {type(key).__name__}"
                    )
                if item is None:
                    continue
                result[key] = _normalize(item, active)
            return result
        finally:
            active.discard(marker)

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("Circular structure")
        active.add(marker)
        try:
            return [_normalize(item, active) for item in value]
        finally:
            active.discard(marker)

    raise CanonicalizationError(f"Unsupported value type: {type(value).__name__}")
