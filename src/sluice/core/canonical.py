# src/sluice/core/canonical.py
"""
Canonical JSON serialization for raw-store keys.

Two-phase approach:
1. Normalize: Convert dataclasses, pydantic models, datetimes and mappings
   to JSON-safe primitives (our code)
2. Serialize: Produce deterministic JSON per RFC 8785/JCS (rfc8785 package)

The params and input of every raw record are stored as canonical JSON and
keyed by its SHA-256, so two semantically equal inputs always land on the
same key regardless of dict ordering or container type.

NaN and Infinity are REJECTED, not silently converted.
"""

from __future__ import annotations

import base64
import dataclasses
import hashlib
import math
from collections.abc import Mapping
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

import rfc8785
from pydantic import BaseModel


def _normalize_value(obj: Any) -> Any:
    """Convert a single leaf value to a JSON-safe primitive.

    Raises:
        ValueError: If value is a non-finite float or Decimal
    """
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot canonicalize non-finite float: {obj}. Use None for missing values, not NaN.")
        return obj

    # Enum before str: StrEnum members are str instances
    if isinstance(obj, Enum):
        return _normalize_value(obj.value)

    if obj is None or isinstance(obj, str | int | bool):
        return obj

    if isinstance(obj, datetime):
        # Naive datetimes assumed UTC
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=UTC)
        return obj.astimezone(UTC).isoformat()

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, bytes):
        return {"__bytes__": base64.b64encode(obj).decode("ascii")}

    if isinstance(obj, Decimal):
        if not obj.is_finite():
            raise ValueError(f"Cannot canonicalize non-finite Decimal: {obj}. Use None for missing values, not NaN/Infinity.")
        return str(obj)

    raise TypeError(f"Cannot canonicalize value of type {type(obj).__name__}: {obj!r}")


def to_jsonable(data: Any) -> Any:
    """Recursively normalize a data structure for canonical JSON.

    Dataclass instances and pydantic models become dicts of their fields,
    mappings become dicts with string keys, lists/tuples/sets become lists
    (sets sorted by their canonical form).
    """
    if isinstance(data, BaseModel):
        return to_jsonable(data.model_dump(mode="python"))
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return {f.name: to_jsonable(getattr(data, f.name)) for f in dataclasses.fields(data)}
    if isinstance(data, Mapping):
        return {str(k): to_jsonable(v) for k, v in data.items()}
    if isinstance(data, list | tuple):
        return [to_jsonable(v) for v in data]
    if isinstance(data, set | frozenset):
        return sorted((to_jsonable(v) for v in data), key=canonical_json)
    return _normalize_value(data)


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON (no whitespace, sorted keys).

    Raises:
        ValueError: If data contains NaN, Infinity, or other non-finite values
        TypeError: If data contains types that cannot be serialized
    """
    normalized = to_jsonable(obj)
    result: bytes = rfc8785.dumps(normalized)
    return result.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of the canonical JSON of obj."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
