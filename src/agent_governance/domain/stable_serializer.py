"""Deterministic, cycle-safe JSON encoding of tool call arguments.

The output is compact JSON with mapping keys sorted, so two structurally equal
values always serialize to the same string regardless of key insertion order.
It is what ``args_pattern`` regexes are matched against.

Rules:
    * callables (and ``UNDEFINED``) are dropped from mappings and rendered as
      ``null`` inside sequences;
    * objects exposing ``to_json()`` are replaced by its result, pydantic
      models by ``model_dump()``; if ``to_json()`` raises, the object's
      attributes are walked instead;
    * a value that is its own ancestor renders as ``"[Circular]"``; the same
      object appearing twice side by side is not a cycle;
    * strings are written as-is rather than ASCII-escaped, and integral floats
      without a fraction (``1.0`` renders as ``1``);
    * the walk uses an explicit stack, so arbitrarily deep input cannot raise
      ``RecursionError``.
"""

import json
import math
from collections.abc import Mapping
from datetime import date, datetime, time
from enum import Enum
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel

CIRCULAR = '"[Circular]"'


class _Undefined:
    """Sentinel for a value that should be omitted like a missing key."""

    _instance: "_Undefined | None" = None

    def __new__(cls) -> "_Undefined":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined()

# work item kinds
_TEXT = 0
_VALUE = 1
_LEAVE = 2


def _is_omitted(value: Any) -> bool:
    return value is UNDEFINED or (
        callable(value) and not isinstance(value, BaseModel | Mapping)
    )


def _resolve(value: Any) -> Any:
    """Apply custom serialization hooks to a single value."""
    if isinstance(value, BaseModel):
        return value.model_dump()
    hook = getattr(value, "to_json", None)
    if callable(hook) and not isinstance(value, type):
        try:
            return hook()
        except Exception:
            return _structure_of(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, PurePath):
        return str(value)
    if isinstance(value, bytes | bytearray):
        return value.decode("utf-8", errors="replace")
    return value


def _structure_of(value: Any) -> Any:
    if hasattr(value, "__dict__"):
        return dict(vars(value))
    return str(value)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _encode_float(value: float) -> str:
    """Shortest round-trip number form; integral values carry no fraction."""
    if not math.isfinite(value):
        return "null"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    mantissa, marker, exponent = text.partition("e")
    if marker:
        sign = "-" if exponent.startswith("-") else "+"
        text = f"{mantissa}e{sign}{exponent.lstrip('+-').lstrip('0')}"
    return text


def _encode_scalar(value: Any) -> str | None:
    if value is None or isinstance(value, bool | int):
        return json.dumps(value)
    if isinstance(value, str):
        return _quote(value)
    if isinstance(value, float):
        return _encode_float(value)
    return None


def stable_stringify(value: Any) -> str:
    """Serialize ``value`` to canonical compact JSON."""
    parts: list[str] = []
    # id -> object; holding the object keeps its id from being reused mid-walk
    ancestors: dict[int, Any] = {}
    work: list[tuple[int, Any]] = [(_VALUE, value)]

    while work:
        kind, item = work.pop()

        if kind == _TEXT:
            parts.append(item)
            continue
        if kind == _LEAVE:
            for marker in item:
                ancestors.pop(marker, None)
            continue

        if _is_omitted(item):
            parts.append("null")
            continue

        original_id = id(item)
        if original_id in ancestors:
            parts.append(CIRCULAR)
            continue

        resolved = _resolve(item)
        scalar = _encode_scalar(resolved)
        if scalar is not None:
            parts.append(scalar)
            continue
        if id(resolved) in ancestors:
            parts.append(CIRCULAR)
            continue

        markers = (original_id, id(resolved))
        if isinstance(resolved, Mapping):
            ancestors[original_id] = item
            ancestors[id(resolved)] = resolved
            entries = _sorted_entries(resolved)
            work.append((_LEAVE, markers))
            work.append((_TEXT, "}"))
            for index in range(len(entries) - 1, -1, -1):
                key, entry = entries[index]
                work.append((_VALUE, entry))
                prefix = "{" if index == 0 else ","
                work.append((_TEXT, prefix + _quote(key) + ":"))
            if not entries:
                work.append((_TEXT, "{"))
            continue

        if isinstance(resolved, list | tuple | set | frozenset):
            ancestors[original_id] = item
            ancestors[id(resolved)] = resolved
            elements = (
                sorted(resolved, key=stable_stringify)
                if isinstance(resolved, set | frozenset)
                else list(resolved)
            )
            work.append((_LEAVE, markers))
            work.append((_TEXT, "]"))
            for index in range(len(elements) - 1, -1, -1):
                work.append((_VALUE, elements[index]))
                if index:
                    work.append((_TEXT, ","))
            work.append((_TEXT, "["))
            continue

        # arbitrary object without a hook: walk its attributes
        structure = _structure_of(resolved)
        if isinstance(structure, str):
            parts.append(_quote(structure))
        else:
            ancestors[original_id] = item
            work.append((_LEAVE, (original_id,)))
            work.append((_VALUE, structure))

    return "".join(parts)


def _sorted_entries(mapping: Mapping[Any, Any]) -> list[tuple[str, Any]]:
    entries = [
        (key if isinstance(key, str) else _key_text(key), entry)
        for key, entry in mapping.items()
        if not _is_omitted(entry)
    ]
    entries.sort(key=lambda pair: pair[0])
    return entries


def _key_text(key: Any) -> str:
    if isinstance(key, bool) or key is None:
        return json.dumps(key)
    if isinstance(key, float):
        return _encode_float(key)
    if isinstance(key, Enum):
        return str(key.value)
    return str(key)
