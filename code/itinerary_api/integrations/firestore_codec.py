"""Conversion between plain Python values and Firestore REST ``Value`` objects.

Closed set of supported types, each mapped to one tag:

    None   -> nullValue          bool  -> booleanValue
    str    -> stringValue        int   -> integerValue (decimal string)
    float  -> doubleValue        list  -> arrayValue {values: [...]}
    dict   -> mapValue {fields: {...}}

``decode_value(encode_value(x)) == x`` for every value built from these
types; integers never come back as floats. Anything else raises TypeError.
"""
from __future__ import annotations

from functools import singledispatch
from typing import Any, Callable, Dict, Mapping


@singledispatch
def encode_value(value: Any) -> Dict[str, Any]:
    raise TypeError(f"cannot encode {type(value).__name__} as a Firestore value")


@encode_value.register(type(None))
def _(value: None) -> Dict[str, Any]:
    return {"nullValue": None}


@encode_value.register(bool)
def _(value: bool) -> Dict[str, Any]:
    return {"booleanValue": value}


@encode_value.register(int)
def _(value: int) -> Dict[str, Any]:
    return {"integerValue": str(value)}


@encode_value.register(float)
def _(value: float) -> Dict[str, Any]:
    return {"doubleValue": value}


@encode_value.register(str)
def _(value: str) -> Dict[str, Any]:
    return {"stringValue": value}


@encode_value.register(list)
@encode_value.register(tuple)
def _(value) -> Dict[str, Any]:
    return {"arrayValue": {"values": [encode_value(v) for v in value]}}


@encode_value.register(dict)
def _(value: dict) -> Dict[str, Any]:
    return {"mapValue": {"fields": encode_fields(value)}}


def encode_fields(data: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Encode a document body (``{"fields": encode_fields(doc)}``)."""
    fields = {}
    for key, value in data.items():
        if not isinstance(key, str):
            raise TypeError(f"document keys must be strings, got {type(key).__name__}")
        fields[key] = encode_value(value)
    return fields


_DECODERS: Dict[str, Callable[[Any], Any]] = {
    "nullValue": lambda raw: None,
    "booleanValue": bool,
    "integerValue": int,
    "doubleValue": float,
    "stringValue": str,
    # Firestore returns timestamps as RFC 3339 strings; they are kept as text.
    "timestampValue": str,
    "arrayValue": lambda raw: [decode_value(v) for v in raw.get("values", [])],
    "mapValue": lambda raw: decode_fields(raw.get("fields", {})),
}


def decode_value(value: Mapping[str, Any]) -> Any:
    if len(value) != 1:
        raise ValueError(f"a Firestore value has exactly one tag, got {sorted(value)}")
    (tag, raw), = value.items()
    try:
        decoder = _DECODERS[tag]
    except KeyError:
        raise ValueError(f"unsupported Firestore value tag {tag!r}") from None
    return decoder(raw)


def decode_fields(fields: Mapping[str, Mapping[str, Any]]) -> Dict[str, Any]:
    return {key: decode_value(value) for key, value in fields.items()}
