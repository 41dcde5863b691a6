"""
Datum decoding (Plutus data).

Closed variant type for the tagged binary data attached to outputs:
- ConstrData: constructor tag + fields
- MapData: ordered key/value pairs
- ListData: items
- IntData: arbitrary precision integer
- ByteArrayData: raw bytes

CBOR layout:
- constructor tags 121..127 -> alternatives 0..6
- constructor tags 1280..1400 -> alternatives 7..127
- tag 102 -> [alternative, fields]
- bignum tags 2/3 are decoded by cbor2 into plain ints

Usage:
    from oracle_validator.ledger.datum import decode_datum, expect_list

    items = expect_list(decode_datum(raw_cbor))
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import cbor2

from ..errors import UnexpectedDatumShape


@dataclass(frozen=True)
class ConstrData:
    tag: int
    fields: Tuple["Datum", ...]


@dataclass(frozen=True)
class MapData:
    items: Tuple[Tuple["Datum", "Datum"], ...]


@dataclass(frozen=True)
class ListData:
    items: Tuple["Datum", ...]


@dataclass(frozen=True)
class IntData:
    value: int


@dataclass(frozen=True)
class ByteArrayData:
    value: bytes


Datum = Union[ConstrData, MapData, ListData, IntData, ByteArrayData]


def shape_name(datum: Any) -> str:
    """Human-readable shape of a datum, used in UnexpectedDatumShape."""
    if isinstance(datum, ConstrData):
        return f"constr {datum.tag}"
    if isinstance(datum, MapData):
        return "map"
    if isinstance(datum, ListData):
        return "list"
    if isinstance(datum, IntData):
        return "int"
    if isinstance(datum, ByteArrayData):
        return "bytes"
    return type(datum).__name__


def _constr_alternative(tag: int, value: Any) -> Tuple[int, Any]:
    if 121 <= tag <= 127:
        return tag - 121, value
    if 1280 <= tag <= 1400:
        return tag - 1280 + 7, value
    if tag == 102:
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise UnexpectedDatumShape("[alternative, fields]", type(value).__name__)
        return int(value[0]), value[1]
    raise UnexpectedDatumShape("constructor tag", f"tag {tag}")


def from_cbor_object(obj: Any) -> Datum:
    """
    Convert an object produced by cbor2 into a Datum.

    Raises:
        UnexpectedDatumShape: For CBOR values that are not Plutus data
    """
    # bool is an int subclass in Python but not valid Plutus data
    if isinstance(obj, bool):
        raise UnexpectedDatumShape("plutus data", "bool")
    if isinstance(obj, int):
        return IntData(obj)
    if isinstance(obj, (bytes, bytearray)):
        return ByteArrayData(bytes(obj))
    if isinstance(obj, (list, tuple)):
        return ListData(tuple(from_cbor_object(item) for item in obj))
    if isinstance(obj, Mapping):
        return MapData(tuple(
            (from_cbor_object(key), from_cbor_object(value))
            for key, value in obj.items()
        ))
    if isinstance(obj, cbor2.CBORTag):
        alternative, fields = _constr_alternative(obj.tag, obj.value)
        if not isinstance(fields, (list, tuple)):
            raise UnexpectedDatumShape("constructor fields list", type(fields).__name__)
        return ConstrData(alternative, tuple(from_cbor_object(f) for f in fields))
    raise UnexpectedDatumShape("plutus data", type(obj).__name__)


def decode_datum(raw: bytes) -> Datum:
    """
    Decode CBOR-encoded Plutus data.

    Raises:
        UnexpectedDatumShape: If bytes are not valid CBOR Plutus data
    """
    try:
        obj = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise UnexpectedDatumShape("cbor plutus data", f"undecodable bytes ({e})") from e
    except RecursionError:
        raise UnexpectedDatumShape("cbor plutus data", "nesting too deep") from None
    try:
        return from_cbor_object(obj)
    except RecursionError:
        raise UnexpectedDatumShape("plutus data", "nesting too deep") from None


def decode_datum_hex(raw_hex: str) -> Datum:
    try:
        raw = bytes.fromhex(raw_hex)
    except ValueError as e:
        raise UnexpectedDatumShape("hex encoded datum", "invalid hex") from e
    return decode_datum(raw)


# === TYPED PROJECTIONS ===

def expect_list(datum: Datum, context: str = "") -> Tuple[Datum, ...]:
    if not isinstance(datum, ListData):
        raise UnexpectedDatumShape("list", shape_name(datum), context)
    return datum.items


def expect_int(datum: Datum, context: str = "") -> int:
    if not isinstance(datum, IntData):
        raise UnexpectedDatumShape("int", shape_name(datum), context)
    return datum.value


def expect_bytes(datum: Datum, context: str = "") -> bytes:
    if not isinstance(datum, ByteArrayData):
        raise UnexpectedDatumShape("bytes", shape_name(datum), context)
    return datum.value


def expect_map(datum: Datum, context: str = "") -> Tuple[Tuple[Datum, Datum], ...]:
    if not isinstance(datum, MapData):
        raise UnexpectedDatumShape("map", shape_name(datum), context)
    return datum.items


def expect_constr(
    datum: Datum,
    tag: Optional[int] = None,
    n_fields: Optional[int] = None,
    context: str = "",
) -> ConstrData:
    """
    Project a constructor record, optionally checking tag and field count.
    """
    expected = "constr" if tag is None else f"constr {tag}"
    if not isinstance(datum, ConstrData):
        raise UnexpectedDatumShape(expected, shape_name(datum), context)
    if tag is not None and datum.tag != tag:
        raise UnexpectedDatumShape(expected, shape_name(datum), context)
    if n_fields is not None and len(datum.fields) != n_fields:
        raise UnexpectedDatumShape(
            f"{expected} with {n_fields} fields",
            f"{shape_name(datum)} with {len(datum.fields)} fields",
            context,
        )
    return datum


def map_lookup(
    items: Tuple[Tuple[Datum, Datum], ...],
    key: str,
) -> Optional[Datum]:
    """Find the value stored under a utf-8 byte-string key, or None."""
    wanted = key.encode("utf-8")
    for k, v in items:
        if isinstance(k, ByteArrayData) and k.value == wanted:
            return v
    return None


def expect_utf8(datum: Datum, context: str = "") -> str:
    raw = expect_bytes(datum, context)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UnexpectedDatumShape("utf-8 bytes", "non utf-8 bytes", context) from e


# === ENCODING (tests and fixtures) ===

def to_cbor_object(datum: Datum) -> Any:
    """Inverse of from_cbor_object."""
    if isinstance(datum, IntData):
        return datum.value
    if isinstance(datum, ByteArrayData):
        return datum.value
    if isinstance(datum, ListData):
        return [to_cbor_object(item) for item in datum.items]
    if isinstance(datum, MapData):
        return {_hashable(to_cbor_object(k)): to_cbor_object(v) for k, v in datum.items}
    if isinstance(datum, ConstrData):
        fields = [to_cbor_object(f) for f in datum.fields]
        if datum.tag < 7:
            return cbor2.CBORTag(121 + datum.tag, fields)
        if datum.tag < 128:
            return cbor2.CBORTag(1280 + datum.tag - 7, fields)
        return cbor2.CBORTag(102, [datum.tag, fields])
    raise TypeError(f"not a datum: {datum!r}")


def _hashable(obj: Any) -> Any:
    if isinstance(obj, list):
        return tuple(_hashable(o) for o in obj)
    return obj


def encode_datum(datum: Datum) -> bytes:
    return cbor2.dumps(to_cbor_object(datum))
