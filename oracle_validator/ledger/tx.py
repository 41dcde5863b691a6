"""
Transaction codec.

Decodes a hex-encoded Cardano transaction (Alonzo/Babbage/Conway layout) into
an immutable Transaction exposing inputs, outputs, fee and minted assets.

The transaction id is blake2b-256 over the body bytes exactly as submitted.
cbor2 decodes values but does not preserve original encodings, so the body
span is located with a small item scanner before decoding.

Usage:
    from oracle_validator.ledger.tx import decode_tx

    tx = decode_tx(raw_hex)
    print(tx.id_hex, len(tx.outputs))
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple, Union

import cbor2

from ..errors import MalformedTransaction, UnexpectedDatumShape
from .address import encode_address
from .assets import AssetClass, Value, multiasset_from_cbor_object
from .datum import Datum, from_cbor_object

# body map keys
BODY_INPUTS = 0
BODY_OUTPUTS = 1
BODY_FEE = 2
BODY_MINT = 9

# post-Alonzo output map keys
OUTPUT_ADDRESS = 0
OUTPUT_AMOUNT = 1
OUTPUT_DATUM = 2

TAG_SET = 258
TAG_ENCODED_CBOR = 24

# deepest array/map/tag nesting accepted by the scanner
MAX_NESTING_DEPTH = 64


@dataclass(frozen=True)
class TxInput:
    tx_hash: bytes
    index: int


@dataclass(frozen=True)
class InlineDatum:
    data: Datum


@dataclass(frozen=True)
class DatumHash:
    hash: bytes


OutputDatum = Union[InlineDatum, DatumHash]


@dataclass(frozen=True)
class TxOutput:
    address: bytes
    value: Value
    datum: Optional[OutputDatum] = None

    @property
    def bech32_address(self) -> str:
        return encode_address(self.address)


@dataclass(frozen=True)
class Transaction:
    body_bytes: bytes
    inputs: Tuple[TxInput, ...]
    outputs: Tuple[TxOutput, ...]
    fee: int
    minted: Mapping[AssetClass, int] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def id(self) -> bytes:
        return hashlib.blake2b(self.body_bytes, digest_size=32).digest()

    @property
    def id_hex(self) -> str:
        return self.id.hex()

    def minted_asset_classes(self) -> Tuple[AssetClass, ...]:
        """Minted (or burned) asset classes other than the base currency."""
        return tuple(ac for ac in self.minted if not ac.is_base)

    def outputs_at(self, bech32_address: str) -> Tuple[TxOutput, ...]:
        return tuple(o for o in self.outputs if o.bech32_address == bech32_address)


# === CBOR ITEM SCANNER ===

def _read_head(data: bytes, pos: int) -> Tuple[int, int, Optional[int], int]:
    """
    Read an item head.

    Returns:
        (major type, additional info, argument or None if indefinite, next pos)
    """
    if pos >= len(data):
        raise MalformedTransaction("truncated CBOR")
    initial = data[pos]
    major = initial >> 5
    info = initial & 0x1F
    pos += 1

    if info < 24:
        return major, info, info, pos
    if info in (24, 25, 26, 27):
        size = 1 << (info - 24)
        if pos + size > len(data):
            raise MalformedTransaction("truncated CBOR")
        return major, info, int.from_bytes(data[pos:pos + size], "big"), pos + size
    if info == 31 and major in (2, 3, 4, 5, 7):
        return major, info, None, pos
    raise MalformedTransaction(f"invalid CBOR additional info {info} for major type {major}")


def _skip_item(data: bytes, pos: int, depth: int = 0) -> int:
    """Return the offset just past the CBOR item starting at pos."""
    if depth > MAX_NESTING_DEPTH:
        raise MalformedTransaction(f"CBOR nested deeper than {MAX_NESTING_DEPTH} levels")
    major, info, arg, pos = _read_head(data, pos)

    if major in (0, 1):
        return pos

    if major in (2, 3):
        if arg is None:
            while True:
                if pos >= len(data):
                    raise MalformedTransaction("truncated CBOR")
                if data[pos] == 0xFF:
                    return pos + 1
                chunk_major, _, chunk_len, pos = _read_head(data, pos)
                if chunk_major != major or chunk_len is None:
                    raise MalformedTransaction("invalid indefinite string chunk")
                pos += chunk_len
                if pos > len(data):
                    raise MalformedTransaction("truncated CBOR")
        end = pos + arg
        if end > len(data):
            raise MalformedTransaction("truncated CBOR")
        return end

    if major in (4, 5):
        per_entry = 1 if major == 4 else 2
        if arg is None:
            while True:
                if pos >= len(data):
                    raise MalformedTransaction("truncated CBOR")
                if data[pos] == 0xFF:
                    return pos + 1
                for _ in range(per_entry):
                    pos = _skip_item(data, pos, depth + 1)
        for _ in range(arg * per_entry):
            pos = _skip_item(data, pos, depth + 1)
        return pos

    if major == 6:
        return _skip_item(data, pos, depth + 1)

    # major 7: simple values and floats, argument already consumed
    if arg is None:
        raise MalformedTransaction("unexpected break")
    return pos


def _split_transaction(raw: bytes) -> Tuple[int, bytes]:
    """
    Check the top-level array and locate the body span.

    Returns:
        (number of top-level items, exact body bytes)
    """
    major, _, count, pos = _read_head(raw, 0)
    if major != 4:
        raise MalformedTransaction("transaction is not a CBOR array")
    if count is not None and count not in (3, 4):
        raise MalformedTransaction(f"transaction array has {count} items, expected 3 or 4")

    body_start = pos
    body_end = _skip_item(raw, body_start)
    body = raw[body_start:body_end]

    end = _skip_item(raw, 0)
    if end != len(raw):
        raise MalformedTransaction(f"{len(raw) - end} trailing bytes after transaction")

    return (count if count is not None else -1), body


# === DECODING ===

def decode_tx(raw_hex: str) -> Transaction:
    """
    Decode a hex-encoded transaction.

    Raises:
        MalformedTransaction: On bad hex, truncated or trailing bytes, or any
            structurally invalid body field
    """
    try:
        raw = bytes.fromhex(raw_hex.strip())
    except (ValueError, AttributeError) as e:
        raise MalformedTransaction("transaction is not valid hex") from e

    if not raw:
        raise MalformedTransaction("empty transaction")

    count, body_bytes = _split_transaction(raw)

    try:
        top = cbor2.loads(raw)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise MalformedTransaction(f"undecodable transaction: {e}") from e

    if not isinstance(top, list) or len(top) not in (3, 4):
        raise MalformedTransaction("transaction must be an array of 3 or 4 items")

    body = top[0]
    if not hasattr(body, "items"):
        raise MalformedTransaction("transaction body is not a map")

    return Transaction(
        body_bytes=body_bytes,
        inputs=_decode_inputs(body.get(BODY_INPUTS)),
        outputs=_decode_outputs(body.get(BODY_OUTPUTS)),
        fee=_decode_fee(body.get(BODY_FEE)),
        minted=_decode_mint(body.get(BODY_MINT)),
    )


def _decode_inputs(obj: Any) -> Tuple[TxInput, ...]:
    if obj is None:
        raise MalformedTransaction("transaction body has no inputs")
    if isinstance(obj, cbor2.CBORTag) and obj.tag == TAG_SET:
        obj = obj.value
    if not isinstance(obj, (list, tuple, set, frozenset)):
        raise MalformedTransaction("inputs must be an array or set")

    inputs = []
    for item in obj:
        if (
            not isinstance(item, (list, tuple))
            or len(item) != 2
            or not isinstance(item[0], bytes)
            or len(item[0]) != 32
            or not isinstance(item[1], int)
        ):
            raise MalformedTransaction("invalid transaction input")
        inputs.append(TxInput(item[0], item[1]))

    return tuple(sorted(inputs, key=lambda i: (i.tx_hash, i.index)))


def _decode_outputs(obj: Any) -> Tuple[TxOutput, ...]:
    if not isinstance(obj, (list, tuple)):
        raise MalformedTransaction("outputs must be an array")
    return tuple(_decode_output(i, item) for i, item in enumerate(obj))


def _decode_output(index: int, obj: Any) -> TxOutput:
    if isinstance(obj, (list, tuple)):
        # legacy: [address, amount, ? datum_hash]
        if len(obj) not in (2, 3):
            raise MalformedTransaction(f"output {index}: legacy output has {len(obj)} items")
        address, amount = obj[0], obj[1]
        datum = None
        if len(obj) == 3:
            if not isinstance(obj[2], bytes) or len(obj[2]) != 32:
                raise MalformedTransaction(f"output {index}: invalid datum hash")
            datum = DatumHash(obj[2])
    elif hasattr(obj, "items"):
        address = obj.get(OUTPUT_ADDRESS)
        amount = obj.get(OUTPUT_AMOUNT)
        datum = _decode_datum_option(index, obj.get(OUTPUT_DATUM))
    else:
        raise MalformedTransaction(f"output {index}: not an array or map")

    if not isinstance(address, bytes) or not address:
        raise MalformedTransaction(f"output {index}: invalid address")

    try:
        value = Value.from_cbor_object(amount)
    except ValueError as e:
        raise MalformedTransaction(f"output {index}: {e}") from e

    return TxOutput(address=address, value=value, datum=datum)


def _decode_datum_option(index: int, obj: Any) -> Optional[OutputDatum]:
    if obj is None:
        return None
    if not isinstance(obj, (list, tuple)) or len(obj) != 2:
        raise MalformedTransaction(f"output {index}: invalid datum option")

    kind, payload = obj
    if kind == 0:
        if not isinstance(payload, bytes) or len(payload) != 32:
            raise MalformedTransaction(f"output {index}: invalid datum hash")
        return DatumHash(payload)

    if kind == 1:
        if isinstance(payload, cbor2.CBORTag) and payload.tag == TAG_ENCODED_CBOR:
            payload = payload.value
        if not isinstance(payload, bytes):
            raise MalformedTransaction(f"output {index}: inline datum is not tag-24 bytes")
        try:
            return InlineDatum(from_cbor_object(cbor2.loads(payload)))
        except (cbor2.CBORDecodeError, ValueError, TypeError, UnexpectedDatumShape) as e:
            raise MalformedTransaction(f"output {index}: invalid inline datum: {e}") from e
        except RecursionError:
            raise MalformedTransaction(f"output {index}: inline datum nested too deep") from None

    raise MalformedTransaction(f"output {index}: unknown datum option {kind!r}")


def _decode_fee(obj: Any) -> int:
    if not isinstance(obj, int) or isinstance(obj, bool) or obj < 0:
        raise MalformedTransaction("transaction fee missing or invalid")
    return obj


def _decode_mint(obj: Any) -> Mapping[AssetClass, int]:
    if obj is None:
        return MappingProxyType({})
    try:
        return multiasset_from_cbor_object(obj)
    except ValueError as e:
        raise MalformedTransaction(f"invalid mint field: {e}") from e
