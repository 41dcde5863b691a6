"""
Asset classes and multi-asset values.

AssetClass is used as a mapping key throughout the pipeline: two values with
the same policy and token-name bytes compare equal and hash identically.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Tuple

from ..errors import UnexpectedDatumShape
from .datum import Datum, expect_bytes, expect_constr


@dataclass(frozen=True)
class AssetClass:
    policy: bytes = b""
    token_name: bytes = b""

    @classmethod
    def from_unit(cls, unit: str) -> "AssetClass":
        """Parse a concatenated hex unit (56 hex chars of policy + token name)."""
        if unit == "lovelace":
            return ADA
        raw = bytes.fromhex(unit)
        return cls(raw[:28], raw[28:])

    @classmethod
    def from_string(cls, s: str) -> "AssetClass":
        """Parse the dotted "policyhex.namehex" form."""
        policy, _, name = s.partition(".")
        return cls(bytes.fromhex(policy), bytes.fromhex(name))

    @classmethod
    def from_datum(cls, datum: Datum, context: str = "asset class") -> "AssetClass":
        """Decode Constr 0 [policy bytes, token name bytes]."""
        constr = expect_constr(datum, 0, 2, context)
        policy = expect_bytes(constr.fields[0], context)
        token_name = expect_bytes(constr.fields[1], context)
        if policy and len(policy) != 28:
            raise UnexpectedDatumShape("28-byte policy", f"{len(policy)}-byte policy", context)
        return cls(policy, token_name)

    @property
    def is_base(self) -> bool:
        return not self.policy and not self.token_name

    @property
    def unit(self) -> str:
        """Blockfrost unit string."""
        if self.is_base:
            return "lovelace"
        return self.policy.hex() + self.token_name.hex()

    def __str__(self) -> str:
        return f"{self.policy.hex()}.{self.token_name.hex()}"


ADA = AssetClass()


@dataclass(frozen=True)
class Value:
    """Lovelace plus native assets (zero quantities are dropped)."""
    lovelace: int = 0
    assets: Mapping[AssetClass, int] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_cbor_object(cls, obj: Any) -> "Value":
        """
        Decode a ledger amount: uint or [coin, {policy: {name: quantity}}].

        Raises:
            ValueError: For any other shape
        """
        if isinstance(obj, int) and not isinstance(obj, bool):
            return cls(obj)
        if isinstance(obj, (list, tuple)) and len(obj) == 2 and isinstance(obj[0], int):
            return cls(obj[0], multiasset_from_cbor_object(obj[1]))
        raise ValueError(f"invalid amount {type(obj).__name__}")

    def quantity_of(self, asset_class: AssetClass) -> int:
        if asset_class.is_base:
            return self.lovelace
        return self.assets.get(asset_class, 0)

    def asset_classes(self) -> Tuple[AssetClass, ...]:
        return tuple(self.assets)


def multiasset_from_cbor_object(obj: Any) -> Mapping[AssetClass, int]:
    """
    Decode {policy: {name: quantity}} into an immutable AssetClass mapping.

    Raises:
        ValueError: For malformed policies, names or quantities
    """
    if not hasattr(obj, "items"):
        raise ValueError(f"invalid multiasset {type(obj).__name__}")

    out: Dict[AssetClass, int] = {}
    for policy, tokens in obj.items():
        if not isinstance(policy, bytes) or len(policy) != 28:
            raise ValueError("invalid policy id in multiasset")
        if not hasattr(tokens, "items"):
            raise ValueError("invalid token map in multiasset")
        for name, qty in tokens.items():
            if not isinstance(name, bytes) or len(name) > 32:
                raise ValueError("invalid token name in multiasset")
            if not isinstance(qty, int) or isinstance(qty, bool):
                raise ValueError("invalid quantity in multiasset")
            if qty != 0:
                out[AssetClass(policy, name)] = qty
    return MappingProxyType(out)
