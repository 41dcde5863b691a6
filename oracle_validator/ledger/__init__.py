"""Ledger types: transactions, datums, asset classes and addresses."""
from .assets import ADA, AssetClass, Value
from .datum import (
    ByteArrayData,
    ConstrData,
    Datum,
    IntData,
    ListData,
    MapData,
    decode_datum,
)
from .tx import DatumHash, InlineDatum, Transaction, TxInput, TxOutput, decode_tx

__all__ = [
    "ADA",
    "AssetClass",
    "ByteArrayData",
    "ConstrData",
    "Datum",
    "DatumHash",
    "InlineDatum",
    "IntData",
    "ListData",
    "MapData",
    "Transaction",
    "TxInput",
    "TxOutput",
    "Value",
    "decode_datum",
    "decode_tx",
]
