"""
Shelley address helpers (bech32).

Transaction outputs carry raw address bytes; stage tables and chain APIs use
bech32 strings. Comparisons are done by encoding raw bytes, since reference
bech32 decoding rejects strings longer than 90 characters (base addresses).
"""
from __future__ import annotations

from bech32 import bech32_decode, bech32_encode, convertbits

MAINNET_HRP = "addr"
TESTNET_HRP = "addr_test"
STAKE_MAINNET_HRP = "stake"
STAKE_TESTNET_HRP = "stake_test"

ENTERPRISE_SCRIPT_HEADER = 0x70


def address_hrp(raw: bytes) -> str:
    """Pick the human-readable prefix from the header byte."""
    if not raw:
        raise ValueError("empty address")
    header = raw[0]
    mainnet = (header & 0x0F) == 1
    if header >> 4 in (0x0E, 0x0F):
        return STAKE_MAINNET_HRP if mainnet else STAKE_TESTNET_HRP
    return MAINNET_HRP if mainnet else TESTNET_HRP


def encode_address(raw: bytes) -> str:
    """Encode raw Shelley address bytes as bech32."""
    words = convertbits(raw, 8, 5)
    if words is None:
        raise ValueError("unable to convert address bytes")
    return bech32_encode(address_hrp(raw), words)


def decode_address(address: str) -> bytes:
    """
    Decode a bech32 address into raw bytes.

    Raises:
        ValueError: If the string is not valid bech32 (or too long to decode)
    """
    hrp, words = bech32_decode(address)
    if hrp is None or words is None:
        raise ValueError(f"invalid bech32 address: {address}")
    raw = convertbits(words, 5, 8, False)
    if raw is None:
        raise ValueError(f"invalid bech32 payload: {address}")
    return bytes(raw)


def enterprise_script_address(script_hash: bytes, mainnet: bool) -> str:
    """Enterprise address (no staking part) locked by a script hash."""
    if len(script_hash) != 28:
        raise ValueError(f"script hash must be 28 bytes, got {len(script_hash)}")
    header = ENTERPRISE_SCRIPT_HEADER | (1 if mainnet else 0)
    return encode_address(bytes([header]) + script_hash)
