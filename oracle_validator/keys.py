"""
Device keys.

The device master secret is a BIP32-Ed25519 extended private key, hex
encoded: kL (32 bytes, clamped scalar) || kR (32 bytes) [|| chain code].
Signing follows the extended-key variant of Ed25519 where the nonce is
derived from kR instead of a seed hash; the resulting signatures verify
with any standard Ed25519 verifier.

The same master secret also yields a secp256k1 key (s = master mod n) used
for the Bitcoin (Schnorr, x-only) and Ethereum (ECDSA, compressed) public
keys sent with push subscriptions.
"""
from __future__ import annotations

import hashlib

import coincurve
from nacl import bindings

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


class ExtendedPrivateKey:
    """
    Usage:
        key = ExtendedPrivateKey.from_hex(private_key_hex)
        signature = key.sign(message)
    """

    def __init__(self, raw: bytes):
        if len(raw) not in (64, 96):
            raise ValueError(f"extended private key must be 64 or 96 bytes, got {len(raw)}")
        self.k_left = raw[:32]
        self.k_right = raw[32:64]
        self.chain_code = raw[64:]
        self._scalar = bindings.crypto_core_ed25519_scalar_reduce(self.k_left + bytes(32))
        self._public_key = bindings.crypto_scalarmult_ed25519_base_noclamp(self.k_left)

    @classmethod
    def from_hex(cls, private_key_hex: str) -> "ExtendedPrivateKey":
        return cls(bytes.fromhex(private_key_hex))

    @property
    def public_key(self) -> bytes:
        return self._public_key

    def sign(self, message: bytes) -> bytes:
        r = bindings.crypto_core_ed25519_scalar_reduce(hashlib.sha512(self.k_right + message).digest())
        big_r = bindings.crypto_scalarmult_ed25519_base_noclamp(r)
        h = bindings.crypto_core_ed25519_scalar_reduce(
            hashlib.sha512(big_r + self._public_key + message).digest()
        )
        s = bindings.crypto_core_ed25519_scalar_add(bindings.crypto_core_ed25519_scalar_mul(h, self._scalar), r)
        return big_r + s


def derive_secp256k1_secret(master: bytes) -> bytes:
    s = int.from_bytes(master, "big") % SECP256K1_ORDER
    if s == 0:
        raise ValueError("master secret reduces to zero")
    return s.to_bytes(32, "big")


def schnorr_public_key(master: bytes) -> bytes:
    """x-only public key (BIP340), 32 bytes."""
    return ecdsa_public_key(master)[1:]


def ecdsa_public_key(master: bytes) -> bytes:
    """Compressed SEC1 public key, 33 bytes."""
    return coincurve.PrivateKey(derive_secp256k1_secret(master)).public_key.format(compressed=True)
