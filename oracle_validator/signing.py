"""
Transaction signing.

The signed message is the transaction id: blake2b-256 over the exact body
bytes. A failure to sign is fatal and never retried.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Union

import cbor2
from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey

from .errors import SigningError
from .keys import ExtendedPrivateKey
from .ledger.tx import Transaction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Signature:
    public_key: bytes
    signature: bytes

    def to_cbor_object(self) -> list:
        return [self.public_key, self.signature]

    def to_cbor(self) -> bytes:
        return cbor2.dumps(self.to_cbor_object())

    def to_hex(self) -> str:
        return self.to_cbor().hex()

    @classmethod
    def from_cbor_object(cls, obj) -> "Signature":
        if (
            not isinstance(obj, (list, tuple))
            or len(obj) != 2
            or not all(isinstance(x, bytes) for x in obj)
        ):
            raise ValueError("signature must be [public_key, signature]")
        return cls(obj[0], obj[1])

    def verify(self, message: bytes) -> bool:
        try:
            VerifyKey(self.public_key).verify(message, self.signature)
            return True
        except (BadSignatureError, ValueError, TypeError):
            return False


KeySource = Union[str, Callable[[], str]]


class SigningService:
    """
    Usage:
        signer = SigningService(private_key_hex)
        signature = signer.sign(tx)
    """

    def __init__(self, key: KeySource):
        self._key = key

    def _load_key(self) -> ExtendedPrivateKey:
        try:
            raw = self._key() if callable(self._key) else self._key
        except Exception as e:
            raise SigningError(f"private key unavailable: {e}") from e

        if not raw:
            raise SigningError("private key not set")

        try:
            return ExtendedPrivateKey.from_hex(raw)
        except ValueError as e:
            raise SigningError(f"invalid private key: {e}") from e

    def sign_bytes(self, message: bytes) -> Signature:
        key = self._load_key()
        try:
            return Signature(key.public_key, key.sign(message))
        except Exception as e:
            raise SigningError(f"signing failed: {e}") from e

    def sign(self, tx: Transaction) -> Signature:
        signature = self.sign_bytes(tx.id)
        logger.info("Signed tx %s", tx.id_hex)
        return signature
