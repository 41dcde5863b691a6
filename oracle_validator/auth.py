"""
Authentication tokens for stage API calls.

    nonce   = now_ms + random(0..999)
    message = cbor([nonce, device_id])
    token   = hex(cbor([message, [public_key, signature(message)]]))

Replay protection is only as strong as the server's nonce window: the nonce
is probabilistically unique and time bound. AuthTokenFactory additionally
keeps nonces strictly increasing within one process.
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional

import cbor2

from .keys import ExtendedPrivateKey
from .signing import Signature

NONCE_JITTER_MS = 1000


def encode_auth_message(nonce: int, device_id: int) -> bytes:
    return cbor2.dumps([nonce, device_id])


def make_nonce(now_ms: Optional[int] = None) -> int:
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return now_ms + random.randrange(NONCE_JITTER_MS)


def create_auth_token(private_key: str, device_id: int, nonce: Optional[int] = None) -> str:
    """Build a fresh Authorization header value."""
    if nonce is None:
        nonce = make_nonce()

    key = ExtendedPrivateKey.from_hex(private_key)
    message = encode_auth_message(nonce, device_id)
    signature = Signature(key.public_key, key.sign(message))

    return cbor2.dumps([message, signature.to_cbor_object()]).hex()


@dataclass(frozen=True)
class AuthToken:
    nonce: int
    device_id: int
    message: bytes
    signature: Signature

    @property
    def public_key(self) -> bytes:
        return self.signature.public_key

    def verify(self) -> bool:
        """Signature check over the re-encoded message bytes."""
        if encode_auth_message(self.nonce, self.device_id) != self.message:
            return False
        return self.signature.verify(self.message)


def decode_auth_token(token: str) -> AuthToken:
    """
    Raises:
        ValueError: If the token is not a well-formed envelope
    """
    try:
        envelope = cbor2.loads(bytes.fromhex(token))
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise ValueError(f"invalid auth token: {e}") from e

    if not isinstance(envelope, list) or len(envelope) != 2 or not isinstance(envelope[0], bytes):
        raise ValueError("auth token must be [message, signature]")

    message = envelope[0]
    try:
        body = cbor2.loads(message)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise ValueError(f"invalid auth message: {e}") from e
    if (
        not isinstance(body, list)
        or len(body) != 2
        or not all(isinstance(x, int) and not isinstance(x, bool) for x in body)
    ):
        raise ValueError("auth message must be [nonce, device_id]")

    return AuthToken(
        nonce=body[0],
        device_id=body[1],
        message=message,
        signature=Signature.from_cbor_object(envelope[1]),
    )


class AuthTokenFactory:
    """
    Mints one token per outbound call for a fixed key and device.

    Usage:
        tokens = AuthTokenFactory(private_key_hex, device_id)
        headers = {"Authorization": tokens()}
    """

    def __init__(
        self,
        private_key: str,
        device_id: int,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.private_key = private_key
        self.device_id = device_id
        self._clock = clock
        self._last_nonce = 0

    def __call__(self) -> str:
        now = self._clock() if self._clock else None
        nonce = make_nonce(now)
        if nonce <= self._last_nonce:
            nonce = self._last_nonce + 1
        self._last_nonce = nonce
        return create_auth_token(self.private_key, self.device_id, nonce)

    @property
    def last_nonce(self) -> int:
        return self._last_nonce
