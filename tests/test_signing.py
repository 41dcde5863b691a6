"""
Tests for device keys and transaction signing.
"""
import pytest
from nacl.signing import SigningKey, VerifyKey

from conftest import SNEK, make_key_hex, price_entry, price_update_tx
from oracle_validator.errors import SigningError
from oracle_validator.keys import ExtendedPrivateKey, ecdsa_public_key, schnorr_public_key
from oracle_validator.ledger.tx import decode_tx
from oracle_validator.signing import Signature, SigningService


class TestExtendedKey:
    def test_matches_standard_ed25519(self):
        seed = bytes(range(32))
        key = ExtendedPrivateKey.from_hex(make_key_hex(seed))
        reference = SigningKey(seed)

        assert key.public_key == bytes(reference.verify_key)
        assert key.sign(b"hello") == reference.sign(b"hello").signature

    def test_verifies(self, key_hex):
        key = ExtendedPrivateKey.from_hex(key_hex)
        signature = key.sign(b"message")
        assert VerifyKey(key.public_key).verify(b"message", signature) == b"message"

    def test_without_chain_code(self, key_hex):
        short = ExtendedPrivateKey.from_hex(key_hex[:128])
        full = ExtendedPrivateKey.from_hex(key_hex)
        assert short.public_key == full.public_key
        assert short.chain_code == b""

    @pytest.mark.parametrize("length", [0, 32, 65, 128])
    def test_bad_length(self, length):
        with pytest.raises(ValueError):
            ExtendedPrivateKey(bytes(length))

    def test_secp256k1_keys(self, key_hex):
        master = bytes.fromhex(key_hex)
        ecdsa = ecdsa_public_key(master)
        schnorr = schnorr_public_key(master)

        assert len(ecdsa) == 33
        assert ecdsa[0] in (2, 3)
        assert schnorr == ecdsa[1:]


class TestSignature:
    def test_cbor_shape(self):
        signature = Signature(b"\x01" * 32, b"\x02" * 64)
        assert signature.to_hex() == "82" + "5820" + "01" * 32 + "5840" + "02" * 64

    def test_from_cbor_object(self):
        with pytest.raises(ValueError):
            Signature.from_cbor_object([b"x"])
        with pytest.raises(ValueError):
            Signature.from_cbor_object("nope")

    def test_verify_rejects_garbage(self):
        assert not Signature(b"\x01" * 32, b"\x02" * 64).verify(b"m")
        assert not Signature(b"short", b"sig").verify(b"m")


class TestSigningService:
    def test_signs_tx_id(self, key_hex):
        tx = decode_tx(price_update_tx(price_entry(SNEK, 1)))
        signature = SigningService(key_hex).sign(tx)

        assert signature.public_key == ExtendedPrivateKey.from_hex(key_hex).public_key
        assert signature.verify(tx.id)
        assert not signature.verify(tx.body_bytes)

    def test_key_callable(self, key_hex):
        service = SigningService(lambda: key_hex)
        assert service.sign_bytes(b"x").verify(b"x")

    @pytest.mark.parametrize("key", ["", "zz", "00" * 10])
    def test_bad_key(self, key):
        with pytest.raises(SigningError):
            SigningService(key).sign_bytes(b"x")

    def test_key_source_failure(self):
        def broken():
            raise OSError("keystore locked")

        with pytest.raises(SigningError) as exc:
            SigningService(broken).sign_bytes(b"x")
        assert "keystore locked" in str(exc.value)
