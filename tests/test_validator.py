"""
Tests for the stateless cloud validator and its HTTP front.
"""
import json

import cbor2
import pytest
from fastapi.testclient import TestClient

from conftest import (
    SNEK,
    WBTC,
    build_tx,
    inline_output,
    plain_output,
    pool_datum,
    price_datum,
    price_entry,
    registry_entry,
)
from oracle_validator.config import MINSWAP_V2, get_stage
from oracle_validator.ledger.address import decode_address
from oracle_validator.ledger.assets import AssetClass
from oracle_validator.ledger.tx import decode_tx
from oracle_validator.server import create_app
from oracle_validator.signing import Signature
from oracle_validator.validator import CloudValidator, parse_request

GROUP_RAW = decode_address(get_stage("Mainnet").asset_group_address)
POOL_AUTH = AssetClass(
    bytes.fromhex(MINSWAP_V2["mainnet"].pool_auth_policy),
    bytes.fromhex(MINSWAP_V2["mainnet"].pool_auth_name),
)


def price_tx(numerator):
    return build_tx([inline_output(GROUP_RAW, price_datum(price_entry(SNEK, numerator))), plain_output()])


@pytest.fixture
def validator(http, chain, clock, key_hex):
    chain.add_utxo(MINSWAP_V2["mainnet"].pool_address, POOL_AUTH, pool_datum(SNEK, 495_000_000_000, 10_000_000))
    registry_entry(http, SNEK, "SNEK", 0)
    return CloudValidator(http, key_hex, {"mainnet": "mainnetKEY"}, clock=clock,
                          chain_factory=lambda stage, key: chain)


def error_of(response):
    assert response["statusCode"] == 400
    return json.loads(response["body"])["error"]


class TestParseRequest:
    def test_direct_event(self):
        request = parse_request({"kind": "price-update", "tx": "84a0"})
        assert request.stage == "Mainnet"

    def test_body_string(self):
        request = parse_request({"body": json.dumps({"kind": "price-update", "tx": "84a0", "stage": "Beta"})})
        assert request.stage == "Beta"

    @pytest.mark.parametrize("event", [
        None,
        [],
        {"body": "{"},
        {"kind": "price-update"},
        {"kind": "price-update", "tx": "xyz"},
    ])
    def test_invalid(self, event):
        with pytest.raises(ValueError):
            parse_request(event)


class TestCloudValidator:
    @pytest.mark.asyncio
    async def test_signs_valid_update(self, validator):
        tx_hex = price_tx(49_800)
        response = await validator.handle({"kind": "price-update", "tx": tx_hex})

        assert response["statusCode"] == 200
        assert response["headers"] == {
            "Access-Control-Allow-Origin": "*",
            "Content-Type": "application/json",
        }
        signature = Signature.from_cbor_object(cbor2.loads(bytes.fromhex(response["body"])))
        assert signature.verify(decode_tx(tx_hex).id)

    @pytest.mark.asyncio
    async def test_out_of_range(self, validator):
        response = await validator.handle({"kind": "price-update", "tx": price_tx(50_000)})
        assert error_of(response) == "SNEK price out of range, expected ~0.049500, got 0.050000"

    @pytest.mark.asyncio
    async def test_unsupported_kind(self, validator, http):
        response = await validator.handle({"kind": "rwa-mint", "tx": price_tx(49_800)})
        assert error_of(response) == "unsupported request kind 'rwa-mint'"
        assert http.calls == []

    @pytest.mark.asyncio
    async def test_mint_rejected(self, validator, http):
        tx_hex = build_tx([plain_output()], mint={WBTC: 1})
        response = await validator.handle({"kind": "price-update", "tx": tx_hex})
        assert error_of(response) == "only price updates are validated here"
        assert http.calls == []

    @pytest.mark.asyncio
    async def test_missing_chain_key(self, validator):
        response = await validator.handle({"kind": "price-update", "tx": price_tx(49_800), "stage": "Preprod"})
        assert error_of(response) == "no chain API key for preprod"

    @pytest.mark.asyncio
    async def test_unknown_stage(self, validator):
        response = await validator.handle({"kind": "price-update", "tx": "84a0", "stage": "Staging"})
        assert error_of(response) == "unrecognized stage 'Staging'"

    @pytest.mark.asyncio
    async def test_missing_signing_key(self, http, chain, clock):
        validator = CloudValidator(http, None, {"mainnet": "k"}, clock=clock, chain_factory=lambda s, k: chain)
        chain.add_utxo(MINSWAP_V2["mainnet"].pool_address, POOL_AUTH, pool_datum(SNEK, 495_000_000_000, 10_000_000))
        registry_entry(http, SNEK, "SNEK", 0)

        response = await validator.handle({"kind": "price-update", "tx": price_tx(49_800)})
        assert error_of(response) == "private key not set"

    @pytest.mark.asyncio
    async def test_unexpected_failure(self, validator, chain):
        async def broken(*args):
            raise RuntimeError("boom")

        chain.utxos_with_asset = broken
        response = await validator.handle({"kind": "price-update", "tx": price_tx(49_800)})
        assert "boom" in error_of(response)


class TestServer:
    def test_health(self, validator):
        with TestClient(create_app(validator=validator)) as client:
            assert client.get("/health").json() == {"ok": True}

    def test_validate(self, validator):
        tx_hex = price_tx(49_800)
        with TestClient(create_app(validator=validator)) as client:
            response = client.post("/", json={"kind": "price-update", "tx": tx_hex})

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "*"
        signature = Signature.from_cbor_object(cbor2.loads(bytes.fromhex(response.text)))
        assert signature.verify(decode_tx(tx_hex).id)

    def test_rejection(self, validator):
        with TestClient(create_app(validator=validator)) as client:
            response = client.post("/", json={"kind": "price-update", "tx": price_tx(60_000)})
        assert response.status_code == 400
        assert response.json()["error"].startswith("SNEK price out of range")

    def test_invalid_body(self, validator):
        with TestClient(create_app(validator=validator)) as client:
            response = client.post("/", content=b"not json", headers={"Content-Type": "application/json"})
        assert response.status_code == 400
        assert response.json() == {"error": "invalid request body"}
