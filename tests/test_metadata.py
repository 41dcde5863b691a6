"""
Tests for ticker/decimals resolution (CIP-68 first, CIP-26 fallback).
"""
import pytest

from conftest import (
    REGISTRY,
    FakeChain,
    SNEK,
    WBTC,
    WBTC_METADATA,
    cip68_datum,
    registry_entry,
)
from oracle_validator.errors import MetadataUnresolved
from oracle_validator.ledger.datum import ConstrData, IntData
from oracle_validator.metadata import AssetInfo, AssetMetadataResolver, is_cip68_user_token, reference_nft

HOLDER = "addr1vxholder"


class TestCip68:
    """Reference NFT lookups."""

    def test_reference_nft(self):
        assert reference_nft(WBTC) == WBTC_METADATA
        assert is_cip68_user_token(WBTC)
        assert not is_cip68_user_token(SNEK)

    @pytest.mark.asyncio
    async def test_resolve_from_reference_datum(self, chain, http):
        chain.add_utxo(HOLDER, WBTC_METADATA, cip68_datum(ticker="wBTC", decimals=8))
        info = await AssetMetadataResolver(chain, http).resolve(WBTC)

        assert info == AssetInfo("wBTC", 8)
        assert http.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_to_registry(self, chain, http):
        """A broken reference datum is not fatal while the registry answers."""
        chain.add_utxo(HOLDER, WBTC_METADATA, ConstrData(0, (IntData(1),)))
        registry_entry(http, WBTC, "wBTC", 8)

        info = await AssetMetadataResolver(chain, http).resolve(WBTC)
        assert info == AssetInfo("wBTC", 8)
        assert len(http.calls) == 1

    @pytest.mark.asyncio
    async def test_reference_nft_must_be_unique(self, chain, http):
        chain.add_utxo(HOLDER, WBTC_METADATA, cip68_datum(ticker="wBTC", decimals=8))
        chain.add_utxo("addr1vxother", WBTC_METADATA, cip68_datum(ticker="FAKE", decimals=0))
        registry_entry(http, WBTC, "wBTC", 8)

        info = await AssetMetadataResolver(chain, http).resolve(WBTC)
        assert info.ticker == "wBTC"
        assert len(http.calls) == 1

    @pytest.mark.asyncio
    async def test_missing_decimals(self, chain, http):
        chain.add_utxo(HOLDER, WBTC_METADATA, cip68_datum(ticker="wBTC"))
        with pytest.raises(MetadataUnresolved):
            await AssetMetadataResolver(chain, http).resolve(WBTC)

    @pytest.mark.asyncio
    async def test_chain_failure_falls_back(self, chain, http):
        chain.failing.add(WBTC_METADATA)
        registry_entry(http, WBTC, "wBTC", 8)
        info = await AssetMetadataResolver(chain, http).resolve(WBTC)
        assert info.decimals == 8


class TestCip26:
    """Off-chain registry lookups."""

    @pytest.mark.asyncio
    async def test_registry(self, chain, http):
        registry_entry(http, SNEK, "SNEK", 0)
        info = await AssetMetadataResolver(chain, http).resolve(SNEK)

        assert info == AssetInfo("SNEK", 0)
        assert chain.calls == []
        assert http.calls[0].url == f"{REGISTRY}/{SNEK.policy.hex()}{SNEK.token_name.hex()}"

    @pytest.mark.asyncio
    async def test_no_content_is_failure(self, chain, http):
        http.route(REGISTRY, status=204)
        with pytest.raises(MetadataUnresolved):
            await AssetMetadataResolver(chain, http).resolve(SNEK)

    @pytest.mark.asyncio
    async def test_not_found(self, chain, http):
        with pytest.raises(MetadataUnresolved) as exc:
            await AssetMetadataResolver(chain, http).resolve(SNEK)
        assert exc.value.asset_class == SNEK

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        {"ticker": {"value": "SNEK"}},
        {"decimals": {"value": 0}},
        {"ticker": {"value": 5}, "decimals": {"value": 0}},
        {"ticker": {"value": "SNEK"}, "decimals": {"value": "0"}},
        {"ticker": "SNEK", "decimals": 0},
        ["not", "an", "object"],
    ])
    async def test_invalid_registry_bodies(self, chain, http, body):
        http.route(REGISTRY, body)
        with pytest.raises(MetadataUnresolved):
            await AssetMetadataResolver(chain, http).resolve(SNEK)

    @pytest.mark.asyncio
    async def test_transport_failure(self, chain, http):
        http.fail(REGISTRY)
        with pytest.raises(MetadataUnresolved):
            await AssetMetadataResolver(chain, http).resolve(SNEK)

    @pytest.mark.asyncio
    async def test_preprod_registry(self, http):
        http.route("https://metadata.world.dev.cardano.org/metadata", {
            "ticker": {"value": "tSNEK"}, "decimals": {"value": 0},
        })
        info = await AssetMetadataResolver(FakeChain("preprod"), http).resolve(SNEK)
        assert info.ticker == "tSNEK"
