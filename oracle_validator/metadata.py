"""
Asset metadata resolution (ticker + decimals).

Primary: CIP-68 reference NFT
    A (333) fungible token 0014df10<name> is paired with the reference NFT
    000643b0<name> under the same policy. The reference NFT must sit alone in
    exactly one UTxO whose inline datum is Constr 0 [Map, ...]; the map holds
    "ticker" (utf-8 bytes) and "decimals" (int).

Fallback: CIP-26 off-chain registry
    GET {registry}/{policyhex}{namehex} -> {"ticker": {"value": str},
    "decimals": {"value": int}}. A 204 or non-2xx status is a failure.

Both failing raises MetadataUnresolved, which aborts the validation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .chain import ChainQuery
from .config import CIP26_REGISTRY_URLS, CIP68_REFERENCE_PREFIX, CIP68_USER_FT_PREFIX
from .errors import MetadataUnresolved, UnexpectedDatumShape
from .ledger.assets import AssetClass
from .ledger.datum import expect_constr, expect_int, expect_map, expect_utf8, map_lookup
from .net import FetchError, HttpClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssetInfo:
    ticker: str
    decimals: int


class MetadataLookupError(Exception):
    """One resolution method failed; the resolver may try the next one."""
    pass


def reference_nft(asset_class: AssetClass) -> AssetClass:
    """CIP-68 (100) reference NFT paired with a (333) token."""
    return AssetClass(asset_class.policy, CIP68_REFERENCE_PREFIX + asset_class.token_name[4:])


def is_cip68_user_token(asset_class: AssetClass) -> bool:
    return asset_class.token_name[:4] == CIP68_USER_FT_PREFIX


class AssetMetadataResolver:
    """
    Resolve ticker and decimals for an asset class.

    Usage:
        resolver = AssetMetadataResolver(chain, http)
        info = await resolver.resolve(asset_class)
    """

    def __init__(self, chain: ChainQuery, http: HttpClient, registry_url: str = ""):
        self.chain = chain
        self.http = http
        self.registry_url = registry_url or CIP26_REGISTRY_URLS[chain.network]

    async def resolve(self, asset_class: AssetClass) -> AssetInfo:
        """
        Raises:
            MetadataUnresolved: If neither CIP-68 nor CIP-26 metadata is usable
        """
        if is_cip68_user_token(asset_class):
            try:
                return await self.resolve_cip68(asset_class)
            except Exception as e:
                logger.warning(
                    "Falling back to CIP26 for %s because there is a CIP68 metadata token error: %s",
                    asset_class, e,
                )

        try:
            return await self.resolve_cip26(asset_class)
        except (MetadataLookupError, FetchError) as e:
            logger.error("Metadata unresolved for %s: %s", asset_class, e)
            raise MetadataUnresolved(asset_class, str(e)) from e

    async def resolve_cip68(self, asset_class: AssetClass) -> AssetInfo:
        ref = reference_nft(asset_class)

        holders = await self.chain.addresses_with_asset(ref)
        if len(holders) != 1:
            raise MetadataLookupError(f"expected 1 address holding {ref}, found {len(holders)}")
        holder = holders[0]
        if holder.quantity != 1:
            raise MetadataLookupError(f"expected 1 unit of {ref}, found {holder.quantity}")

        utxos = await self.chain.utxos_with_asset(holder.address, ref)
        if len(utxos) != 1:
            raise MetadataLookupError(f"expected 1 utxo holding {ref}, found {len(utxos)}")

        datum = utxos[0].inline_datum
        if datum is None:
            raise MetadataLookupError("no inline datum")

        try:
            constr = expect_constr(datum, 0, context="cip68 datum")
            if not constr.fields:
                raise MetadataLookupError("bad constr data first field")
            content = expect_map(constr.fields[0], "cip68 metadata")

            ticker_data = map_lookup(content, "ticker")
            if ticker_data is None:
                raise MetadataLookupError("ticker entry not found")
            decimals_data = map_lookup(content, "decimals")
            if decimals_data is None:
                raise MetadataLookupError("decimals entry not found")

            ticker = expect_utf8(ticker_data, "ticker")
            decimals = expect_int(decimals_data, "decimals")
        except UnexpectedDatumShape as e:
            raise MetadataLookupError(str(e)) from e

        return AssetInfo(ticker, decimals)

    async def resolve_cip26(self, asset_class: AssetClass) -> AssetInfo:
        url = f"{self.registry_url}/{asset_class.policy.hex()}{asset_class.token_name.hex()}"

        resp = await self.http.request("GET", url)
        if not resp.ok or resp.status == 204:
            raise MetadataLookupError(f"Failed to fetch CIP26 metadata for {asset_class}")

        obj = resp.json()
        if not isinstance(obj, dict):
            raise MetadataLookupError(f"{asset_class} CIP26 response isn't an object")

        ticker = _registry_value(obj, "ticker")
        decimals = _registry_value(obj, "decimals")

        if ticker is None:
            raise MetadataLookupError(f"{asset_class} CIP26 ticker.value undefined")
        if decimals is None:
            raise MetadataLookupError(f"{asset_class} CIP26 decimals.value undefined")
        if not isinstance(ticker, str):
            raise MetadataLookupError(f"{asset_class} CIP26 ticker.value isn't a string")
        if not isinstance(decimals, int) or isinstance(decimals, bool):
            raise MetadataLookupError(f"{asset_class} CIP26 decimals.value isn't a number")

        return AssetInfo(ticker, decimals)


def _registry_value(obj: dict, key: str):
    entry = obj.get(key)
    if isinstance(entry, dict):
        return entry.get("value")
    return None
