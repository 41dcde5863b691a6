"""
On-chain query capability.

The pipeline only needs two lookups:
- which addresses hold an asset class (and how many units)
- which UTxOs at an address hold an asset class (with inline datums)

ChainQuery is the capability interface; BlockfrostClient implements it on
top of the Blockfrost v0 REST API through the injected HttpClient.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol

from .config import BLOCKFROST_MAX_PAGES, BLOCKFROST_PAGE_SIZE, BLOCKFROST_URLS
from .errors import UnexpectedDatumShape
from .ledger.assets import AssetClass
from .ledger.datum import Datum, decode_datum_hex
from .net import FetchError, HttpClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddressHolding:
    address: str
    quantity: int


@dataclass(frozen=True)
class ChainUtxo:
    tx_hash: str
    output_index: int
    address: str
    lovelace: int
    assets: Mapping[AssetClass, int] = field(default_factory=lambda: MappingProxyType({}))
    inline_datum: Optional[Datum] = None
    datum_hash: Optional[str] = None

    def quantity_of(self, asset_class: AssetClass) -> int:
        if asset_class.is_base:
            return self.lovelace
        return self.assets.get(asset_class, 0)


class ChainQuery(Protocol):
    network: str

    async def addresses_with_asset(self, asset_class: AssetClass) -> List[AddressHolding]:
        ...

    async def utxos_with_asset(self, address: str, asset_class: AssetClass) -> List[ChainUtxo]:
        ...


class BlockfrostClient:
    """
    Blockfrost v0 implementation of ChainQuery.

    A 404 from Blockfrost means "nothing there" and yields an empty list;
    any other non-2xx status raises FetchError.
    """

    def __init__(self, http: HttpClient, network: str, project_id: str):
        if network not in BLOCKFROST_URLS:
            raise ValueError(f"unsupported network {network}")
        self.http = http
        self.network = network
        self.base_url = BLOCKFROST_URLS[network]
        self._headers = {"project_id": project_id}

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"

    async def _get_paged(self, path: str) -> List[Any]:
        items: List[Any] = []
        for page in range(1, BLOCKFROST_MAX_PAGES + 1):
            url = f"{self.base_url}{path}?count={BLOCKFROST_PAGE_SIZE}&page={page}"
            resp = await self.http.request("GET", url, headers=self._headers)

            if resp.status == 404:
                break
            if not resp.ok:
                raise FetchError(f"blockfrost {path} returned status={resp.status}")

            batch = resp.json()
            if not isinstance(batch, list):
                raise FetchError(f"blockfrost {path}: expected a list")

            items.extend(batch)
            if len(batch) < BLOCKFROST_PAGE_SIZE:
                break
        else:
            logger.warning("Blockfrost %s: stopped after %d pages", path, BLOCKFROST_MAX_PAGES)

        return items

    async def addresses_with_asset(self, asset_class: AssetClass) -> List[AddressHolding]:
        rows = await self._get_paged(f"/assets/{asset_class.unit}/addresses")
        try:
            return [AddressHolding(row["address"], int(row["quantity"])) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"blockfrost: malformed address row: {e}") from e

    async def utxos_with_asset(self, address: str, asset_class: AssetClass) -> List[ChainUtxo]:
        rows = await self._get_paged(f"/addresses/{address}/utxos/{asset_class.unit}")
        return [_parse_utxo(row) for row in rows]


def _parse_utxo(row: Dict[str, Any]) -> ChainUtxo:
    try:
        lovelace = 0
        assets: Dict[AssetClass, int] = {}
        for amount in row.get("amount", []):
            qty = int(amount["quantity"])
            if amount["unit"] == "lovelace":
                lovelace = qty
            else:
                assets[AssetClass.from_unit(amount["unit"])] = qty

        inline_datum = None
        if row.get("inline_datum"):
            try:
                inline_datum = decode_datum_hex(row["inline_datum"])
            except UnexpectedDatumShape as e:
                logger.warning("Undecodable inline datum at %s#%s: %s",
                               row.get("tx_hash"), row.get("output_index"), e)

        return ChainUtxo(
            tx_hash=row["tx_hash"],
            output_index=int(row["output_index"]),
            address=row["address"],
            lovelace=lovelace,
            assets=MappingProxyType(assets),
            inline_datum=inline_datum,
            datum_hash=row.get("data_hash"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise FetchError(f"blockfrost: malformed utxo row: {e}") from e
