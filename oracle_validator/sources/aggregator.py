"""
Stage C - aggregator spot prices (CoinGecko simple/price).

One batched call per stage: GET simple/price?ids=a,b,cardano&vs_currencies=usd
returns {"a": {"usd": 1.0}, ...}. basePerToken = usdPerToken / usdPerBase.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional
from urllib.parse import urlencode

from ..config import AGGREGATOR_BASE_ID, AGGREGATOR_PRICE_URL
from ..net import FetchError, HttpClient, fetch_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpotPrices:
    usd: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def base_per(self, aggregator_id: str) -> Optional[float]:
        """Base units per one unit of the given aggregator id."""
        usd_per_token = self.usd.get(aggregator_id, 0.0)
        usd_per_base = self.usd.get(AGGREGATOR_BASE_ID, 0.0)
        if usd_per_token <= 0 or usd_per_base <= 0:
            return None
        return usd_per_token / usd_per_base


class AggregatorSource:
    def __init__(self, http: HttpClient, url: str = AGGREGATOR_PRICE_URL):
        self.http = http
        self.url = url

    async def fetch(self, ids: Iterable[str]) -> SpotPrices:
        """
        Fetch USD prices for ids plus the base id in one call.

        Unavailable source yields empty prices.
        """
        wanted = sorted(set(ids) | {AGGREGATOR_BASE_ID})
        query = urlencode({"ids": ",".join(wanted), "vs_currencies": "usd"})

        try:
            obj = await fetch_json(self.http, f"{self.url}?{query}")
        except FetchError as e:
            logger.warning("Aggregator prices unavailable: %s", e)
            return SpotPrices()

        if not isinstance(obj, dict):
            logger.warning("Aggregator response is not an object")
            return SpotPrices()

        prices = {}
        for coin_id, entry in obj.items():
            if not isinstance(entry, dict):
                continue
            try:
                prices[coin_id] = float(entry["usd"])
            except (KeyError, TypeError, ValueError):
                continue

        return SpotPrices(MappingProxyType(prices))
