"""
Stage B - centralized exchange rates (Coinbase).

GET exchange-rates?currency=USD returns units of each currency per 1 USD:

    {"data": {"currency": "USD", "rates": {"ADA": "2.5", "BTC": "0.000023"}}}

basePerToken = basePerUSD / tokenPerUSD. Missing or non-positive rates mean
the source is unavailable for that claim, never a contradiction.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional

from ..config import EXCHANGE_BASE_SYMBOL, EXCHANGE_RATES_URL, EXCHANGE_SYMBOLS
from ..net import FetchError, HttpClient, fetch_json

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangeRates:
    rates: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def base_per_token(self, ticker: str) -> Optional[float]:
        symbol = EXCHANGE_SYMBOLS.get(ticker)
        if symbol is None:
            return None

        base_per_usd = self.rates.get(EXCHANGE_BASE_SYMBOL, 0.0)
        token_per_usd = self.rates.get(symbol, 0.0)
        if base_per_usd <= 0 or token_per_usd <= 0:
            return None

        return base_per_usd / token_per_usd


class ExchangeRateSource:
    def __init__(self, http: HttpClient, url: str = EXCHANGE_RATES_URL):
        self.http = http
        self.url = url

    async def prefetch(self) -> ExchangeRates:
        """Fetch the rate table. Unavailable source yields an empty table."""
        try:
            obj = await fetch_json(self.http, self.url)
        except FetchError as e:
            logger.warning("Exchange rates unavailable: %s", e)
            return ExchangeRates()

        raw = (obj.get("data") or {}).get("rates") if isinstance(obj, dict) else None
        if not isinstance(raw, dict):
            logger.warning("Exchange rates response has no rate table")
            return ExchangeRates()

        rates = {}
        for symbol, value in raw.items():
            try:
                rates[symbol] = float(value)
            except (TypeError, ValueError):
                continue

        return ExchangeRates(MappingProxyType(rates))
