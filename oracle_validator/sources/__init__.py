"""External price and reserve sources (stages A-D)."""
from .aggregator import AggregatorSource, SpotPrices
from .amm import (
    MinswapPoolSource,
    Pool,
    PoolFound,
    PoolLookupFailed,
    PoolNotFound,
    PoolOutcome,
    PoolSnapshot,
)
from .exchange import ExchangeRates, ExchangeRateSource
from .reserves import (
    BitcoinAddressProvider,
    EthereumAccountProvider,
    ReserveProvider,
    make_reserve_provider,
)

__all__ = [
    "AggregatorSource",
    "BitcoinAddressProvider",
    "EthereumAccountProvider",
    "ExchangeRateSource",
    "ExchangeRates",
    "MinswapPoolSource",
    "Pool",
    "PoolFound",
    "PoolLookupFailed",
    "PoolNotFound",
    "PoolOutcome",
    "PoolSnapshot",
    "ReserveProvider",
    "SpotPrices",
    "make_reserve_provider",
]
