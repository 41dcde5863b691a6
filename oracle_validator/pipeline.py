"""
Price reconciliation pipeline.

Drives every price claim of a transaction through an ordered chain of
sources. The pending claims live in an immutable ReconciliationState that
each stage folds into a new state:

    freshness -> A (AMM pools) -> B (exchange rates) -> C (aggregator)
              -> D (RWA reserves) -> sweep

A stage removes a claim as soon as it adjudicates it (match or mismatch).
Claims a source has no data for stay pending for the next stage; the sweep
turns whatever is left into "unable to validate" errors.

Evidence is fetched before a stage is applied (A and B concurrently), but
application order is fixed, so the outcome never depends on timing.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from fractions import Fraction
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional, Tuple

from .chain import ChainQuery
from .claims import PriceClaim, ValidationError, extract_claims
from .config import (
    AGGREGATOR_IDS,
    BASE_DECIMALS,
    MAX_ASSET_DECIMALS,
    MAX_REL_DIFF,
    MAX_TIMESTAMP_SKEW_MS,
    PRICE_DISPLAY_PLACES,
)
from .errors import PriceSourceError, ReconciliationFailed
from .ledger.assets import AssetClass
from .ledger.tx import Transaction
from .metadata import AssetInfo, AssetMetadataResolver
from .net import HttpClient
from .rwa import RWAReserveResolver
from .sources.aggregator import AggregatorSource, SpotPrices
from .sources.amm import MinswapPoolSource, PoolFound, PoolLookupFailed, PoolOutcome
from .sources.exchange import ExchangeRates, ExchangeRateSource

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time() * 1000)


def claimed_price(claim: PriceClaim, decimals: int) -> float:
    """
    Claimed price in whole base units per whole token.

    Raises:
        ValueError: If decimals are out of range or the price does not fit a float
    """
    if not 0 <= decimals <= MAX_ASSET_DECIMALS:
        raise ValueError(f"decimals {decimals} out of range")
    exact = Fraction(claim.numerator, claim.denominator) * Fraction(10) ** (decimals - BASE_DECIMALS)
    try:
        return float(exact)
    except OverflowError:
        raise ValueError(f"price {claim.numerator}/{claim.denominator} too large") from None


@dataclass(frozen=True)
class PendingClaim:
    claim: PriceClaim
    info: AssetInfo
    price: float

    @property
    def ticker(self) -> str:
        return self.info.ticker


@dataclass(frozen=True)
class ReconciliationState:
    pending: Mapping[AssetClass, PendingClaim] = field(default_factory=lambda: MappingProxyType({}))
    errors: Tuple[ValidationError, ...] = ()
    prices: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def resolve(self, asset_class: AssetClass, error: Optional[ValidationError] = None) -> "ReconciliationState":
        """Remove a claim, recording an error if it failed."""
        pending = dict(self.pending)
        del pending[asset_class]
        errors = self.errors + (error,) if error is not None else self.errors
        return replace(self, pending=MappingProxyType(pending), errors=errors)

    @property
    def done(self) -> bool:
        return not self.pending


@dataclass(frozen=True)
class ReconciliationResult:
    prices: Mapping[str, float]
    errors: Tuple[ValidationError, ...]

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ReconciliationFailed(self.errors)


# === PURE HELPERS ===

def format_price(value: float) -> str:
    return f"{value:.{PRICE_DISPLAY_PLACES}f}"


def format_timestamp(timestamp_ms: int) -> str:
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S UTC")


def check_tolerance(ticker: str, claimed: float, reference: float) -> Optional[ValidationError]:
    """
    None when claimed is within MAX_REL_DIFF of reference.

    A reference of zero or less never matches.
    """
    if reference <= 0 or abs(claimed - reference) / reference > MAX_REL_DIFF:
        return ValidationError(
            ticker,
            f"{ticker} price out of range, expected ~{format_price(reference)}, got {format_price(claimed)}",
        )
    return None


def initial_state(
    claims: Tuple[PriceClaim, ...],
    infos: Tuple[AssetInfo, ...],
    errors: Tuple[ValidationError, ...] = (),
) -> ReconciliationState:
    pending = {}
    prices = {}
    collected = list(errors)
    for claim, info in zip(claims, infos):
        try:
            price = claimed_price(claim, info.decimals)
        except ValueError as e:
            collected.append(ValidationError(info.ticker, f"invalid {info.ticker} price: {e}"))
            continue
        pending[claim.asset_class] = PendingClaim(claim, info, price)
        prices[info.ticker] = price
    return ReconciliationState(MappingProxyType(pending), tuple(collected), MappingProxyType(prices))


# === STAGES: (state, evidence) -> state ===

def apply_freshness(state: ReconciliationState, now_ms: int) -> ReconciliationState:
    for asset_class, entry in state.pending.items():
        if abs(entry.claim.timestamp - now_ms) > MAX_TIMESTAMP_SKEW_MS:
            state = state.resolve(asset_class, ValidationError(
                entry.ticker,
                f"invalid {entry.ticker} price timestamp {format_timestamp(entry.claim.timestamp)}",
            ))
    return state


def apply_pool_prices(
    state: ReconciliationState,
    outcomes: Mapping[AssetClass, PoolOutcome],
) -> ReconciliationState:
    """
    Stage A.

    Raises:
        PriceSourceError: If a pool lookup failed for any reason other than
            "no pool exists"
    """
    for asset_class, entry in state.pending.items():
        outcome = outcomes.get(asset_class)
        if isinstance(outcome, PoolLookupFailed):
            raise PriceSourceError(f"pool lookup for {entry.ticker} failed: {outcome.detail}")
        if isinstance(outcome, PoolFound):
            state = state.resolve(asset_class, check_tolerance(entry.ticker, entry.price, outcome.price))
    return state


def apply_exchange_rates(state: ReconciliationState, rates: ExchangeRates) -> ReconciliationState:
    """Stage B."""
    for asset_class, entry in state.pending.items():
        reference = rates.base_per_token(entry.ticker)
        if reference is not None:
            state = state.resolve(asset_class, check_tolerance(entry.ticker, entry.price, reference))
    return state


def apply_aggregator_prices(state: ReconciliationState, spot: SpotPrices) -> ReconciliationState:
    """Stage C."""
    for asset_class, entry in state.pending.items():
        aggregator_id = AGGREGATOR_IDS.get(entry.ticker)
        if aggregator_id is None:
            continue
        reference = spot.base_per(aggregator_id)
        # no spot price: the claim stays pending for stage D, then the sweep
        if reference is not None:
            state = state.resolve(asset_class, check_tolerance(entry.ticker, entry.price, reference))
    return state


def apply_reserve_attestations(
    state: ReconciliationState,
    implied: Mapping[AssetClass, float],
) -> ReconciliationState:
    """Stage D."""
    for asset_class, entry in state.pending.items():
        reference = implied.get(asset_class)
        if reference is not None:
            state = state.resolve(asset_class, check_tolerance(entry.ticker, entry.price, reference))
    return state


def sweep(state: ReconciliationState) -> ReconciliationState:
    for asset_class, entry in state.pending.items():
        state = state.resolve(asset_class, ValidationError(
            entry.ticker,
            f"unable to validate price of {entry.ticker}",
        ))
    return state


# === DRIVER ===

class PriceReconciliationPipeline:
    """
    Usage:
        pipeline = PriceReconciliationPipeline(chain, http)
        prices = await pipeline.validate(tx, stage.asset_group_address)
    """

    def __init__(
        self,
        chain: ChainQuery,
        http: HttpClient,
        *,
        resolver: Optional[AssetMetadataResolver] = None,
        pools: Optional[MinswapPoolSource] = None,
        exchange: Optional[ExchangeRateSource] = None,
        aggregator: Optional[AggregatorSource] = None,
        reserves: Optional[RWAReserveResolver] = None,
        clock: Clock = system_clock,
    ):
        self.resolver = resolver or AssetMetadataResolver(chain, http)
        self.pools = pools or MinswapPoolSource(chain)
        self.exchange = exchange or ExchangeRateSource(http)
        self.aggregator = aggregator or AggregatorSource(http)
        self.reserves = reserves or RWAReserveResolver(
            chain, http, self.aggregator, mainnet=chain.network == "mainnet",
        )
        self.clock = clock

    async def reconcile(self, tx: Transaction, asset_group_address: str) -> ReconciliationResult:
        """
        Run every stage and collect errors without raising them.

        Raises:
            MalformedTransaction, UnexpectedDatumShape: Bad asset-group outputs
            MetadataUnresolved: A claim's ticker/decimals cannot be resolved
            PriceSourceError: The AMM pool source is broken
        """
        extraction = extract_claims(tx, asset_group_address)

        infos = await asyncio.gather(*(self.resolver.resolve(c.asset_class) for c in extraction.claims))
        state = initial_state(extraction.claims, tuple(infos), extraction.errors)

        state = apply_freshness(state, self.clock())

        if not state.done:
            snapshot, rates = await asyncio.gather(self.pools.prefetch(), self.exchange.prefetch())
            outcomes = {
                ac: snapshot.lookup(ac, entry.info.decimals)
                for ac, entry in state.pending.items()
            }
            state = apply_pool_prices(state, outcomes)
            state = apply_exchange_rates(state, rates)

        if not state.done:
            ids = {AGGREGATOR_IDS[e.ticker] for e in state.pending.values() if e.ticker in AGGREGATOR_IDS}
            if ids:
                spot = await self.aggregator.fetch(ids)
                state = apply_aggregator_prices(state, spot)

        if not state.done:
            implied = await self.reserves.attest({ac: e.ticker for ac, e in state.pending.items()})
            state = apply_reserve_attestations(state, implied)

        state = sweep(state)

        for error in state.errors:
            logger.warning("Validation error: %s", error.message)

        return ReconciliationResult(state.prices, state.errors)

    async def validate(self, tx: Transaction, asset_group_address: str) -> Dict[str, float]:
        """
        Reconcile and raise on any error.

        Returns:
            Claimed prices by ticker (base per whole token)

        Raises:
            ReconciliationFailed: One or more claims could not be reconciled
        """
        result = await self.reconcile(tx, asset_group_address)
        result.raise_for_errors()
        return dict(result.prices)
