"""
Wrapped real-world assets (RWA): metadata, reserve attestation, mint path.

Every RWA policy keeps a metadata token (policy, 000643b0 + ticker) at the
enterprise script address of the policy. Its inline datum is
Constr _ [Map, ...] with:

    ticker, decimals, network (custody venue), policy (backing contract,
    "" for the native coin), current_supply, reserves_account (utf-8
    address on the venue), and optionally last_mint_supply and
    last_deposit_or_withdrawal

Metadata is read fresh on every validation.

Implied price of a wrapped token:
    supply    = current_supply / 10^decimals
    reserves  = balance / 10^reserve_decimals
    effective = min(reserves, supply)
    implied   = base_per_underlying * effective / supply   (supply > 0)
              = base_per_underlying                        (otherwise)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

from .chain import ChainQuery
from .claims import ValidationError
from .config import CIP68_REFERENCE_PREFIX, MIN_RESERVES_ACCOUNT_LEN, RWA_VENUES
from .errors import AmbiguousIntent, InvalidRWAMetadata, ReconciliationFailed, UnexpectedDatumShape
from .ledger.address import enterprise_script_address
from .ledger.assets import AssetClass
from .ledger.datum import (
    Datum,
    expect_bytes,
    expect_constr,
    expect_int,
    expect_map,
    expect_utf8,
    map_lookup,
)
from .ledger.tx import Transaction
from .net import FetchError, HttpClient
from .sources.aggregator import AggregatorSource
from .sources.reserves import ReserveProvider, make_reserve_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RWAMetadata:
    ticker: str
    decimals: int
    venue: str
    backing_policy: str
    current_supply: int
    reserves_account: bytes
    last_mint_supply: Optional[int] = None
    last_deposit_or_withdrawal: Optional[bytes] = None

    @property
    def reserves_address(self) -> str:
        return self.reserves_account.decode("utf-8", errors="replace")


def rwa_metadata_asset_class(policy: bytes, ticker: str) -> AssetClass:
    return AssetClass(policy, CIP68_REFERENCE_PREFIX + ticker.encode("utf-8"))


def decode_rwa_metadata(ticker: str, datum: Optional[Datum]) -> RWAMetadata:
    """
    Raises:
        InvalidRWAMetadata: If the datum is missing or a required entry is absent
    """
    if datum is None:
        raise InvalidRWAMetadata(f"no metadata datum for RWA {ticker}")

    try:
        constr = expect_constr(datum, context=f"metadata of RWA {ticker}")
        if not constr.fields:
            raise InvalidRWAMetadata(f"empty metadata datum for RWA {ticker}")
        state = expect_map(constr.fields[0], f"metadata of RWA {ticker}")

        def entry(key: str) -> Datum:
            value = map_lookup(state, key)
            if value is None:
                raise InvalidRWAMetadata(f"{key} entry not found in datum of RWA {ticker}")
            return value

        def optional(key: str) -> Optional[Datum]:
            return map_lookup(state, key)

        last_mint = optional("last_mint_supply")
        last_change = optional("last_deposit_or_withdrawal")
        ticker_data = optional("ticker")

        return RWAMetadata(
            ticker=expect_utf8(ticker_data, "ticker") if ticker_data is not None else ticker,
            decimals=expect_int(entry("decimals"), "decimals"),
            venue=expect_utf8(entry("network"), "network"),
            backing_policy=expect_utf8(entry("policy"), "policy"),
            current_supply=expect_int(entry("current_supply"), "current_supply"),
            reserves_account=expect_bytes(entry("reserves_account"), "reserves_account"),
            last_mint_supply=expect_int(last_mint, "last_mint_supply") if last_mint is not None else None,
            last_deposit_or_withdrawal=(
                expect_bytes(last_change, "last_deposit_or_withdrawal") if last_change is not None else None
            ),
        )
    except UnexpectedDatumShape as e:
        raise InvalidRWAMetadata(f"invalid metadata of RWA {ticker}: {e}") from e


async def fetch_rwa_metadata(
    chain: ChainQuery,
    policy: bytes,
    ticker: str,
    mainnet: bool,
) -> RWAMetadata:
    """
    Read the metadata token held at the policy's script address.

    Raises:
        InvalidRWAMetadata: If the token is not found or its datum is invalid
        FetchError: On chain query failure
    """
    address = enterprise_script_address(policy, mainnet)
    asset_class = rwa_metadata_asset_class(policy, ticker)

    utxos = await chain.utxos_with_asset(address, asset_class)
    if not utxos:
        raise InvalidRWAMetadata(f"metadata token of RWA {ticker} not found at {address}")
    if len(utxos) > 1:
        logger.warning("%d metadata utxos for RWA %s, using the first", len(utxos), ticker)

    return decode_rwa_metadata(ticker, utxos[0].inline_datum)


def implied_base_per_wrapped(
    base_per_underlying: float,
    current_supply: int,
    decimals: int,
    reserves: int,
    reserve_decimals: int,
) -> float:
    token_supply = current_supply / 10 ** decimals
    token_reserves = reserves / 10 ** reserve_decimals
    effective_backing = min(token_reserves, token_supply)

    if token_supply > 0:
        return base_per_underlying * effective_backing / token_supply
    return base_per_underlying


def provider_for(http: HttpClient, metadata: RWAMetadata) -> Optional[ReserveProvider]:
    return make_reserve_provider(http, metadata.venue, metadata.backing_policy, metadata.reserves_address)


class RWAReserveResolver:
    """
    Stage D evidence: implied base price of wrapped assets from live reserves.

    Claims that cannot be classified (no metadata, unknown venue or backing
    policy, unreachable venue, no underlying price) are left out of the
    result, meaning "source unavailable".
    """

    def __init__(
        self,
        chain: ChainQuery,
        http: HttpClient,
        aggregator: AggregatorSource,
        mainnet: bool,
    ):
        self.chain = chain
        self.http = http
        self.aggregator = aggregator
        self.mainnet = mainnet

    async def _reserves_of(self, asset_class: AssetClass, ticker: str) -> Optional[Tuple[RWAMetadata, int, int, str]]:
        try:
            metadata = await fetch_rwa_metadata(self.chain, asset_class.policy, ticker, self.mainnet)
        except (InvalidRWAMetadata, FetchError, ValueError) as e:
            logger.info("No RWA metadata for %s: %s", ticker, e)
            return None

        provider = provider_for(self.http, metadata)
        if provider is None:
            return None

        try:
            balance = await provider.get_balance()
        except FetchError as e:
            logger.warning("Reserves of %s unreachable: %s", ticker, e)
            return None

        venue = RWA_VENUES[metadata.venue]
        backing = venue.backing_asset(metadata.backing_policy)
        return metadata, balance, provider.decimals, backing.underlying_id

    async def attest(self, tickers: Mapping[AssetClass, str]) -> Dict[AssetClass, float]:
        if not tickers:
            return {}

        items = list(tickers.items())
        results = await asyncio.gather(*(self._reserves_of(ac, t) for ac, t in items))

        found = {ac: r for (ac, _), r in zip(items, results) if r is not None}
        if not found:
            return {}

        spot = await self.aggregator.fetch(r[3] for r in found.values())

        implied: Dict[AssetClass, float] = {}
        for asset_class, (metadata, balance, reserve_decimals, underlying_id) in found.items():
            base_per_underlying = spot.base_per(underlying_id)
            if base_per_underlying is None:
                logger.info("No spot price for underlying %s of %s", underlying_id, metadata.ticker)
                continue
            implied[asset_class] = implied_base_per_wrapped(
                base_per_underlying,
                metadata.current_supply,
                metadata.decimals,
                balance,
                reserve_decimals,
            )
        return implied


# === INTENT ===

class IntentKind(Enum):
    PRICE_UPDATE = "price-update"
    RWA_MINT = "rwa-mint"


@dataclass(frozen=True)
class Intent:
    kind: IntentKind
    minted: Optional[AssetClass] = None
    quantity: int = 0


def classify_intent(tx: Transaction, asset_group_address: str) -> Intent:
    """
    Decide what a transaction is asking to be signed. Never touches the network.

    Raises:
        AmbiguousIntent: For several minted asset classes, a burn, or a mint
            that also carries a price feed update
    """
    minted = tx.minted_asset_classes()
    if not minted:
        return Intent(IntentKind.PRICE_UPDATE)

    if len(minted) > 1:
        raise AmbiguousIntent("tried to mint more than 1 asset class")

    if tx.outputs_at(asset_group_address):
        raise AmbiguousIntent("tried to mint while also updating prices")

    asset_class = minted[0]
    quantity = tx.minted[asset_class]
    if quantity <= 0:
        raise AmbiguousIntent(f"burning {asset_class} is not a mint")

    return Intent(IntentKind.RWA_MINT, asset_class, quantity)


@dataclass(frozen=True)
class MintApproval:
    ticker: str
    quantity: int
    metadata: RWAMetadata

    @property
    def formatted_quantity(self) -> str:
        return f"{self.quantity / 10 ** self.metadata.decimals:.6f}"


def _reject(ticker: str, message: str) -> ReconciliationFailed:
    return ReconciliationFailed([ValidationError(ticker, message)])


async def validate_rwa_mint(
    intent: Intent,
    chain: ChainQuery,
    http: HttpClient,
    mainnet: bool,
) -> MintApproval:
    """
    Re-derive reserve backing for a mint before it is signed.

    Raises:
        ReconciliationFailed: Invalid reserves account, unknown venue or
            insufficient reserves
        InvalidRWAMetadata: Metadata token missing or malformed
        FetchError: Chain or venue unreachable
    """
    if intent.kind is not IntentKind.RWA_MINT or intent.minted is None:
        raise AmbiguousIntent("not a mint transaction")

    asset_class = intent.minted
    try:
        ticker = asset_class.token_name[4:].decode("utf-8")
    except UnicodeDecodeError:
        raise _reject(str(asset_class), f"invalid RWA token name {asset_class.token_name.hex()}") from None

    metadata = await fetch_rwa_metadata(chain, asset_class.policy, ticker, mainnet)

    if len(metadata.reserves_account) < MIN_RESERVES_ACCOUNT_LEN:
        raise _reject(ticker, "invalid reservesAccount hash")

    provider = provider_for(http, metadata)
    if provider is None:
        raise _reject(ticker, f"unable to attest reserves of {ticker} on {metadata.venue}")

    balance = await provider.get_balance()
    supply_after = metadata.current_supply + intent.quantity

    # integer comparison: balance / 10^rd >= supply / 10^d
    if balance * 10 ** metadata.decimals < supply_after * 10 ** provider.decimals:
        raise _reject(
            ticker,
            f"insufficient reserves for {ticker}, "
            f"reserves {balance / 10 ** provider.decimals:.6f}, "
            f"supply after mint {supply_after / 10 ** metadata.decimals:.6f}",
        )

    logger.info("RWA mint of %s %s approved", intent.quantity, ticker)
    return MintApproval(ticker, intent.quantity, metadata)
