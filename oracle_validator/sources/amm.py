"""
Stage A - Minswap V2 AMM pools.

Pools are the UTxOs at the Minswap V2 pool address holding the pool auth
token. Their inline datum is:

    Constr 0 [stake_credential, asset_a, asset_b, total_liquidity,
              reserve_a, reserve_b, ...]

A pool lookup is a tagged outcome:
- PoolFound(price): base per whole token, decimals applied on both sides
- PoolNotFound: no ADA/asset pool exists, the claim stays pending
- PoolLookupFailed(detail): the source itself is broken, fatal
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..chain import ChainQuery
from ..config import BASE_DECIMALS, MINSWAP_V2, AmmDeployment
from ..errors import UnexpectedDatumShape
from ..ledger.assets import ADA, AssetClass
from ..ledger.datum import Datum, expect_constr, expect_int
from ..net import FetchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PoolFound:
    price: float


@dataclass(frozen=True)
class PoolNotFound:
    pass


@dataclass(frozen=True)
class PoolLookupFailed:
    detail: str


PoolOutcome = Union[PoolFound, PoolNotFound, PoolLookupFailed]


@dataclass(frozen=True)
class Pool:
    asset_a: AssetClass
    asset_b: AssetClass
    reserve_a: int
    reserve_b: int

    def pairs(self, a: AssetClass, b: AssetClass) -> bool:
        return {self.asset_a, self.asset_b} == {a, b}

    def base_per_asset(self, asset_class: AssetClass, decimals: int) -> float:
        """Price of one whole asset in whole base units."""
        if self.asset_a == ADA and self.asset_b == asset_class:
            base, asset = self.reserve_a, self.reserve_b
        elif self.asset_b == ADA and self.asset_a == asset_class:
            base, asset = self.reserve_b, self.reserve_a
        else:
            raise ValueError(f"pool does not pair ADA with {asset_class}")
        return (base / 10 ** BASE_DECIMALS) / (asset / 10 ** decimals)


def decode_pool(datum: Datum) -> Pool:
    """
    Raises:
        UnexpectedDatumShape: If the datum is not a V2 pool datum
    """
    constr = expect_constr(datum, 0, context="pool datum")
    if len(constr.fields) < 6:
        raise UnexpectedDatumShape("at least 6 fields", f"{len(constr.fields)} fields", "pool datum")

    return Pool(
        asset_a=AssetClass.from_datum(constr.fields[1], "pool asset a"),
        asset_b=AssetClass.from_datum(constr.fields[2], "pool asset b"),
        reserve_a=expect_int(constr.fields[4], "pool reserve a"),
        reserve_b=expect_int(constr.fields[5], "pool reserve b"),
    )


@dataclass(frozen=True)
class PoolSnapshot:
    """Result of one prefetch: all pools, or the reason they are unavailable."""
    pools: Tuple[Pool, ...] = ()
    failure: Optional[str] = None

    def lookup(self, asset_class: AssetClass, decimals: int) -> PoolOutcome:
        if self.failure is not None:
            return PoolLookupFailed(self.failure)

        candidates = [
            p for p in self.pools
            if p.pairs(ADA, asset_class) and p.reserve_a > 0 and p.reserve_b > 0
        ]
        if not candidates:
            return PoolNotFound()

        # deepest pool wins when an asset has several
        pool = max(candidates, key=lambda p: p.reserve_a if p.asset_a == ADA else p.reserve_b)
        return PoolFound(pool.base_per_asset(asset_class, decimals))


class MinswapPoolSource:
    """
    Usage:
        source = MinswapPoolSource(chain)
        snapshot = await source.prefetch()
        outcome = snapshot.lookup(asset_class, decimals)
    """

    def __init__(self, chain: ChainQuery, deployment: Optional[AmmDeployment] = None):
        self.chain = chain
        self.deployment = deployment or MINSWAP_V2.get(chain.network)

    async def prefetch(self) -> PoolSnapshot:
        if self.deployment is None:
            return PoolSnapshot(failure=f"no pool deployment for network {self.chain.network}")

        auth = AssetClass(
            bytes.fromhex(self.deployment.pool_auth_policy),
            bytes.fromhex(self.deployment.pool_auth_name),
        )

        try:
            utxos = await self.chain.utxos_with_asset(self.deployment.pool_address, auth)
        except FetchError as e:
            logger.error("Pool fetch failed: %s", e)
            return PoolSnapshot(failure=f"unable to fetch pools: {e}")

        pools = []
        for utxo in utxos:
            if utxo.inline_datum is None:
                logger.warning("Pool utxo %s#%d has no inline datum", utxo.tx_hash, utxo.output_index)
                continue
            try:
                pools.append(decode_pool(utxo.inline_datum))
            except UnexpectedDatumShape as e:
                logger.warning("Skipping pool utxo %s#%d: %s", utxo.tx_hash, utxo.output_index, e)

        logger.info("Loaded %d pools", len(pools))
        return PoolSnapshot(pools=tuple(pools))
