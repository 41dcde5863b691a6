# -*- coding: utf-8 -*-
"""
Oracle Validator Configuration - single source of truth.

All network, timing, threshold and registry constants in one place.
"""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Final, Mapping, Optional

from .errors import InvalidStage


# ============================================================================
# RECONCILIATION THRESHOLDS
# ============================================================================

MAX_REL_DIFF: Final[float] = 0.01                # 1% tolerance
MAX_TIMESTAMP_SKEW_MS: Final[int] = 300_000      # 5 minutes
BASE_DECIMALS: Final[int] = 6                    # lovelace per ADA
PRICE_DISPLAY_PLACES: Final[int] = 6
MAX_ASSET_DECIMALS: Final[int] = 255

MIN_RESERVES_ACCOUNT_LEN: Final[int] = 16


# ============================================================================
# CIP-68 / CIP-26 METADATA
# ============================================================================

CIP68_USER_FT_PREFIX: Final[bytes] = bytes.fromhex("0014df10")     # (333)
CIP68_REFERENCE_PREFIX: Final[bytes] = bytes.fromhex("000643b0")   # (100)

CIP26_REGISTRY_URLS: Final[Mapping[str, str]] = MappingProxyType({
    "mainnet": "https://tokens.cardano.org/metadata",
    "preprod": "https://metadata.world.dev.cardano.org/metadata",
    "preview": "https://metadata.world.dev.cardano.org/metadata",
})


# ============================================================================
# CHAIN QUERY (Blockfrost v0)
# ============================================================================

BLOCKFROST_URLS: Final[Mapping[str, str]] = MappingProxyType({
    "mainnet": "https://cardano-mainnet.blockfrost.io/api/v0",
    "preprod": "https://cardano-preprod.blockfrost.io/api/v0",
    "preview": "https://cardano-preview.blockfrost.io/api/v0",
})
BLOCKFROST_PAGE_SIZE: Final[int] = 100
BLOCKFROST_MAX_PAGES: Final[int] = 50


# ============================================================================
# STAGE A - MINSWAP V2 POOLS
# ============================================================================

@dataclass(frozen=True)
class AmmDeployment:
    pool_address: str
    pool_auth_policy: str
    pool_auth_name: str


MINSWAP_V2: Final[Mapping[str, AmmDeployment]] = MappingProxyType({
    "mainnet": AmmDeployment(
        pool_address=(
            "addr1z84q0denmyep98ph3tmzwsmw0j7zau9ljmsqx6a4rvaau66j2c79gy9l76sdg0"
            "xwhd7r0c0kna0tycz4y5s6mlenh8pq777e2a"
        ),
        pool_auth_policy="f5808c2c990d86da54bfc97d89cee6efa20cd8461616359478d96b4c",
        pool_auth_name="4d5350",
    ),
    "preprod": AmmDeployment(
        pool_address=(
            "addr_test1zrtt4xm4p84vse3g3l6swtf2rqs943t0w39ustwdszxt3l5rajt8r8wqtygrfd"
            "uwgukk73m5gcnplmztc5tl5ngy0upqhns793"
        ),
        pool_auth_policy="d6aae2059baee188f74917493cf7637e679cd219bdfbbf4dcbeb1d0b",
        pool_auth_name="4d5350",
    ),
})


# ============================================================================
# STAGE B - EXCHANGE RATES (Coinbase)
# ============================================================================

EXCHANGE_RATES_URL: Final[str] = "https://api.coinbase.com/v2/exchange-rates?currency=USD"
EXCHANGE_BASE_SYMBOL: Final[str] = "ADA"

# ticker -> exchange symbol
EXCHANGE_SYMBOLS: Final[Mapping[str, str]] = MappingProxyType({
    "BTC": "BTC",
    "iBTC": "BTC",
    "ETH": "ETH",
    "iETH": "ETH",
    "SOL": "SOL",
    "iSOL": "SOL",
    "USDC": "USDC",
    "USDT": "USDT",
})


# ============================================================================
# STAGE C - AGGREGATOR (CoinGecko)
# ============================================================================

AGGREGATOR_PRICE_URL: Final[str] = "https://api.coingecko.com/api/v3/simple/price"
AGGREGATOR_BASE_ID: Final[str] = "cardano"

# ticker -> aggregator id
AGGREGATOR_IDS: Final[Mapping[str, str]] = MappingProxyType({
    "SNEK": "snek",
    "MIN": "minswap",
    "HOSKY": "hosky",
    "INDY": "indigo-protocol",
    "iUSD": "indigo-protocol-iusd",
    "DJED": "djed",
    "WMT": "world-mobile-token",
    "USDM": "usdm-2",
})


# ============================================================================
# STAGE D - RWA RESERVE VENUES
# ============================================================================

@dataclass(frozen=True)
class BackingAsset:
    underlying_id: str      # aggregator id of the real counterpart
    decimals: int


@dataclass(frozen=True)
class ReserveVenue:
    name: str
    backing: Mapping[str, BackingAsset]   # backing policy ("" = native coin) -> asset

    def backing_asset(self, policy: str) -> Optional[BackingAsset]:
        return self.backing.get(policy.lower())


RWA_VENUES: Final[Mapping[str, ReserveVenue]] = MappingProxyType({
    "Bitcoin": ReserveVenue(
        name="Bitcoin",
        backing=MappingProxyType({
            "": BackingAsset("bitcoin", 8),
        }),
    ),
    "Ethereum": ReserveVenue(
        name="Ethereum",
        backing=MappingProxyType({
            "": BackingAsset("ethereum", 18),
            "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48": BackingAsset("usd-coin", 6),
            "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599": BackingAsset("wrapped-bitcoin", 8),
        }),
    ),
})

MEMPOOL_API_URL: Final[str] = "https://mempool.space/api"
ETHEREUM_RPC_URL: Final[str] = "https://ethereum-rpc.publicnode.com"
ERC20_BALANCE_OF_SELECTOR: Final[str] = "0x70a08231"


# ============================================================================
# STAGES (deployment environments)
# ============================================================================

@dataclass(frozen=True)
class StageConfig:
    name: str
    base_url: str
    asset_group_address: str
    network: str

    @property
    def is_mainnet(self) -> bool:
        return self.network == "mainnet"


STAGES: Final[Mapping[str, StageConfig]] = MappingProxyType({
    "Mainnet": StageConfig(
        name="Mainnet",
        base_url="https://api.oracle.token.pbg.io",
        asset_group_address="addr1w9vdxw6jqws6tfq40j442qaw2704ya76eal6qlwvks5vckgeh2sx5",
        network="mainnet",
    ),
    "Beta": StageConfig(
        name="Beta",
        base_url="https://api.oracle.beta.pbgtoken.io",
        asset_group_address="addr1w8x0dausf8jjrg4ep3ds3trne80ravxtpa5hutnc0auvlws5wqake",
        network="mainnet",
    ),
    "Preprod": StageConfig(
        name="Preprod",
        base_url="https://api.oracle.preprod.pbgtoken.io",
        asset_group_address="addr_test1wpwtcp7kedkjxxg3z64s9e79379yudmecclh5yycrxfg26q6rl3wp",
        network="preprod",
    ),
})

STAGE_NAMES: Final[tuple] = ("Mainnet", "Preprod", "Beta")


def is_valid_stage(name: str) -> bool:
    return name in STAGES


def get_stage(name: str) -> StageConfig:
    """
    Look up a stage by name.

    Raises:
        InvalidStage: For an unrecognized name
    """
    try:
        return STAGES[name]
    except KeyError:
        raise InvalidStage(name) from None


# ============================================================================
# NETWORK ALLOWLIST
# ============================================================================

ALLOWED_HOSTS: Final[frozenset] = frozenset({
    # Stage APIs
    "api.oracle.token.pbg.io",
    "api.oracle.beta.pbgtoken.io",
    "api.oracle.preprod.pbgtoken.io",

    # Chain query
    "cardano-mainnet.blockfrost.io",
    "cardano-preprod.blockfrost.io",
    "cardano-preview.blockfrost.io",

    # Token metadata registries
    "tokens.cardano.org",
    "metadata.world.dev.cardano.org",

    # Price sources
    "api.coinbase.com",
    "api.coingecko.com",

    # Reserve venues
    "mempool.space",
    "ethereum-rpc.publicnode.com",

    # Notifications
    "api.telegram.org",
})


def is_host_allowed(host: str) -> bool:
    """
    Check if host is in the allowlist (exact or subdomain match).

    FAIL-CLOSED: unknown host = rejected.
    """
    host = host.lower().strip()

    if host in ALLOWED_HOSTS:
        return True

    for allowed in ALLOWED_HOSTS:
        if host.endswith("." + allowed):
            return True

    return False


# ============================================================================
# TRANSPORT
# ============================================================================

DEFAULT_HTTP_TIMEOUT_SEC: Final[float] = 30.0
MAX_RESPONSE_SIZE: Final[int] = 10 * 1024 * 1024  # 10MB
SUBSCRIPTION_SYNC_INTERVAL_MS: Final[int] = 300_000


# ============================================================================
# VALIDATION
# ============================================================================

def validate_config() -> list:
    """
    Validate static configuration.

    Returns:
        List of problems (empty = OK)
    """
    from urllib.parse import urlparse

    errors = []

    for name, stage in STAGES.items():
        if name != stage.name:
            errors.append(f"stage key {name} does not match name {stage.name}")
        host = urlparse(stage.base_url).hostname or ""
        if not is_host_allowed(host):
            errors.append(f"stage {name} host not allowlisted: {host}")
        if stage.network not in BLOCKFROST_URLS:
            errors.append(f"stage {name} has unknown network {stage.network}")
        if stage.network not in CIP26_REGISTRY_URLS:
            errors.append(f"stage {name} has no metadata registry")

    if not 0 < MAX_REL_DIFF < 1:
        errors.append(f"MAX_REL_DIFF out of range: {MAX_REL_DIFF}")

    return errors
