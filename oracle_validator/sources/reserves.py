"""
Stage D reserve providers.

A ReserveProvider reports the live balance held by a custody account on
its venue, in the venue's smallest unit:

- BitcoinAddressProvider: mempool.space address stats (confirmed funded - spent)
- EthereumAccountProvider: JSON-RPC eth_getBalance (native ETH) or
  eth_call balanceOf(account) on an ERC-20 contract
"""
from __future__ import annotations

import logging
import re
from typing import Optional, Protocol

from ..config import (
    ERC20_BALANCE_OF_SELECTOR,
    ETHEREUM_RPC_URL,
    MEMPOOL_API_URL,
    RWA_VENUES,
)
from ..net import FetchError, HttpClient, fetch_json, post_json_rpc

logger = logging.getLogger(__name__)

_ETH_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class ReserveProvider(Protocol):
    decimals: int

    async def get_balance(self) -> int:
        ...


class BitcoinAddressProvider:
    def __init__(self, http: HttpClient, address: str, decimals: int = 8, api_url: str = MEMPOOL_API_URL):
        self.http = http
        self.address = address
        self.decimals = decimals
        self.api_url = api_url

    async def get_balance(self) -> int:
        obj = await fetch_json(self.http, f"{self.api_url}/address/{self.address}")
        try:
            stats = obj["chain_stats"]
            return int(stats["funded_txo_sum"]) - int(stats["spent_txo_sum"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"mempool.space: malformed address stats: {e}") from e


class EthereumAccountProvider:
    def __init__(
        self,
        http: HttpClient,
        account: str,
        decimals: int = 18,
        token_contract: str = "",
        rpc_url: str = ETHEREUM_RPC_URL,
    ):
        if not _ETH_ADDRESS_RE.match(account):
            raise ValueError(f"invalid Ethereum account {account!r}")
        if token_contract and not _ETH_ADDRESS_RE.match(token_contract):
            raise ValueError(f"invalid ERC-20 contract {token_contract!r}")
        self.http = http
        self.account = account
        self.decimals = decimals
        self.token_contract = token_contract
        self.rpc_url = rpc_url

    def balance_of_calldata(self) -> str:
        return ERC20_BALANCE_OF_SELECTOR + self.account[2:].lower().rjust(64, "0")

    async def get_balance(self) -> int:
        if self.token_contract:
            result = await post_json_rpc(self.http, self.rpc_url, "eth_call", [
                {"to": self.token_contract, "data": self.balance_of_calldata()},
                "latest",
            ])
        else:
            result = await post_json_rpc(self.http, self.rpc_url, "eth_getBalance", [
                self.account,
                "latest",
            ])

        if not isinstance(result, str) or not result.startswith("0x"):
            raise FetchError(f"unexpected JSON-RPC result {result!r}")
        if result == "0x":
            return 0
        try:
            return int(result, 16)
        except ValueError as e:
            raise FetchError(f"unexpected JSON-RPC result {result!r}") from e


def make_reserve_provider(
    http: HttpClient,
    venue: str,
    backing_policy: str,
    account: str,
) -> Optional[ReserveProvider]:
    """
    Select the provider for a venue and backing policy.

    Returns None when the venue or policy is not recognized, or when the
    account reference is unusable for the venue.
    """
    registry = RWA_VENUES.get(venue)
    if registry is None:
        logger.info("Unrecognized reserve venue %r", venue)
        return None

    backing = registry.backing_asset(backing_policy)
    if backing is None:
        logger.info("Unrecognized backing policy %r on %s", backing_policy, venue)
        return None

    try:
        if registry.name == "Bitcoin":
            return BitcoinAddressProvider(http, account, backing.decimals)
        if registry.name == "Ethereum":
            return EthereumAccountProvider(http, account, backing.decimals, backing_policy)
    except ValueError as e:
        logger.warning("Unusable reserves account on %s: %s", venue, e)
        return None

    return None
