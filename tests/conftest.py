"""
Shared fixtures: transaction builders, fake HTTP and chain, fixed clock, test key.

Nothing here touches the network.
"""
import hashlib
import json
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional, Tuple

import cbor2
import pytest

from oracle_validator.chain import AddressHolding, ChainUtxo
from oracle_validator.config import CIP68_REFERENCE_PREFIX, CIP68_USER_FT_PREFIX
from oracle_validator.ledger.address import enterprise_script_address
from oracle_validator.ledger.assets import ADA, AssetClass
from oracle_validator.ledger.datum import (
    ByteArrayData,
    ConstrData,
    Datum,
    IntData,
    ListData,
    MapData,
    encode_datum,
)
from oracle_validator.net import FetchError, HttpResponse

NOW_MS = 1_700_000_000_000          # 2023-11-14 22:13:20 UTC

SNEK = AssetClass(bytes.fromhex("279c909f348e533da5808898f87f9a14bb2c3dfbbacccd631d927a3f"), b"SNEK")
BTC = AssetClass(bytes.fromhex("aa" * 28), b"BTC")
MIN = AssetClass(bytes.fromhex("bb" * 28), b"MIN")
RWA_POLICY = bytes.fromhex("cc" * 28)
WBTC = AssetClass(RWA_POLICY, CIP68_USER_FT_PREFIX + b"wBTC")
WBTC_METADATA = AssetClass(RWA_POLICY, CIP68_REFERENCE_PREFIX + b"wBTC")

SCRIPT_HASH = bytes.fromhex("11" * 28)
GROUP_ADDRESS = enterprise_script_address(SCRIPT_HASH, mainnet=True)
GROUP_ADDRESS_RAW = bytes([0x71]) + SCRIPT_HASH
WALLET_ADDRESS_RAW = bytes([0x61]) + bytes.fromhex("22" * 28)


# === TEST KEY ===

def make_key_hex(seed: bytes = b"oracle-test-device") -> str:
    """Extended key whose signatures match plain Ed25519 for sha512(seed)."""
    h = hashlib.sha512(seed).digest()
    k_left = bytearray(h[:32])
    k_left[0] &= 248
    k_left[31] &= 127
    k_left[31] |= 64
    chain_code = hashlib.sha256(seed).digest()
    return (bytes(k_left) + h[32:] + chain_code).hex()


@pytest.fixture
def key_hex() -> str:
    return make_key_hex()


@pytest.fixture
def clock() -> Callable[[], int]:
    return lambda: NOW_MS


# === DATUM / TX BUILDERS ===

def asset_datum(asset_class: AssetClass) -> ConstrData:
    return ConstrData(0, (ByteArrayData(asset_class.policy), ByteArrayData(asset_class.token_name)))


def price_entry(asset_class: AssetClass, numerator: int, denominator: int = 1,
                timestamp: int = NOW_MS, count: int = 1) -> ListData:
    return ListData((
        asset_datum(asset_class),
        IntData(count),
        ListData((IntData(numerator), IntData(denominator))),
        IntData(timestamp),
    ))


def price_datum(*entries: Datum) -> ListData:
    return ListData(tuple(entries))


def inline_output(address: bytes, datum: Datum, lovelace: int = 2_000_000) -> Dict[int, Any]:
    return {0: address, 1: lovelace, 2: [1, cbor2.CBORTag(24, encode_datum(datum))]}


def plain_output(address: bytes = WALLET_ADDRESS_RAW, lovelace: int = 5_000_000) -> List[Any]:
    return [address, lovelace]


def build_tx(outputs: List[Any], mint: Optional[Dict[AssetClass, int]] = None,
             fee: int = 170_000, inputs: Optional[List[Any]] = None) -> str:
    body: Dict[int, Any] = {
        0: inputs if inputs is not None else [[bytes(32), 0]],
        1: outputs,
        2: fee,
    }
    if mint:
        multiasset: Dict[bytes, Dict[bytes, int]] = {}
        for ac, qty in mint.items():
            multiasset.setdefault(ac.policy, {})[ac.token_name] = qty
        body[9] = multiasset
    return cbor2.dumps([body, {}, True, None]).hex()


def price_update_tx(*entries: Datum, address: bytes = GROUP_ADDRESS_RAW) -> str:
    return build_tx([inline_output(address, price_datum(*entries)), plain_output()])


def metadata_map(**entries: Any) -> MapData:
    items = []
    for key, value in entries.items():
        if isinstance(value, int):
            items.append((ByteArrayData(key.encode()), IntData(value)))
        elif isinstance(value, bytes):
            items.append((ByteArrayData(key.encode()), ByteArrayData(value)))
        else:
            items.append((ByteArrayData(key.encode()), ByteArrayData(str(value).encode())))
    return MapData(tuple(items))


def cip68_datum(**entries: Any) -> ConstrData:
    return ConstrData(0, (metadata_map(**entries), IntData(1)))


def pool_datum(asset: AssetClass, reserve_base: int, reserve_asset: int) -> ConstrData:
    return ConstrData(0, (
        ConstrData(0, ()),
        asset_datum(ADA),
        asset_datum(asset),
        IntData(1_000_000),
        IntData(reserve_base),
        IntData(reserve_asset),
    ))


# === FAKE HTTP ===

@dataclass(frozen=True)
class Call:
    method: str
    url: str
    headers: Optional[Dict[str, str]]
    json_body: Any
    data: Optional[bytes]


class FakeHttp:
    """
    Routes requests by URL prefix (longest wins) and optional method.

    Unrouted URLs answer 404.
    """

    def __init__(self) -> None:
        self.routes: List[Tuple[Optional[str], str, Any]] = []
        self.calls: List[Call] = []

    def route(self, prefix: str, body: Any = None, status: int = 200, method: Optional[str] = None) -> "FakeHttp":
        self.routes.append((method, prefix, (status, body)))
        return self

    def fail(self, prefix: str, method: Optional[str] = None) -> "FakeHttp":
        self.routes.append((method, prefix, FetchError(f"connection refused: {prefix}")))
        return self

    def calls_to(self, prefix: str, method: Optional[str] = None) -> List[Call]:
        return [c for c in self.calls if c.url.startswith(prefix) and (method is None or c.method == method)]

    async def request(self, method, url, *, headers=None, json_body=None, data=None) -> HttpResponse:
        self.calls.append(Call(method, url, dict(headers) if headers else None, json_body, data))

        matches = [
            (len(prefix), n, response)
            for n, (route_method, prefix, response) in enumerate(self.routes)
            if url.startswith(prefix) and (route_method is None or route_method == method)
        ]
        if not matches:
            return HttpResponse(url, 404, b"")

        # longest prefix, then most recently added
        _, _, response = max(matches, key=lambda m: (m[0], m[1]))
        if isinstance(response, Exception):
            raise response
        status, body = response
        if callable(body):
            body = body(method, url, json_body, data)
        if isinstance(body, bytes):
            raw = body
        elif body is None:
            raw = b""
        else:
            raw = json.dumps(body).encode("utf-8")
        return HttpResponse(url, status, raw)


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


# === FAKE CHAIN ===

class FakeChain:
    def __init__(self, network: str = "mainnet") -> None:
        self.network = network
        self.utxos: Dict[Tuple[str, AssetClass], List[ChainUtxo]] = {}
        self.failing: set = set()
        self.calls: List[Tuple[str, Any]] = []

    def add_utxo(self, address: str, asset_class: AssetClass, datum: Optional[Datum] = None,
                 quantity: int = 1) -> ChainUtxo:
        n = sum(len(v) for v in self.utxos.values())
        utxo = ChainUtxo(
            tx_hash=f"{n:064x}",
            output_index=0,
            address=address,
            lovelace=2_000_000,
            assets=MappingProxyType({asset_class: quantity}),
            inline_datum=datum,
            datum_hash=None,
        )
        self.utxos.setdefault((address, asset_class), []).append(utxo)
        return utxo

    async def addresses_with_asset(self, asset_class: AssetClass) -> List[AddressHolding]:
        self.calls.append(("addresses_with_asset", asset_class))
        if asset_class in self.failing:
            raise FetchError(f"chain query failed for {asset_class}")
        holders: Dict[str, int] = {}
        for (address, ac), utxos in self.utxos.items():
            if ac == asset_class:
                holders[address] = holders.get(address, 0) + sum(u.quantity_of(ac) for u in utxos)
        return [AddressHolding(a, q) for a, q in holders.items()]

    async def utxos_with_asset(self, address: str, asset_class: AssetClass) -> List[ChainUtxo]:
        self.calls.append(("utxos_with_asset", (address, asset_class)))
        if address in self.failing or asset_class in self.failing:
            raise FetchError(f"chain query failed for {address}")
        return list(self.utxos.get((address, asset_class), []))


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


# === COMMON ROUTES ===

REGISTRY = "https://tokens.cardano.org/metadata"
COINBASE = "https://api.coinbase.com/v2/exchange-rates"
COINGECKO = "https://api.coingecko.com/api/v3/simple/price"
MEMPOOL = "https://mempool.space/api"


def registry_entry(http: FakeHttp, asset_class: AssetClass, ticker: str, decimals: int) -> None:
    http.route(
        f"{REGISTRY}/{asset_class.policy.hex()}{asset_class.token_name.hex()}",
        {"ticker": {"value": ticker}, "decimals": {"value": decimals}},
    )


def rwa_metadata(chain: FakeChain, reserves_account: bytes = b"bc1qreservesreservesreserves00",
                 current_supply: int = 100_000_000, **overrides: Any) -> None:
    """Publish the wBTC metadata token at its policy's script address."""
    entries: Dict[str, Any] = dict(
        ticker="wBTC",
        decimals=8,
        network="Bitcoin",
        policy="",
        current_supply=current_supply,
        reserves_account=reserves_account,
    )
    entries.update(overrides)
    entries = {k: v for k, v in entries.items() if v is not None}
    chain.add_utxo(
        enterprise_script_address(RWA_POLICY, mainnet=True),
        WBTC_METADATA,
        cip68_datum(**entries),
    )
