"""
Device-side feed worker.

Handles one feed notification for a stage:
    heartbeat -> POST /pong, record delay, notify (primary device only)
    sign      -> GET /feed, decode, classify intent, reconcile or attest
                 reserves, sign, POST /feed, record FeedEvent, notify

handle_feed() never raises. Every failure lands in the event log with an
error field and a notification.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .api import StageApiClient
from .auth import AuthTokenFactory
from .chain import BlockfrostClient, ChainQuery
from .config import STAGE_NAMES, SUBSCRIPTION_SYNC_INTERVAL_MS, StageConfig, get_stage
from .contracts import SubscribeRequest
from .errors import InvalidStage, NotAuthorized, SubscriptionStale
from .events import EventLog, FeedEvent, format_prices
from .keys import ecdsa_public_key, schnorr_public_key
from .ledger.tx import Transaction, decode_tx
from .net import FetchError, HttpClient
from .notify import LogNotifier, Notifier
from .pipeline import Clock, PriceReconciliationPipeline, format_timestamp, system_clock
from .rwa import IntentKind, classify_intent, validate_rwa_mint
from .signing import SigningService
from .store import ConfigStore

logger = logging.getLogger(__name__)

PipelineFactory = Callable[[ChainQuery, HttpClient], PriceReconciliationPipeline]


def is_valid_subscription(subscription: Optional[str], now_ms: int) -> bool:
    """A stored push subscription is usable if it has an endpoint, keys and has not expired."""
    if not subscription:
        return False
    try:
        data = json.loads(subscription)
    except (TypeError, json.JSONDecodeError):
        return False
    if not isinstance(data, dict) or not data.get("endpoint") or not data.get("keys"):
        return False
    expires = data.get("expirationTime")
    return expires is None or expires > now_ms


class FeedWorker:
    """
    Usage:
        worker = FeedWorker(store, events, notifier, http)
        await worker.handle_feed("Mainnet")
        await worker.handle_feed("Mainnet", heartbeat=True, timestamp=now_ms)
    """

    def __init__(
        self,
        store: ConfigStore,
        events: EventLog,
        notifier: Optional[Notifier],
        http: HttpClient,
        *,
        clock: Clock = system_clock,
        chain_factory: Optional[Callable[[StageConfig, str], ChainQuery]] = None,
        pipeline_factory: Optional[PipelineFactory] = None,
    ):
        self.store = store
        self.events = events
        self.notifier = notifier or LogNotifier()
        self.http = http
        self.clock = clock
        self.chain_factory = chain_factory or self._blockfrost_chain
        self.pipeline_factory = pipeline_factory or self._default_pipeline
        self.signer = SigningService(self.store.private_key)
        self._tokens: Optional[AuthTokenFactory] = None
        self._token_owner: Tuple[str, int] = ("", 0)

    # === collaborators ===

    def _blockfrost_chain(self, stage: StageConfig, api_key: str) -> ChainQuery:
        return BlockfrostClient(self.http, stage.network, api_key)

    def _default_pipeline(self, chain: ChainQuery, http: HttpClient) -> PriceReconciliationPipeline:
        return PriceReconciliationPipeline(chain, http, clock=self.clock)

    def auth_tokens(self) -> AuthTokenFactory:
        """One factory per (key, device) so nonces stay monotonic across calls."""
        owner = (self.store.private_key(), self.store.device_id())
        if self._tokens is None or owner != self._token_owner:
            self._tokens = AuthTokenFactory(owner[0], owner[1], clock=self.clock)
            self._token_owner = owner
        return self._tokens

    def api_for(self, stage: StageConfig) -> StageApiClient:
        return StageApiClient(stage, self.http, self.auth_tokens())

    def chain_for(self, stage: StageConfig) -> ChainQuery:
        secrets = self.store.secrets(stage.name)
        if secrets is None:
            raise NotAuthorized("not authorized for stage")
        return self.chain_factory(stage, secrets.external_data_provider_api_key)

    def _record(self, event: FeedEvent) -> None:
        try:
            self.events.append(event)
        except OSError as e:
            logger.error("Failed to save event for %s: %s", event.stage, e)

    # === feed ===

    async def handle_feed(self, stage_name: str, heartbeat: bool = False,
                          timestamp: Optional[int] = None) -> None:
        try:
            stage = get_stage(stage_name)
            if heartbeat:
                await self.handle_heartbeat(stage, timestamp)
            else:
                await self.handle_sign(stage)
        except Exception as e:
            logger.error("Feed for %s failed: %s", stage_name, e)
            self._record(FeedEvent(stage=stage_name, hash="NA", timestamp=self.clock(), error=str(e)))
            title = f"{stage_name} failed" if not isinstance(e, InvalidStage) else "Failed to update prices"
            await self.notifier.notify(title, str(e))

    async def handle_heartbeat(self, stage: StageConfig, timestamp: Optional[int]) -> None:
        if not self.store.is_primary():
            logger.debug("Not primary, ignoring %s heartbeat", stage.name)
            return

        delay = await self.api_for(stage).pong()
        now = self.clock()

        if timestamp:
            self.store.set_last_heartbeat(stage.name, timestamp)

        diff: Optional[float] = None
        if delay is not None and delay > 0:
            diff = delay
        elif timestamp:
            diff = max(0, now - timestamp)

        parts = [stage.name]
        if timestamp:
            parts.append(f"timestamp={format_timestamp(timestamp)}")
        if diff:
            parts.append(f"delay={int(diff)}ms")
        await self.notifier.notify("Heartbeat", ", ".join(parts))

    async def handle_sign(self, stage: StageConfig) -> None:
        """
        Fetch the pending transaction for a stage and sign it if it checks out.

        Raises:
            NotAuthorized: No secrets stored for the stage
            FetchError: The stage API is unreachable
        """
        chain = self.chain_for(stage)
        api = self.api_for(stage)

        tx_hex = await api.fetch_feed()
        if tx_hex is None:
            logger.info("%s: nothing pending", stage.name)
            return

        tx: Optional[Transaction] = None
        prices: Dict[str, float] = {}
        try:
            tx = decode_tx(tx_hex)
            intent = classify_intent(tx, stage.asset_group_address)

            if intent.kind is IntentKind.PRICE_UPDATE:
                result = await self.pipeline_factory(chain, self.http).reconcile(tx, stage.asset_group_address)
                prices = dict(result.prices)
                result.raise_for_errors()

                await api.put_signature(self.signer.sign(tx))
                self._record(FeedEvent(stage.name, tx.id_hex, self.clock(), prices, message="updated prices"))
                await self.notifier.notify(f"{stage.name}, updated prices", format_prices(prices))
            else:
                approval = await validate_rwa_mint(intent, chain, self.http, stage.is_mainnet)

                await api.put_signature(self.signer.sign(tx))
                self._record(FeedEvent(stage.name, tx.id_hex, self.clock(),
                                       message=f"minted RWA: {approval.ticker}"))
                await self.notifier.notify(
                    f"{stage.name}, signed RWA mint",
                    f"minted {approval.formatted_quantity} {approval.ticker}",
                )
        except Exception as e:
            logger.error("%s: failed to sign: %s", stage.name, e)
            self._record(FeedEvent(
                stage.name, tx.id_hex if tx is not None else "NA", self.clock(), prices, error=str(e),
            ))
            await self.notifier.notify(f"{stage.name}, failed to update prices", str(e))

    # === authorization ===

    def authorized_stages(self) -> List[str]:
        return [name for name in STAGE_NAMES if self.store.secrets(name) is not None]

    async def authorize_stage(self, stage_name: str) -> bool:
        stage = get_stage(stage_name)
        self.store.set_secrets(stage.name, None)

        if not self.store.private_key():
            logger.warning("No private key, cannot authorize %s", stage.name)
            return False

        try:
            secrets = await self.api_for(stage).fetch_secrets()
        except FetchError as e:
            logger.error("Failed to fetch %s secrets: %s", stage.name, e)
            return False

        if secrets is None:
            return False

        self.store.set_secrets(stage.name, secrets)
        logger.info("Authorized for %s", stage.name)
        return True

    async def authorize_all_stages(self) -> List[str]:
        for name in STAGE_NAMES:
            await self.authorize_stage(name)
        return self.authorized_stages()

    # === push subscription ===

    async def sync_subscription(self, subscription: str) -> None:
        """
        Raises:
            SubscriptionStale: Some authorized stage rejected the subscription
        """
        master = bytes.fromhex(self.store.private_key())
        request = SubscribeRequest(
            subscription=subscription,
            is_primary=self.store.is_primary(),
            schnorr_public_key=schnorr_public_key(master).hex(),
            ecdsa_public_key=ecdsa_public_key(master).hex(),
        )

        ok = True
        for name in self.authorized_stages():
            try:
                ok = await self.api_for(get_stage(name)).subscribe(request) and ok
            except FetchError as e:
                logger.error("Subscribe to %s failed: %s", name, e)
                ok = False

        if not ok:
            raise SubscriptionStale("subscription failed, the subscription data might be stale")

    async def sync(self, force: bool = False) -> bool:
        """
        Re-authorize every stage and push the stored subscription.

        Skipped (returns False) when the last sync is younger than the sync
        interval, unless forced.
        """
        now = self.clock()
        if not force and now - self.store.last_sync() < SUBSCRIPTION_SYNC_INTERVAL_MS:
            return False

        await self.authorize_all_stages()

        subscription = self.store.subscription()
        if is_valid_subscription(subscription, now):
            try:
                await self.sync_subscription(subscription)
            except SubscriptionStale as e:
                logger.warning("%s", e)
                self.store.set_subscription(None)
        else:
            logger.info("No valid push subscription to sync")

        self.store.set_last_sync(now)
        return True
