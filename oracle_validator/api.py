"""
Stage API client.

Every call carries a fresh Authorization token. Endpoints:
- GET  /feed       -> {"tx": hex} or nothing pending
- POST /feed       body hex(cbor(signature)), best effort
- POST /pong       {} -> optional round-trip delay estimate (ms)
- GET  /secrets    -> Secrets, or unauthorized
- POST /subscribe  push subscription + derived secp256k1 public keys
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from .config import StageConfig
from .contracts import FeedResponse, Secrets, SubscribeRequest
from .net import FetchError, HttpClient
from .signing import Signature

logger = logging.getLogger(__name__)


class StageApiClient:
    """
    Usage:
        api = StageApiClient(get_stage("Mainnet"), http, AuthTokenFactory(key, device_id))
        tx_hex = await api.fetch_feed()
    """

    def __init__(self, stage: StageConfig, http: HttpClient, auth: Callable[[], str]):
        self.stage = stage
        self.http = http
        self.auth = auth

    def _headers(self) -> dict:
        return {"Authorization": self.auth()}

    def _url(self, path: str) -> str:
        return f"{self.stage.base_url}{path}"

    async def fetch_feed(self) -> Optional[str]:
        """
        Pending transaction hex, or None when nothing is pending.

        Raises:
            FetchError: On transport failure
        """
        resp = await self.http.request("GET", self._url("/feed"), headers=self._headers())
        if not resp.ok:
            logger.info("%s /feed returned status=%d", self.stage.name, resp.status)
            return None

        try:
            feed = FeedResponse.model_validate(resp.json())
        except (PydanticValidationError, FetchError) as e:
            logger.warning("%s /feed body unusable: %s", self.stage.name, e)
            return None

        return feed.tx or None

    async def put_signature(self, signature: Signature) -> bool:
        """Best effort: failures are logged, never raised."""
        try:
            resp = await self.http.request(
                "POST",
                self._url("/feed"),
                headers=self._headers(),
                data=signature.to_hex().encode("ascii"),
            )
        except FetchError as e:
            logger.error("%s: failed to post signature: %s", self.stage.name, e)
            return False

        if not resp.ok:
            logger.error("%s: signature rejected with status=%d", self.stage.name, resp.status)
            return False
        return True

    async def pong(self) -> Optional[float]:
        """
        Raises:
            FetchError: On transport failure
        """
        resp = await self.http.request("POST", self._url("/pong"), headers=self._headers(), json_body={})
        if not resp.ok:
            return None
        try:
            value = resp.json()
        except FetchError:
            return None
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return float(value)
        return None

    async def fetch_secrets(self) -> Optional[Secrets]:
        """
        None means this device is not authorized for the stage.

        Raises:
            FetchError: On transport failure
        """
        resp = await self.http.request("GET", self._url("/secrets"), headers=self._headers())
        if not resp.ok:
            logger.info("%s: not authorized (status=%d)", self.stage.name, resp.status)
            return None
        try:
            return Secrets.model_validate(resp.json())
        except PydanticValidationError as e:
            logger.warning("%s: invalid secrets payload: %s", self.stage.name, e)
            return None

    async def subscribe(self, request: SubscribeRequest) -> bool:
        """
        Raises:
            FetchError: On transport failure
        """
        resp = await self.http.request(
            "POST",
            self._url("/subscribe"),
            headers=self._headers(),
            json_body=request.model_dump(by_alias=True),
        )
        if not resp.ok:
            logger.warning("Failed to subscribe to %s push notifications: status=%d",
                           self.stage.name, resp.status)
        return resp.ok
