"""
Cloud validator: stateless price-update check and co-signature.

Request  {"kind": "price-update", "tx": "<hex>", "stage": "Mainnet"}
Response {"statusCode": 200, "headers": {...}, "body": "<hex(cbor(signature))>"}
         {"statusCode": 400, "headers": {...}, "body": "{\"error\": \"...\"}"}

The request may arrive as the event itself or as a JSON string in
event["body"] (API gateway proxy form).
"""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from .chain import BlockfrostClient, ChainQuery
from .config import StageConfig, get_stage
from .contracts import ValidatorRequest
from .errors import AmbiguousIntent, NotAuthorized, OracleValidatorError
from .ledger.tx import decode_tx
from .net import AiohttpClient, FetchError, HttpClient
from .pipeline import Clock, PriceReconciliationPipeline, system_clock
from .rwa import IntentKind, classify_intent
from .settings import load_settings
from .signing import Signature, SigningService

logger = logging.getLogger(__name__)

PRICE_UPDATE_KIND = "price-update"

RESPONSE_HEADERS: Mapping[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Content-Type": "application/json",
}


def respond(status: int, body: str) -> Dict[str, Any]:
    return {"statusCode": status, "headers": dict(RESPONSE_HEADERS), "body": body}


def error_response(message: str) -> Dict[str, Any]:
    return respond(400, json.dumps({"error": message}))


def parse_request(event: Any) -> ValidatorRequest:
    """
    Raises:
        ValueError: Unparseable event or invalid fields
    """
    payload = event
    if isinstance(event, Mapping) and isinstance(event.get("body"), str):
        try:
            payload = json.loads(event["body"])
        except json.JSONDecodeError as e:
            raise ValueError(f"invalid request body: {e}") from None
    if not isinstance(payload, Mapping):
        raise ValueError("invalid request")
    try:
        return ValidatorRequest.model_validate(dict(payload))
    except PydanticValidationError as e:
        raise ValueError(f"invalid request: {e.errors()[0]['msg']}") from None


class CloudValidator:
    """
    Usage:
        async with AiohttpClient() as http:
            validator = CloudValidator(http, signing_key, {"mainnet": project_id})
            signature = await validator.validate(request)
    """

    def __init__(
        self,
        http: HttpClient,
        signing_key: Optional[str],
        api_keys: Mapping[str, Optional[str]],
        *,
        clock: Clock = system_clock,
        chain_factory: Optional[Callable[[StageConfig, str], ChainQuery]] = None,
    ):
        self.http = http
        self.signer = SigningService(signing_key or "")
        self.api_keys = dict(api_keys)
        self.clock = clock
        self.chain_factory = chain_factory or (
            lambda stage, key: BlockfrostClient(self.http, stage.network, key)
        )

    async def validate(self, request: ValidatorRequest) -> Signature:
        """
        Raises:
            OracleValidatorError: The transaction must not be signed
            FetchError: A required source is unreachable
        """
        if request.kind != PRICE_UPDATE_KIND:
            raise ValueError(f"unsupported request kind '{request.kind}'")

        stage = get_stage(request.stage)
        tx = decode_tx(request.tx)

        intent = classify_intent(tx, stage.asset_group_address)
        if intent.kind is not IntentKind.PRICE_UPDATE:
            raise AmbiguousIntent("only price updates are validated here")

        api_key = self.api_keys.get(stage.network)
        if not api_key:
            raise NotAuthorized(f"no chain API key for {stage.network}")

        chain = self.chain_factory(stage, api_key)
        pipeline = PriceReconciliationPipeline(chain, self.http, clock=self.clock)
        await pipeline.validate(tx, stage.asset_group_address)

        return self.signer.sign(tx)

    async def handle(self, event: Any) -> Dict[str, Any]:
        """Never raises; every failure becomes a 400 response."""
        try:
            request = parse_request(event)
            signature = await self.validate(request)
        except (OracleValidatorError, FetchError, ValueError) as e:
            logger.warning("Rejected: %s", e)
            return error_response(str(e))
        except Exception as e:
            logger.exception("Unexpected validator failure")
            return error_response(str(e) or type(e).__name__)

        return respond(200, signature.to_hex())


async def handler(event: Any, context: Any = None) -> Dict[str, Any]:
    """Function entry point; keys come from the environment or the .env file."""
    settings = load_settings()
    api_keys = {"mainnet": settings.blockfrost_mainnet, "preprod": settings.blockfrost_preprod}
    async with AiohttpClient() as http:
        return await CloudValidator(http, settings.signing_key, api_keys).handle(event)
