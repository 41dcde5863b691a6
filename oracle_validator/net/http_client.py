"""
HTTP capability - allowlist-based aiohttp client with fail-closed semantics.

Every outbound call of the validator goes through an injected HttpClient so
the pipeline can run against fakes in tests. The production implementation
wraps one aiohttp session.

Rules:
- Only https, only hosts in config.ALLOWED_HOSTS (EgressDeniedError otherwise)
- Timeout enforced per request (FetchError on expiry)
- Non-2xx responses are returned, not raised: callers decide what a 404 means

Usage:
    from oracle_validator.net import AiohttpClient, fetch_json

    async with AiohttpClient() as http:
        rates = await fetch_json(http, "https://api.coinbase.com/v2/exchange-rates?currency=USD")
"""
from __future__ import annotations

import asyncio
import json
import logging
import ssl
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol
from urllib.parse import urlparse

import aiohttp
import certifi

from ..config import DEFAULT_HTTP_TIMEOUT_SEC, MAX_RESPONSE_SIZE, is_host_allowed

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Fetch operation failed (network, timeout, size or parse)."""
    pass


class EgressDeniedError(FetchError):
    """Target URL is not https or its host is not allowlisted."""
    pass


@dataclass(frozen=True)
class HttpResponse:
    url: str
    status: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        try:
            return self.body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FetchError(f"decode error from {self.url}: {e}") from e

    def json(self) -> Any:
        try:
            return json.loads(self.text())
        except json.JSONDecodeError as e:
            raise FetchError(f"JSON parse error from {self.url}: {e}") from e


class HttpClient(Protocol):
    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
    ) -> HttpResponse:
        ...


def validate_url(url: str) -> None:
    """
    Validate URL against the egress allowlist.

    Raises:
        EgressDeniedError: If the URL is not allowed
    """
    parsed = urlparse(url)

    if parsed.scheme != "https":
        raise EgressDeniedError(f"only https allowed, got {parsed.scheme or 'none'}: {url}")

    host = (parsed.hostname or "").lower()
    if not host:
        raise EgressDeniedError(f"empty host: {url}")

    if not is_host_allowed(host):
        raise EgressDeniedError(f"host not in allowlist: {host}")


def _create_ssl_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


class AiohttpClient:
    """
    aiohttp implementation of HttpClient.

    Usage:
        async with AiohttpClient(timeout=30.0) as http:
            resp = await http.request("GET", url)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SEC,
        max_size: int = MAX_RESPONSE_SIZE,
        user_agent: str = "oracle-validator/1.0",
    ):
        self.timeout = timeout
        self.max_size = max_size
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None
        self._ssl_ctx = _create_ssl_context()

    async def __aenter__(self) -> "AiohttpClient":
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={"User-Agent": self.user_agent},
        )
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        json_body: Any = None,
        data: Optional[bytes] = None,
    ) -> HttpResponse:
        validate_url(url)

        if not self._session:
            raise FetchError("session not initialized")

        try:
            async with self._session.request(
                method,
                url,
                headers=dict(headers) if headers else None,
                json=json_body,
                data=data,
                ssl=self._ssl_ctx,
            ) as resp:
                content_length = resp.headers.get("Content-Length")
                if content_length and int(content_length) > self.max_size:
                    raise FetchError(f"response too large ({content_length} > {self.max_size})")

                body = await resp.read()
                if len(body) > self.max_size:
                    raise FetchError(f"response too large ({len(body)} > {self.max_size})")

                logger.debug("%s %s -> %d (%d bytes)", method, url, resp.status, len(body))

                return HttpResponse(
                    url=url,
                    status=resp.status,
                    body=body,
                    headers=dict(resp.headers),
                )

        except aiohttp.ClientError as e:
            raise FetchError(f"network error on {method} {url}: {e}") from e
        except asyncio.TimeoutError:
            raise FetchError(f"timeout after {self.timeout}s on {method} {url}") from None


async def fetch_json(
    http: HttpClient,
    url: str,
    *,
    headers: Optional[Mapping[str, str]] = None,
) -> Any:
    """
    GET a URL and parse the body as JSON.

    Raises:
        FetchError: On transport failure, non-2xx status or parse error
    """
    resp = await http.request("GET", url, headers=headers)
    if not resp.ok:
        raise FetchError(f"{url} returned status={resp.status}")
    return resp.json()


async def post_json_rpc(http: HttpClient, url: str, method: str, params: list) -> Any:
    """
    Call a JSON-RPC 2.0 method and return its result.

    Raises:
        FetchError: On transport failure or a JSON-RPC error object
    """
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    resp = await http.request("POST", url, json_body=payload)
    if not resp.ok:
        raise FetchError(f"{method} returned status={resp.status}")

    obj = resp.json()
    if not isinstance(obj, dict):
        raise FetchError(f"{method}: unexpected response {obj!r}")
    if obj.get("error"):
        raise FetchError(f"{method}: {obj['error']}")
    if "result" not in obj:
        raise FetchError(f"{method}: missing result")
    return obj["result"]
