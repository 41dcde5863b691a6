"""Outbound HTTP capability."""
from .http_client import (
    AiohttpClient,
    EgressDeniedError,
    FetchError,
    HttpClient,
    HttpResponse,
    fetch_json,
    post_json_rpc,
    validate_url,
)

__all__ = [
    "AiohttpClient",
    "EgressDeniedError",
    "FetchError",
    "HttpClient",
    "HttpResponse",
    "fetch_json",
    "post_json_rpc",
    "validate_url",
]
