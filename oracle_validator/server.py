"""
HTTP front for the cloud validator (FastAPI).

    POST /        same contract as validator.handler
    GET  /health  liveness
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .config import validate_config
from .net import AiohttpClient
from .settings import Settings, load_settings
from .validator import CloudValidator, error_response

logger = logging.getLogger(__name__)


def create_app(validator: Optional[CloudValidator] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the app. With an injected validator no HTTP session is opened.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for problem in validate_config():
            logger.warning("Config problem: %s", problem)

        if validator is not None:
            app.state.validator = validator
            yield
            return

        s = settings or load_settings()
        if not s.signing_key:
            logger.warning("ORACLE_SIGNING_KEY not set, every request will be rejected")
        async with AiohttpClient() as http:
            app.state.validator = CloudValidator(
                http,
                s.signing_key,
                {"mainnet": s.blockfrost_mainnet, "preprod": s.blockfrost_preprod},
            )
            yield

    app = FastAPI(title="Oracle Validator", version="1.0", lifespan=lifespan)

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"ok": True})

    @app.post("/")
    async def validate(request: Request) -> Response:
        try:
            event: Any = await request.json()
        except ValueError:
            result = error_response("invalid request body")
        else:
            result = await request.app.state.validator.handle(event)

        return Response(
            content=result["body"],
            status_code=result["statusCode"],
            headers=result["headers"],
        )

    return app
